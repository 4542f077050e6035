"""The recording session: state machine around one in-progress track.

Phases::

    IDLE --start--> RECORDING --pause--> PAUSED --resume--> RECORDING
    RECORDING/PAUSED --stop--> STOPPED --start--> RECORDING

All mutation of the buffer happens under one re-entrant lock, so location
callbacks, timer ticks and user commands are applied one at a time. Every
public operation returns a :class:`SessionResult`; collaborator failures are
logged and reported, never raised.
"""

from __future__ import annotations

import logging
import threading
import uuid
from bisect import bisect_right
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Sequence

from track_recorder.config import RecorderConfig
from track_recorder.errors import LocationTimeoutError
from track_recorder.geo import is_near_duplicate
from track_recorder.location import BackgroundRecorder, LocationSource, Subscription
from track_recorder.models import GeoSample, RecordingMarker, SessionPhase, Track, sample_from_payload
from track_recorder.repository import TrackRepository
from track_recorder.scheduler import PeriodicHandle, Scheduler
from track_recorder.timeutils import now_ms

logger = logging.getLogger(__name__)

_ACTIVE = (SessionPhase.RECORDING, SessionPhase.PAUSED)


@dataclass(frozen=True, slots=True)
class SessionResult:
    """Outcome of a session command, for the UI layer to render."""

    ok: bool
    message: str = ""
    track_id: str | None = None


def new_track_id() -> str:
    return uuid.uuid4().hex


def merge_samples(
    buffer: Sequence[GeoSample],
    incoming: Iterable[GeoSample],
    window_ms: int = 1000,
) -> tuple[list[GeoSample], int]:
    """Merge background samples into a buffer without duplicating fixes.

    An incoming sample is kept only if no buffered sample lies strictly within
    ``window_ms`` of its timestamp. The result is sorted by timestamp (stable).

    Returns:
        (merged samples, number of incoming samples added)
    """

    existing = sorted(s.timestamp for s in buffer)
    merged = list(buffer)
    added = 0
    for sample in incoming:
        i = bisect_right(existing, sample.timestamp - window_ms)
        if i < len(existing) and existing[i] < sample.timestamp + window_ms:
            continue
        merged.append(sample)
        added += 1
    merged.sort(key=lambda s: s.timestamp)
    return merged, added


class RecordingSession:
    """Owns the authoritative buffer of the active track.

    Args:
        repository: Where tracks, the recording marker and the background mirror live.
        source: Foreground location source.
        scheduler: Runs the auto-save and background-merge ticks.
        background: Optional background stream started alongside recording.
        config: Tunables; defaults to ``RecorderConfig()``.
        clock: Epoch-ms clock, injectable for tests.
    """

    def __init__(
        self,
        repository: TrackRepository,
        source: LocationSource,
        scheduler: Scheduler,
        *,
        background: BackgroundRecorder | None = None,
        config: RecorderConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._repo = repository
        self._source = source
        self._scheduler = scheduler
        self._background = background
        self._config = config or RecorderConfig()
        self._clock = clock

        self._lock = threading.RLock()
        self._phase = SessionPhase.IDLE
        self._track_id: str | None = None
        self._track_name: str | None = None
        self._started_at = 0
        self._buffer: list[GeoSample] = []
        self._last_flushed_at: int | None = None
        self._subscription: Subscription | None = None
        self._tasks: list[PeriodicHandle] = []
        self._viewing: Track | None = None

    # -- read-only projections -------------------------------------------

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def active_track_id(self) -> str | None:
        return self._track_id

    @property
    def active_track_name(self) -> str | None:
        return self._track_name

    @property
    def last_flushed_at(self) -> int | None:
        return self._last_flushed_at

    @property
    def locations(self) -> tuple[GeoSample, ...]:
        with self._lock:
            return tuple(self._buffer)

    @property
    def viewing(self) -> Track | None:
        return self._viewing

    @property
    def displayed_locations(self) -> tuple[GeoSample, ...]:
        """What a map should draw: the viewed track if any, else the live buffer."""

        with self._lock:
            if self._viewing is not None:
                return tuple(self._viewing.locations)
            return tuple(self._buffer)

    # -- transitions -----------------------------------------------------

    def start(self, name: str) -> SessionResult:
        """Begin a fresh recording called ``name``."""

        with self._lock:
            name = (name or "").strip()
            if not name:
                return SessionResult(False, "Please enter a track name")
            if self._phase in _ACTIVE:
                return SessionResult(False, f"Already recording {self._track_name!r}", self._track_id)

            denied = self._request_permission()
            if denied is not None:
                return denied

            previous = self._phase
            self._track_id = new_track_id()
            self._track_name = name
            self._started_at = self._clock()
            self._buffer = []
            self._last_flushed_at = None
            self._viewing = None
            self._phase = SessionPhase.RECORDING
            self._repo.clear_background_samples()
            self._repo.set_marker(self._marker())

            self._acquire_initial_fix()

            subscribed = self._subscribe()
            if not subscribed.ok:
                self._repo.clear_marker()
                self._reset(previous)
                return subscribed

            self._start_tasks()
            logger.info("Started recording %r (%s)", name, self._track_id)
            return SessionResult(True, f"Recording {name!r}", self._track_id)

    def pause(self) -> SessionResult:
        with self._lock:
            if self._phase is not SessionPhase.RECORDING:
                return SessionResult(True, "Nothing to pause", self._track_id)

            self._unsubscribe()
            self._stop_tasks()
            self._phase = SessionPhase.PAUSED
            self._merge_pending()
            self._repo.set_marker(self._marker())
            if not self._flush(is_complete=False):
                return SessionResult(False, "Paused, but saving the track failed", self._track_id)
            logger.info("Paused recording %r", self._track_name)
            return SessionResult(True, "Paused", self._track_id)

    def resume(self) -> SessionResult:
        with self._lock:
            if self._phase is not SessionPhase.PAUSED:
                return SessionResult(True, "Nothing to resume", self._track_id)

            self._phase = SessionPhase.RECORDING
            subscribed = self._subscribe()
            if not subscribed.ok:
                self._phase = SessionPhase.PAUSED
                return subscribed

            self._repo.set_marker(self._marker())
            self._start_tasks()
            logger.info("Resumed recording %r", self._track_name)
            return SessionResult(True, "Recording", self._track_id)

    def stop(self) -> SessionResult:
        """Finish the recording and save it as complete.

        Stopping with nothing recording succeeds without effect. If the final
        save fails the session stays PAUSED (unsubscribed, buffer kept) so the
        stop can be retried.
        """

        with self._lock:
            if self._phase not in _ACTIVE:
                return SessionResult(True, "Nothing to stop")

            self._unsubscribe()
            self._stop_tasks()
            self._merge_pending()
            if not self._flush(is_complete=True):
                self._phase = SessionPhase.PAUSED
                self._repo.set_marker(self._marker())
                return SessionResult(False, "Saving the final track failed; stop again to retry", self._track_id)

            track_id = self._track_id
            self._repo.clear_marker()
            self._repo.clear_background_samples()
            logger.info("Stopped recording %r with %s points", self._track_name, len(self._buffer))
            self._reset(SessionPhase.STOPPED)
            return SessionResult(True, "Track saved", track_id)

    def resume_track(self, track_id: str) -> SessionResult:
        """Continue recording into a saved track, reusing its id and name."""

        with self._lock:
            if self._phase in _ACTIVE:
                return SessionResult(False, f"Already recording {self._track_name!r}", self._track_id)
            track = self._repo.get_track(track_id)
            if track is None:
                return SessionResult(False, f"Track not found: {track_id}")

            denied = self._request_permission()
            if denied is not None:
                return denied

            previous = self._phase
            self._track_id = track.id
            self._track_name = track.name
            self._started_at = self._clock()
            self._buffer = list(track.locations)
            self._last_flushed_at = None
            self._viewing = None
            self._phase = SessionPhase.RECORDING

            subscribed = self._subscribe()
            if not subscribed.ok:
                self._reset(previous)
                return subscribed

            track.is_complete = False
            track.last_modified = self._clock()
            self._repo.save_track(track)
            self._repo.clear_background_samples()
            self._repo.set_marker(self._marker())
            self._start_tasks()
            logger.info("Resumed saved track %r (%s)", track.name, track.id)
            return SessionResult(True, f"Recording {track.name!r}", track.id)

    def recover(self) -> SessionResult:
        """Pick up a recording that a previous process left in progress."""

        with self._lock:
            if self._phase in _ACTIVE:
                return SessionResult(True, "Session already active", self._track_id)
            marker = self._repo.get_marker()
            if marker is None or not marker.is_active:
                return SessionResult(True, "No recording in progress")

            saved = self._repo.get_track(marker.track_id)
            self._track_id = marker.track_id
            self._track_name = marker.track_name
            self._started_at = marker.started_at
            self._buffer = list(saved.locations) if saved is not None else []
            self._last_flushed_at = saved.last_modified if saved is not None else None
            self._phase = SessionPhase.PAUSED
            self._merge_pending()

            if marker.phase is SessionPhase.PAUSED:
                self._flush(is_complete=False)
                logger.info("Recovered paused recording %r", marker.track_name)
                return SessionResult(True, "Recovered paused recording", self._track_id)

            failure = self._request_permission()
            if failure is None:
                self._phase = SessionPhase.RECORDING
                subscribed = self._subscribe()
                if not subscribed.ok:
                    failure = subscribed
            if failure is not None:
                self._phase = SessionPhase.PAUSED
                self._repo.set_marker(self._marker())
                self._flush(is_complete=False)
                return SessionResult(False, f"Recovered as paused: {failure.message}", self._track_id)

            self._start_tasks()
            self._flush(is_complete=False)
            logger.info("Recovered recording %r with %s points", marker.track_name, len(self._buffer))
            return SessionResult(True, "Recovered recording", self._track_id)

    # -- viewing (side channel) -----------------------------------------

    def view_existing(self, track: Track | str) -> SessionResult:
        """Display a saved track; never touches phase, buffer or timers."""

        with self._lock:
            if isinstance(track, str):
                loaded = self._repo.get_track(track)
                if loaded is None:
                    return SessionResult(False, f"Track not found: {track}")
                track = loaded
            self._viewing = track
            return SessionResult(True, f"Viewing {track.name!r}", track.id)

    def clear_view(self) -> None:
        with self._lock:
            self._viewing = None

    # -- ingestion and ticks ---------------------------------------------

    def add_sample(self, payload: GeoSample | Mapping[str, Any]) -> bool:
        """Ingest one foreground fix; True if it was appended to the buffer."""

        with self._lock:
            if self._phase is not SessionPhase.RECORDING:
                return False
            return self._ingest(payload)

    def auto_save(self) -> bool:
        """Periodic flush; a no-op unless RECORDING."""

        with self._lock:
            if self._phase is not SessionPhase.RECORDING:
                return False
            logger.debug("Auto-saving track progress (%s points)", len(self._buffer))
            return self._flush(is_complete=False)

    def merge_background(self) -> int:
        """Periodic merge of the background mirror; a no-op unless RECORDING.

        Returns:
            Number of background samples added to the buffer.
        """

        with self._lock:
            if self._phase is not SessionPhase.RECORDING:
                return 0
            return self._merge_pending()

    # -- internals -------------------------------------------------------

    def _marker(self) -> RecordingMarker:
        return RecordingMarker(
            track_id=self._track_id or "",
            track_name=self._track_name or "",
            phase=self._phase,
            started_at=self._started_at,
        )

    def _reset(self, phase: SessionPhase) -> None:
        self._phase = phase
        self._track_id = None
        self._track_name = None
        self._buffer = []

    def _request_permission(self) -> SessionResult | None:
        """None if permission was granted, else the failure to report."""

        try:
            granted = self._source.request_permission()
        except Exception as exc:  # collaborator boundary
            logger.error("Location permission request failed: %s", exc)
            return SessionResult(False, f"Location permission request: {exc}")
        if not granted:
            return SessionResult(False, "Location permission denied. Please grant location permission.")
        return None

    def _acquire_initial_fix(self) -> None:
        timeout = self._config.initial_fix_timeout_s
        try:
            payload = self._source.get_current_position(timeout)
        except LocationTimeoutError:
            logger.warning("No initial fix within %.0fs; recording continues without one", timeout)
            return
        except Exception as exc:  # collaborator boundary
            logger.warning("Initial location error: %s", exc)
            return
        if payload is not None:
            self._ingest(payload)

    def _subscribe(self) -> SessionResult:
        try:
            self._subscription = self._source.watch_position(
                self._on_location,
                interval_ms=self._config.watch_interval_ms,
                distance_m=self._config.watch_distance_m,
            )
        except Exception as exc:  # collaborator boundary
            logger.error("Watch position error: %s", exc)
            self._subscription = None
            return SessionResult(False, f"Start location tracking: {exc}")
        return SessionResult(True)

    def _unsubscribe(self) -> None:
        sub, self._subscription = self._subscription, None
        if sub is None:
            return
        try:
            sub.remove()
        except Exception as exc:  # collaborator boundary
            logger.error("Error removing location subscription: %s", exc)

    def _on_location(self, payload: Mapping[str, Any]) -> None:
        self.add_sample(payload)

    def _start_tasks(self) -> None:
        self._stop_tasks()
        self._tasks = [
            self._scheduler.schedule_periodic(self._config.auto_save_interval_s, self.auto_save, "auto-save"),
            self._scheduler.schedule_periodic(
                self._config.background_sync_interval_s, self.merge_background, "background-merge"
            ),
        ]
        if self._background is not None and not self._background.start():
            logger.warning("Background recording unavailable; continuing in foreground only")

    def _stop_tasks(self) -> None:
        for handle in self._tasks:
            handle.cancel()
        self._tasks = []
        if self._background is not None:
            self._background.stop()

    def _ingest(self, payload: GeoSample | Mapping[str, Any]) -> bool:
        sample = sample_from_payload(
            payload,
            max_accuracy_m=self._config.max_accuracy_m,
            captured_at_ms=self._clock(),
        )
        if sample is None:
            logger.debug("Dropped invalid location payload %r", payload)
            return False
        if self._buffer and is_near_duplicate(self._buffer[-1], sample, self._config.duplicate_epsilon_deg):
            return False
        self._buffer.append(sample)
        return True

    def _merge_pending(self) -> int:
        pending = self._repo.drain_background_samples()
        if not pending:
            # None means storage failed; the next tick retries
            return 0
        self._buffer, added = merge_samples(self._buffer, pending, self._config.merge_window_ms)
        if added:
            logger.info("Merged %s background location(s) into %r", added, self._track_name)
        return added

    def _flush(self, *, is_complete: bool) -> bool:
        if self._track_id is None or not self._buffer:
            logger.debug("Cannot save track: missing data")
            return True
        track = Track(
            id=self._track_id,
            name=self._track_name or "",
            locations=list(self._buffer),
            created_at=self._buffer[0].timestamp,
            last_modified=self._clock(),
            is_complete=is_complete,
        )
        if not self._repo.save_track(track):
            return False
        self._last_flushed_at = track.last_modified
        return True
