"""Location source interface, a file-replay source and the background recorder."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable, Mapping, Protocol

from track_recorder.config import RecorderConfig
from track_recorder.errors import LocationPermissionError, LocationTimeoutError
from track_recorder.models import GeoSample, SessionPhase, sample_from_payload
from track_recorder.repository import TrackRepository
from track_recorder.scheduler import ManualScheduler

logger = logging.getLogger(__name__)

LocationCallback = Callable[[Mapping[str, Any]], None]


class Subscription(Protocol):
    def remove(self) -> None: ...


class LocationSource(Protocol):
    """What the recorder needs from a device location API.

    Payloads are mappings shaped like ``{"coords": {"latitude": ..., "longitude": ...,
    "accuracy": ..., "speed": ..., "heading": ..., "altitude": ...}, "timestamp": ...}``;
    they are validated by :func:`track_recorder.models.sample_from_payload`.
    """

    def request_permission(self) -> bool: ...

    def get_current_position(self, timeout_s: float) -> Mapping[str, Any] | None: ...

    def watch_position(
        self,
        callback: LocationCallback,
        interval_ms: int = 5000,
        distance_m: float = 5.0,
    ) -> Subscription: ...


def payload_from_sample(sample: GeoSample) -> dict[str, Any]:
    """Render a sample in the location-source payload shape."""

    return {
        "coords": {
            "latitude": sample.latitude,
            "longitude": sample.longitude,
            "accuracy": sample.accuracy,
            "speed": sample.speed,
            "heading": sample.heading,
            "altitude": sample.altitude,
        },
        "timestamp": sample.timestamp,
    }


class _Subscription:
    def __init__(self, owner: ReplayLocationSource, callback: LocationCallback) -> None:
        self._owner = owner
        self.callback = callback
        self.active = True

    def remove(self) -> None:
        self.active = False
        self._owner._drop(self)


class ReplayLocationSource:
    """Feeds previously recorded samples to subscribers, in timestamp order.

    When a ``ManualScheduler`` is given, its clock is advanced by the gap between
    consecutive samples so that periodic tasks fire as they would have live.
    Samples replayed while nobody is subscribed are lost, like a real sensor.
    """

    def __init__(
        self,
        samples: Iterable[GeoSample],
        *,
        scheduler: ManualScheduler | None = None,
        permission: bool = True,
    ) -> None:
        self._pending = sorted(samples, key=lambda s: s.timestamp)
        self._scheduler = scheduler
        self._permission = permission
        self._subs: list[_Subscription] = []
        self._last_ts: int | None = None
        self._lock = threading.RLock()

    @property
    def remaining(self) -> int:
        return len(self._pending)

    @property
    def next_timestamp(self) -> int | None:
        return self._pending[0].timestamp if self._pending else None

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def request_permission(self) -> bool:
        return self._permission

    def get_current_position(self, timeout_s: float) -> Mapping[str, Any] | None:
        with self._lock:
            if not self._permission:
                raise LocationPermissionError("location permission not granted")
            if not self._pending:
                raise LocationTimeoutError(f"no fix within {timeout_s:.0f}s")
            sample = self._pending.pop(0)
            self._last_ts = sample.timestamp
            return payload_from_sample(sample)

    def watch_position(
        self,
        callback: LocationCallback,
        interval_ms: int = 5000,
        distance_m: float = 5.0,
    ) -> Subscription:
        with self._lock:
            if not self._permission:
                raise LocationPermissionError("location permission not granted")
            sub = _Subscription(self, callback)
            self._subs.append(sub)
            return sub

    def _drop(self, sub: _Subscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    def play(self, limit: int | None = None) -> int:
        """Deliver up to ``limit`` pending samples (all if None).

        Returns:
            Number of samples consumed.
        """

        delivered = 0
        while self._pending and (limit is None or delivered < limit):
            with self._lock:
                sample = self._pending.pop(0)
                subs = list(self._subs)
            if self._scheduler is not None and self._last_ts is not None:
                self._scheduler.advance(max(0, sample.timestamp - self._last_ts) / 1000.0)
            self._last_ts = sample.timestamp
            payload = payload_from_sample(sample)
            for sub in subs:
                if sub.active:
                    sub.callback(payload)
            delivered += 1
        return delivered


class BackgroundRecorder:
    """The always-on background stream.

    It never touches a session's buffer: every accepted fix is appended to the
    repository's background mirror, and the session merges that mirror on its
    own schedule. If no recording is marked active, the recorder stops itself.
    """

    def __init__(
        self,
        repository: TrackRepository,
        source: LocationSource,
        config: RecorderConfig | None = None,
    ) -> None:
        self._repo = repository
        self._source = source
        self._config = config or RecorderConfig()
        self._subscription: Subscription | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._subscription is not None

    def start(self) -> bool:
        with self._lock:
            if self._subscription is not None:
                return True
            try:
                if not self._source.request_permission():
                    logger.error("Background location permission denied")
                    return False
                self._subscription = self._source.watch_position(
                    self._on_location,
                    interval_ms=self._config.watch_interval_ms,
                    distance_m=self._config.watch_distance_m,
                )
            except Exception as exc:  # collaborator boundary
                logger.error("Error starting background location tracking: %s", exc)
                self._subscription = None
                return False
        logger.info("Background location tracking started")
        return True

    def stop(self) -> None:
        with self._lock:
            sub, self._subscription = self._subscription, None
        if sub is None:
            return
        try:
            sub.remove()
        except Exception as exc:  # collaborator boundary
            logger.error("Error stopping background location tracking: %s", exc)
        logger.info("Background location tracking stopped")

    def _on_location(self, payload: Mapping[str, Any]) -> None:
        marker = self._repo.get_marker()
        if marker is None or marker.phase is not SessionPhase.RECORDING:
            logger.info("No active tracking session, stopping background location")
            self.stop()
            return
        sample = sample_from_payload(payload, max_accuracy_m=self._config.max_accuracy_m)
        if sample is None:
            logger.debug("Background: dropped invalid location payload %r", payload)
            return
        self._repo.append_background_samples([sample])
