"""Track repository: CRUD over tracks plus the recording marker and background mirror.

Storage failures never escape this module. Reads degrade to empty results and
writes report ``False``, so a storage hiccup cannot take a recording down with it.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Final, Iterable

from track_recorder.errors import StorageError
from track_recorder.models import GeoSample, RecordingMarker, Track
from track_recorder.stats import calculate_stats
from track_recorder.storage import KeyValueStore

logger = logging.getLogger(__name__)

TRACK_KEY_PREFIX: Final[str] = "track:"
MARKER_KEY: Final[str] = "location-tracker-current-track"
BACKGROUND_KEY: Final[str] = "location-tracker-background-locations"

_STORAGE_ERRORS = (StorageError, OSError)
# json.JSONDecodeError is a ValueError
_DECODE_ERRORS = (ValueError, TypeError, KeyError, AttributeError, OverflowError)


def track_key(track_id: str) -> str:
    return f"{TRACK_KEY_PREFIX}{track_id}"


class TrackRepository:
    """Tracks persisted as one JSON blob per id in an injected key-value store."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        # Serialises read-modify-write of the background mirror.
        self._lock = threading.RLock()

    @property
    def store(self) -> KeyValueStore:
        return self._store

    def get_all_tracks(self) -> list[Track]:
        """All stored tracks, newest ``created_at`` first."""

        try:
            keys = [k for k in self._store.list_keys() if k.startswith(TRACK_KEY_PREFIX)]
        except _STORAGE_ERRORS as exc:
            logger.warning("Error listing tracks: %s", exc)
            return []

        tracks: list[Track] = []
        skipped = 0
        for key in keys:
            track = self._load(key)
            if track is None:
                skipped += 1
                continue
            tracks.append(track)
        if skipped > 0:
            logger.warning("%s stored track(s) could not be loaded and were skipped", skipped)

        tracks.sort(key=lambda t: t.created_at, reverse=True)
        return tracks

    def get_track(self, track_id: str) -> Track | None:
        return self._load(track_key(track_id))

    def find_tracks(self, query: str) -> list[Track]:
        """Tracks whose name contains ``query`` (case-insensitive)."""

        q = query.strip().lower()
        tracks = self.get_all_tracks()
        if not q:
            return tracks
        return [t for t in tracks if q in t.name.lower()]

    def save_track(self, track: Track) -> bool:
        """Upsert a track by id, recomputing its cached statistics first.

        The passed object is updated with the recomputed values.

        Returns:
            True if the record was written.
        """

        stats = calculate_stats(track.locations)
        track.total_distance = stats.distance
        track.duration = stats.duration
        try:
            blob = json.dumps(track.to_dict(), ensure_ascii=False)
            self._store.set(track_key(track.id), blob)
        except _STORAGE_ERRORS as exc:
            logger.warning("Error saving track %s: %s", track.id, exc)
            return False
        return True

    def delete_track(self, track_id: str) -> bool:
        """Remove a track; deleting an unknown id is a successful no-op."""

        try:
            self._store.remove(track_key(track_id))
        except _STORAGE_ERRORS as exc:
            logger.warning("Error deleting track %s: %s", track_id, exc)
            return False
        return True

    def _load(self, key: str) -> Track | None:
        try:
            blob = self._store.get(key)
        except _STORAGE_ERRORS as exc:
            logger.warning("Error reading %s: %s", key, exc)
            return None
        if blob is None:
            return None
        try:
            return Track.from_dict(json.loads(blob))
        except _DECODE_ERRORS as exc:
            logger.warning("Stored record %s is not a valid track: %s", key, exc)
            return None

    # -- recording marker ------------------------------------------------

    def set_marker(self, marker: RecordingMarker) -> bool:
        try:
            self._store.set(MARKER_KEY, json.dumps(marker.to_dict()))
        except _STORAGE_ERRORS as exc:
            logger.warning("Error saving current track info: %s", exc)
            return False
        return True

    def get_marker(self) -> RecordingMarker | None:
        try:
            blob = self._store.get(MARKER_KEY)
        except _STORAGE_ERRORS as exc:
            logger.warning("Error getting current track info: %s", exc)
            return None
        if blob is None:
            return None
        try:
            return RecordingMarker.from_dict(json.loads(blob))
        except _DECODE_ERRORS as exc:
            logger.warning("Discarding unreadable recording marker: %s", exc)
            return None

    def clear_marker(self) -> bool:
        try:
            self._store.remove(MARKER_KEY)
        except _STORAGE_ERRORS as exc:
            logger.warning("Error clearing current track info: %s", exc)
            return False
        return True

    # -- background mirror -----------------------------------------------

    def _read_background(self) -> list[GeoSample]:
        blob = self._store.get(BACKGROUND_KEY)
        if not blob:
            return []
        out: list[GeoSample] = []
        try:
            raw = json.loads(blob)
        except json.JSONDecodeError as exc:
            logger.warning("Background buffer unreadable, dropping it: %s", exc)
            return []
        for item in raw if isinstance(raw, list) else []:
            try:
                out.append(GeoSample.from_dict(item))
            except _DECODE_ERRORS:
                continue
        return out

    def get_background_samples(self) -> list[GeoSample]:
        with self._lock:
            try:
                return self._read_background()
            except _STORAGE_ERRORS as exc:
                logger.warning("Error reading background buffer: %s", exc)
                return []

    def append_background_samples(self, samples: Iterable[GeoSample]) -> bool:
        new = list(samples)
        if not new:
            return True
        with self._lock:
            try:
                current = self._read_background()
                current.extend(new)
                self._store.set(BACKGROUND_KEY, json.dumps([s.to_dict() for s in current]))
            except _STORAGE_ERRORS as exc:
                logger.warning("Error appending to background buffer: %s", exc)
                return False
        return True

    def drain_background_samples(self) -> list[GeoSample] | None:
        """Atomically read and clear the background mirror.

        Returns:
            The samples, or None if storage failed (the mirror is left untouched).
        """

        with self._lock:
            try:
                samples = self._read_background()
                self._store.remove(BACKGROUND_KEY)
            except _STORAGE_ERRORS as exc:
                logger.warning("Error draining background buffer: %s", exc)
                return None
        return samples

    def clear_background_samples(self) -> bool:
        with self._lock:
            try:
                self._store.remove(BACKGROUND_KEY)
            except _STORAGE_ERRORS as exc:
                logger.warning("Error clearing background buffer: %s", exc)
                return False
        return True
