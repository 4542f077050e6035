"""Data models for geo samples, tracks and the recording marker."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Final, Mapping

from track_recorder.timeutils import now_ms


DEFAULT_TZ: Final[str] = "UTC"

# Fixes worse than this are treated as noise by the live location path.
MAX_ACCURACY_M: Final[float] = 1000.0


@dataclass(frozen=True, slots=True)
class GeoSample:
    """A single timestamped position fix.

    Attributes:
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        timestamp: Unix epoch milliseconds.
        accuracy: Horizontal accuracy in meters, None if unknown.
        speed: Speed in meters/second, None if unknown.
        heading: Course over ground in degrees (0-360), None if unknown.
        altitude: Altitude in meters, None if unknown.
    """

    latitude: float
    longitude: float
    timestamp: int
    accuracy: float | None = None
    speed: float | None = None
    heading: float | None = None
    altitude: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GeoSample:
        """Rebuild a sample from its stored dict.

        Raises:
            ValueError: If latitude/longitude/timestamp are missing or not numeric.
        """

        lat = _finite_or_none(data.get("latitude"))
        lon = _finite_or_none(data.get("longitude"))
        ts = _epoch_ms_or_none(data.get("timestamp"))
        if lat is None or lon is None or ts is None:
            raise ValueError(f"invalid stored sample: {dict(data)!r}")
        return cls(
            latitude=lat,
            longitude=lon,
            timestamp=ts,
            accuracy=_finite_or_none(data.get("accuracy")),
            speed=_finite_or_none(data.get("speed")),
            heading=_finite_or_none(data.get("heading")),
            altitude=_finite_or_none(data.get("altitude")),
        )


def _finite_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(f):
        return None
    return f


def _epoch_ms_or_none(value: Any) -> int | None:
    f = _finite_or_none(value)
    return int(f) if f is not None else None


def sample_from_payload(
    payload: GeoSample | Mapping[str, Any] | None,
    *,
    max_accuracy_m: float = MAX_ACCURACY_M,
    captured_at_ms: int | None = None,
) -> GeoSample | None:
    """Validate a raw location-source payload into a GeoSample.

    The payload may carry the coordinates at the top level or under a ``coords``
    mapping (the shape most location APIs deliver). Invalid payloads are dropped,
    never raised.

    Args:
        payload: Raw payload or an already-built GeoSample.
        max_accuracy_m: Fixes with a worse horizontal accuracy are dropped.
        captured_at_ms: Timestamp to use when the payload has none (defaults to now).

    Returns:
        GeoSample, or None if the payload has no usable latitude/longitude.
    """

    if payload is None:
        return None
    if isinstance(payload, GeoSample):
        sample = payload
    else:
        coords = payload.get("coords")
        src: Mapping[str, Any] = coords if isinstance(coords, Mapping) else payload
        lat = _finite_or_none(src.get("latitude"))
        lon = _finite_or_none(src.get("longitude"))
        if lat is None or lon is None:
            return None

        timestamp = _epoch_ms_or_none(payload.get("timestamp", src.get("timestamp")))
        if timestamp is None:
            timestamp = captured_at_ms if captured_at_ms is not None else now_ms()

        sample = GeoSample(
            latitude=lat,
            longitude=lon,
            timestamp=timestamp,
            accuracy=_finite_or_none(src.get("accuracy")),
            speed=_finite_or_none(src.get("speed")),
            heading=_finite_or_none(src.get("heading")),
            altitude=_finite_or_none(src.get("altitude")),
        )

    if not (math.isfinite(sample.latitude) and math.isfinite(sample.longitude)):
        return None
    if abs(sample.latitude) > 90.0 or abs(sample.longitude) > 180.0:
        return None
    if sample.accuracy is not None and sample.accuracy > max_accuracy_m:
        return None
    return sample


@dataclass(slots=True)
class Track:
    """A named recording: ordered samples plus cached statistics.

    Note:
        ``total_distance`` and ``duration`` are a cache of what ``locations``
        already says; the repository recomputes them on every save.
    """

    id: str
    name: str
    locations: list[GeoSample] = field(default_factory=list)
    created_at: int = 0
    last_modified: int = 0
    is_complete: bool = False
    total_distance: float = 0.0
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "locations": [s.to_dict() for s in self.locations],
            "created_at": self.created_at,
            "last_modified": self.last_modified,
            "is_complete": self.is_complete,
            "total_distance": self.total_distance,
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Track:
        """Rebuild a track from its stored dict.

        Stored samples that cannot be decoded are skipped.

        Raises:
            ValueError: If the record has no id.
        """

        track_id = data.get("id")
        if not track_id:
            raise ValueError("stored track has no id")

        locations: list[GeoSample] = []
        for raw in data.get("locations") or []:
            try:
                locations.append(GeoSample.from_dict(raw))
            except (ValueError, TypeError, AttributeError, OverflowError):
                continue

        return cls(
            id=str(track_id),
            name=str(data.get("name", "") or ""),
            locations=locations,
            created_at=int(data.get("created_at", 0) or 0),
            last_modified=int(data.get("last_modified", 0) or 0),
            is_complete=bool(data.get("is_complete", False)),
            total_distance=float(data.get("total_distance", 0.0) or 0.0),
            duration=float(data.get("duration", 0.0) or 0.0),
        )


class SessionPhase(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class RecordingMarker:
    """Persisted identity of an in-progress recording (crash/background recovery)."""

    track_id: str
    track_name: str
    phase: SessionPhase
    started_at: int

    @property
    def is_active(self) -> bool:
        return self.phase in (SessionPhase.RECORDING, SessionPhase.PAUSED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "track_id": self.track_id,
            "track_name": self.track_name,
            "phase": self.phase.value,
            "started_at": self.started_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RecordingMarker:
        return cls(
            track_id=str(data["track_id"]),
            track_name=str(data.get("track_name", "") or ""),
            phase=SessionPhase(data.get("phase", SessionPhase.RECORDING.value)),
            started_at=int(data.get("started_at", 0) or 0),
        )
