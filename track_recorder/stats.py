"""Track statistics: distance, duration, elevation, speed and playback position."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from track_recorder.geo import distance
from track_recorder.models import GeoSample


@dataclass(frozen=True, slots=True)
class TrackStats:
    """Minimum statistics contract (meters, seconds)."""

    distance: float
    duration: float


@dataclass(frozen=True, slots=True)
class ExtendedTrackStats:
    """Full statistics for display.

    Attributes:
        distance: Total distance in meters.
        duration: Seconds between first and last sample (never negative).
        elevation_gain: Sum of positive altitude deltas in meters.
        elevation_loss: Sum of negative altitude deltas in meters (as a positive number).
        altitude_min: Lowest known altitude, None if no sample has altitude.
        altitude_max: Highest known altitude, None if no sample has altitude.
        max_speed: Highest reported speed in m/s (unknown speeds count as 0).
        avg_speed: distance / duration in km/h, 0 when duration is 0.
    """

    distance: float
    duration: float
    elevation_gain: float
    elevation_loss: float
    altitude_min: float | None
    altitude_max: float | None
    max_speed: float
    avg_speed: float

    @property
    def altitude_range(self) -> float:
        if self.altitude_min is None or self.altitude_max is None:
            return 0.0
        return self.altitude_max - self.altitude_min


def total_distance_m(locations: Sequence[GeoSample]) -> float:
    """Sum of consecutive great-circle segments; 0 for fewer than 2 points."""

    total = 0.0
    for i in range(1, len(locations)):
        total += distance(locations[i - 1], locations[i])
    return total


def duration_s(locations: Sequence[GeoSample]) -> float:
    """Seconds between first and last sample, clamped at 0."""

    if len(locations) < 2:
        return 0.0
    return max(0.0, (locations[-1].timestamp - locations[0].timestamp) / 1000.0)


def calculate_stats(locations: Sequence[GeoSample]) -> TrackStats:
    return TrackStats(distance=total_distance_m(locations), duration=duration_s(locations))


def average_speed_kmh(distance_m: float, seconds: float) -> float:
    """Average speed in km/h; 0 when there is no elapsed time."""

    if seconds <= 0:
        return 0.0
    return distance_m / seconds * 3.6


def calculate_extended_stats(locations: Sequence[GeoSample]) -> ExtendedTrackStats:
    """Compute distance, duration, elevation and speed statistics.

    Elevation gain/loss only accumulates over consecutive pairs where both samples
    carry an altitude; a pair with a missing altitude on either side is skipped.
    Min/max altitude is seeded from the first sample that has one.
    """

    base = calculate_stats(locations)

    gain = 0.0
    loss = 0.0
    for i in range(1, len(locations)):
        prev_alt = locations[i - 1].altitude
        cur_alt = locations[i].altitude
        if prev_alt is None or cur_alt is None:
            continue
        diff = cur_alt - prev_alt
        if diff > 0:
            gain += diff
        else:
            loss += -diff

    alt_min: float | None = None
    alt_max: float | None = None
    for loc in locations:
        if loc.altitude is None:
            continue
        if alt_min is None or loc.altitude < alt_min:
            alt_min = loc.altitude
        if alt_max is None or loc.altitude > alt_max:
            alt_max = loc.altitude

    max_speed = 0.0
    for loc in locations:
        if loc.speed is not None and math.isfinite(loc.speed) and loc.speed > max_speed:
            max_speed = loc.speed

    return ExtendedTrackStats(
        distance=base.distance,
        duration=base.duration,
        elevation_gain=gain,
        elevation_loss=loss,
        altitude_min=alt_min,
        altitude_max=alt_max,
        max_speed=max_speed,
        avg_speed=average_speed_kmh(base.distance, base.duration),
    )


@dataclass(frozen=True, slots=True)
class PlaybackPosition:
    """Where a replay of a saved track currently is."""

    index: int
    location: GeoSample
    progress: float
    time_elapsed: float
    distance_traveled: float


def playback_position(locations: Sequence[GeoSample], index: int) -> PlaybackPosition | None:
    """Position at ``index`` (clamped into range); None for an empty track."""

    if not locations:
        return None
    idx = max(0, min(index, len(locations) - 1))
    loc = locations[idx]
    progress = idx / (len(locations) - 1) if len(locations) > 1 else 0.0
    return PlaybackPosition(
        index=idx,
        location=loc,
        progress=progress,
        time_elapsed=(loc.timestamp - locations[0].timestamp) / 1000.0,
        distance_traveled=total_distance_m(locations[: idx + 1]),
    )


def format_distance(meters: float) -> str:
    if meters >= 1000:
        return f"{meters / 1000.0:.2f} km"
    return f"{int(round(meters))} m"


def format_duration(seconds: float) -> str:
    s = int(round(max(0.0, seconds)))
    h = s // 3600
    m = (s % 3600) // 60
    sec = s % 60
    return f"{h:02d}:{m:02d}:{sec:02d}"
