"""Recorder configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from track_recorder.models import MAX_ACCURACY_M

DEFAULT_STORE_PATH: Final[str] = "tracks.json"


@dataclass(frozen=True, slots=True)
class RecorderConfig:
    """Tunables for a recording session."""

    # Periodic flush of the in-progress buffer while recording.
    auto_save_interval_s: float = 10.0
    # How often samples captured by the background stream are merged into the buffer.
    background_sync_interval_s: float = 5.0
    # A start without a fix within this time continues recording without an initial point.
    initial_fix_timeout_s: float = 15.0
    # Both lat and lon deltas at or below this are a near-duplicate (~1 m).
    duplicate_epsilon_deg: float = 1e-5
    # Background samples within this many ms of a buffered sample are the same fix.
    merge_window_ms: int = 1000
    max_accuracy_m: float = MAX_ACCURACY_M
    watch_interval_ms: int = 5000
    watch_distance_m: float = 5.0
