"""Geospatial utilities (no external dependencies)."""

from __future__ import annotations

import math

from track_recorder.models import GeoSample

EARTH_RADIUS_M = 6_371_000.0  # mean Earth radius in meters


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute Haversine distance in meters between two lat/lon points.

    Args:
        lat1: Latitude 1 in degrees.
        lon1: Longitude 1 in degrees.
        lat2: Latitude 2 in degrees.
        lon2: Longitude 2 in degrees.

    Returns:
        Distance in meters.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    # rounding can push a a hair past 1.0 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def _finite(*values: float) -> bool:
    return all(math.isfinite(v) for v in values)


def distance(a: GeoSample, b: GeoSample) -> float:
    """Great-circle distance between two samples in meters.

    Non-finite coordinates contribute 0 instead of propagating NaN into sums.
    """

    if not _finite(a.latitude, a.longitude, b.latitude, b.longitude):
        return 0.0
    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)


def bearing_deg(a: GeoSample, b: GeoSample) -> float:
    """Initial bearing from a to b in degrees, normalised to [0, 360)."""

    if not _finite(a.latitude, a.longitude, b.latitude, b.longitude):
        return 0.0
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def is_near_duplicate(a: GeoSample, b: GeoSample, epsilon_deg: float) -> bool:
    """True if both latitude and longitude deltas are within epsilon_deg (~1 m at 1e-5)."""

    return abs(a.latitude - b.latitude) <= epsilon_deg and abs(a.longitude - b.longitude) <= epsilon_deg
