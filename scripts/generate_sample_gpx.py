from __future__ import annotations

import argparse
import math
import random
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Final

import gpxpy
import gpxpy.gpx


EARTH_RADIUS_M: Final[float] = 6_371_000.0


@dataclass(frozen=True, slots=True)
class Start:
    name: str
    lat: float
    lon: float
    altitude: float


def _step(lat: float, lon: float, heading_deg: float, meters: float) -> tuple[float, float]:
    """Move ``meters`` along ``heading_deg`` (flat-earth approximation, fine for a few metres)."""

    d_lat = meters * math.cos(math.radians(heading_deg)) / EARTH_RADIUS_M
    d_lon = meters * math.sin(math.radians(heading_deg)) / (EARTH_RADIUS_M * math.cos(math.radians(lat)))
    return lat + math.degrees(d_lat), lon + math.degrees(d_lon)


def generate_points(
    *,
    points: int,
    seed: int,
    start_utc: datetime,
    start: Start,
) -> list[gpxpy.gpx.GPXTrackPoint]:
    """Generate a walk with realistic-ish pauses, turns and hills."""

    rng = random.Random(seed)
    cur = start_utc
    lat, lon, alt = start.lat, start.lon, start.altitude
    heading = rng.uniform(0, 360)

    out: list[gpxpy.gpx.GPXTrackPoint] = []
    for _ in range(points):
        # Mostly walk, sometimes stand still at a crossing
        speed = 0.0 if rng.random() < 0.05 else rng.uniform(1.0, 1.8)
        dt_s = rng.choice([1, 1, 2, 5])
        heading = (heading + rng.uniform(-20, 20)) % 360
        lat, lon = _step(lat, lon, heading, speed * dt_s)
        alt = max(0.0, alt + rng.uniform(-0.6, 0.7))
        cur = cur + timedelta(seconds=dt_s)

        point = gpxpy.gpx.GPXTrackPoint(
            latitude=round(lat, 7),
            longitude=round(lon, 7),
            elevation=round(alt, 1),
            time=cur,
        )
        ext = ET.Element("speed")
        ext.text = f"{speed:.2f}"
        point.extensions.append(ext)
        out.append(point)
    return out


def main() -> int:
    p = argparse.ArgumentParser(description="Generate a synthetic GPX walk for demo/testing (privacy-safe).")
    p.add_argument("--out", type=str, default="sample_data/walk.gpx", help="Output GPX path")
    p.add_argument("--points", type=int, default=300, help="Number of track points")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument(
        "--start",
        type=str,
        default="2025-01-01 08:00:00",
        help="Start time in UTC, e.g. '2025-01-01 08:00:00'",
    )
    args = p.parse_args()

    start_utc = datetime.fromisoformat(args.start).replace(tzinfo=UTC)
    start = Start("city_park", 52.5200000, 13.4050000, 34.0)

    gpx = gpxpy.gpx.GPX()
    gpx.creator = "generate_sample_gpx"
    gpx.name = f"Sample walk ({start.name})"
    gpx.time = start_utc
    track = gpxpy.gpx.GPXTrack(name=gpx.name)
    gpx.tracks.append(track)
    segment = gpxpy.gpx.GPXTrackSegment()
    track.segments.append(segment)
    segment.points.extend(generate_points(points=args.points, seed=args.seed, start_utc=start_utc, start=start))

    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(gpx.to_xml(version="1.1"), encoding="utf-8")

    print(f"Generated: {out_path} (points={args.points}, seed={args.seed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
