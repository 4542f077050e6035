"""KML (polyline) and GPX (trackpoint) export and lenient import.

Round-trip guarantees:
    - GPX keeps latitude, longitude, altitude, speed and the exact millisecond timestamp.
    - KML keeps latitude, longitude and altitude only. Its coordinate list has no
      times, so imported points get synthetic, strictly increasing timestamps
      (import time + index * 1000 ms). KML writes 0 for an unknown altitude, so an
      imported altitude of exactly 0 reads back as unknown; a real sea-level 0.0
      survives only through GPX.
"""

from __future__ import annotations

import logging
import math
import re
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Final, Sequence

import gpxpy
import gpxpy.gpx

from track_recorder.geo import bearing_deg
from track_recorder.models import DEFAULT_TZ, GeoSample, Track
from track_recorder.stats import calculate_stats
from track_recorder.timeutils import dt_from_epoch_ms, epoch_ms_from_iso, now_ms

logger = logging.getLogger(__name__)

KML_NS: Final[str] = "http://www.opengis.net/kml/2.2"
KML_MIME: Final[str] = "application/vnd.google-earth.kml+xml"
GPX_MIME: Final[str] = "application/gpx+xml"
SUPPORTED_EXTENSIONS: Final[tuple[str, ...]] = (".kml", ".gpx")
SYNTHETIC_STEP_MS: Final[int] = 1000

_START_ICON = "http://maps.google.com/mapfiles/kml/paddle/grn-circle.png"
_END_ICON = "http://maps.google.com/mapfiles/kml/paddle/red-circle.png"

_COORDS_RE = re.compile(r"<(?:[\w.-]+:)?coordinates\b[^>]*>(.*?)</(?:[\w.-]+:)?coordinates\s*>", re.S)
_TRKPT_RE = re.compile(r"<(?:[\w.-]+:)?trkpt\b([^>]*?)(?:/>|>(.*?)</(?:[\w.-]+:)?trkpt\s*>)", re.S)
_LAT_RE = re.compile(r"(?<![\w:.-])lat\s*=\s*([\"'])(.*?)\1", re.S)
_LON_RE = re.compile(r"(?<![\w:.-])lon\s*=\s*([\"'])(.*?)\1", re.S)
_ELE_RE = re.compile(r"<(?:[\w.-]+:)?ele\b[^>]*>([^<]*)<")
_TIME_RE = re.compile(r"<(?:[\w.-]+:)?time\b[^>]*>([^<]*)<")
_SPEED_RE = re.compile(r"<(?:[\w.-]+:)?speed\b[^>]*>([^<]*)<")
_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9]")
_EXT_RE = re.compile(r"\.(kml|gpx)$", re.I)


def _num(value: float) -> str:
    # repr keeps the shortest round-trippable form of a float
    return repr(float(value))


def _parse_float(text: str | None) -> float | None:
    if text is None:
        return None
    try:
        v = float(text.strip())
    except ValueError:
        return None
    return v if math.isfinite(v) else None


# -- export -----------------------------------------------------------------


def _local_time(epoch_ms: int, tz_name: str) -> str:
    return dt_from_epoch_ms(epoch_ms, tz_name).isoformat(sep=" ", timespec="seconds")


def _marker_description(label: str, sample: GeoSample, tz_name: str, heading: float | None = None) -> str:
    lines = [
        f"{label}: {_local_time(sample.timestamp, tz_name)}",
        f"Accuracy: {round(sample.accuracy)}m" if sample.accuracy is not None else "Accuracy: Unknown",
    ]
    if sample.altitude is not None:
        lines.append(f"Altitude: {round(sample.altitude)}m")
    if heading is not None:
        lines.append(f"Heading: {heading:.0f}°")
    return "\n".join(lines)


def _point_placemark(doc: ET.Element, name: str, description: str, icon: str, sample: GeoSample) -> None:
    pm = ET.SubElement(doc, "Placemark")
    ET.SubElement(pm, "name").text = name
    ET.SubElement(pm, "description").text = description
    icon_style = ET.SubElement(ET.SubElement(pm, "Style"), "IconStyle")
    ET.SubElement(ET.SubElement(icon_style, "Icon"), "href").text = icon
    point = ET.SubElement(pm, "Point")
    ET.SubElement(point, "coordinates").text = _kml_coord(sample)


def _kml_coord(sample: GeoSample) -> str:
    alt = sample.altitude if sample.altitude is not None else 0
    return f"{_num(sample.longitude)},{_num(sample.latitude)},{_num(alt)}"


def export_kml(track: Track, tz_name: str = DEFAULT_TZ) -> str:
    """Render a track as a KML document.

    The document holds one LineString through every point, a start placemark and,
    for two or more points, an end placemark with the heading of the last segment.

    Returns:
        KML text, or "" for a track without points.
    """

    locs = track.locations
    if not locs:
        return ""

    root = ET.Element("kml", {"xmlns": KML_NS})
    doc = ET.SubElement(root, "Document")
    ET.SubElement(doc, "name").text = track.name
    ET.SubElement(doc, "description").text = f"GPS track recorded on {_local_time(locs[0].timestamp, tz_name)[:10]}"

    style = ET.SubElement(doc, "Style", {"id": "trackStyle"})
    line_style = ET.SubElement(style, "LineStyle")
    ET.SubElement(line_style, "color").text = "ff0000ff"
    ET.SubElement(line_style, "width").text = "3"

    line_pm = ET.SubElement(doc, "Placemark")
    ET.SubElement(line_pm, "name").text = track.name
    ET.SubElement(line_pm, "styleUrl").text = "#trackStyle"
    line = ET.SubElement(line_pm, "LineString")
    ET.SubElement(line, "tessellate").text = "1"
    ET.SubElement(line, "coordinates").text = "\n".join(_kml_coord(s) for s in locs)

    first = locs[0]
    _point_placemark(doc, "Start Point", _marker_description("Started at", first, tz_name), _START_ICON, first)
    if len(locs) > 1:
        last = locs[-1]
        heading = bearing_deg(locs[-2], last)
        _point_placemark(
            doc, "End Point", _marker_description("Ended at", last, tz_name, heading), _END_ICON, last
        )

    ET.indent(root)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode") + "\n"


def export_gpx(track: Track, tz_name: str = DEFAULT_TZ) -> str:
    """Render a track as a GPX 1.1 document (one trkseg, one trkpt per sample).

    Returns:
        GPX text, or "" for a track without points.
    """

    locs = track.locations
    if not locs:
        return ""

    gpx = gpxpy.gpx.GPX()
    gpx.creator = "track_recorder"
    gpx.name = track.name
    gpx.description = f"GPS track recorded on {_local_time(locs[0].timestamp, tz_name)[:10]}"
    gpx.time = dt_from_epoch_ms(locs[0].timestamp)

    gpx_track = gpxpy.gpx.GPXTrack(name=track.name)
    gpx.tracks.append(gpx_track)
    segment = gpxpy.gpx.GPXTrackSegment()
    gpx_track.segments.append(segment)

    for s in locs:
        point = gpxpy.gpx.GPXTrackPoint(
            latitude=s.latitude,
            longitude=s.longitude,
            elevation=s.altitude,
            time=dt_from_epoch_ms(s.timestamp),
        )
        if s.speed is not None:
            speed = ET.Element("speed")
            speed.text = _num(s.speed)
            point.extensions.append(speed)
        segment.points.append(point)

    return gpx.to_xml(version="1.1")


# -- import -----------------------------------------------------------------


def parse_kml(text: str, import_time_ms: int | None = None) -> list[GeoSample]:
    """Parse the first coordinate list of a KML document.

    Triples whose longitude or latitude is not a finite number are skipped. An
    altitude of exactly 0 is what export writes for "unknown" and reads back as None.
    """

    m = _COORDS_RE.search(text or "")
    if m is None:
        return []
    base = import_time_ms if import_time_ms is not None else now_ms()

    points: list[GeoSample] = []
    skipped = 0
    for index, token in enumerate(m.group(1).split()):
        parts = token.split(",")
        lon = _parse_float(parts[0]) if len(parts) >= 2 else None
        lat = _parse_float(parts[1]) if len(parts) >= 2 else None
        if lon is None or lat is None:
            skipped += 1
            continue
        alt = _parse_float(parts[2]) if len(parts) > 2 else None
        points.append(
            GeoSample(
                latitude=lat,
                longitude=lon,
                timestamp=base + index * SYNTHETIC_STEP_MS,
                altitude=alt if alt else None,
            )
        )
    if skipped:
        logger.warning("KML: skipped %s invalid coordinate(s)", skipped)
    return points


def parse_gpx(text: str, import_time_ms: int | None = None) -> list[GeoSample]:
    """Parse every trkpt of a GPX document, skipping points without numeric lat/lon.

    Missing or unparseable times are replaced by synthetic ones
    (import time + index * 1000 ms).
    """

    base = import_time_ms if import_time_ms is not None else now_ms()
    points: list[GeoSample] = []
    skipped = 0
    for index, m in enumerate(_TRKPT_RE.finditer(text or "")):
        attrs, body = m.group(1), m.group(2) or ""
        lat_m = _LAT_RE.search(attrs)
        lon_m = _LON_RE.search(attrs)
        lat = _parse_float(lat_m.group(2)) if lat_m else None
        lon = _parse_float(lon_m.group(2)) if lon_m else None
        if lat is None or lon is None:
            skipped += 1
            continue

        ele_m = _ELE_RE.search(body)
        time_m = _TIME_RE.search(body)
        speed_m = _SPEED_RE.search(body)
        ts = epoch_ms_from_iso(time_m.group(1)) if time_m else None
        points.append(
            GeoSample(
                latitude=lat,
                longitude=lon,
                timestamp=ts if ts is not None else base + index * SYNTHETIC_STEP_MS,
                altitude=_parse_float(ele_m.group(1)) if ele_m else None,
                speed=_parse_float(speed_m.group(1)) if speed_m else None,
            )
        )
    if skipped:
        logger.warning("GPX: skipped %s track point(s) without valid lat/lon", skipped)
    return points


def parse_track_text(text: str, filename: str, import_time_ms: int | None = None) -> list[GeoSample]:
    """Parse KML or GPX text, chosen by the file extension.

    Raises:
        ValueError: If the extension is neither .kml nor .gpx.
    """

    lower = filename.lower()
    if lower.endswith(".kml"):
        return parse_kml(text, import_time_ms)
    if lower.endswith(".gpx"):
        return parse_gpx(text, import_time_ms)
    raise ValueError(f"Unsupported file type: {filename!r} (expected .kml or .gpx)")


@dataclass(frozen=True, slots=True)
class ImportResult:
    track: Track | None
    message: str

    @property
    def ok(self) -> bool:
        return self.track is not None


def import_track(text: str, filename: str, import_time_ms: int | None = None) -> ImportResult:
    """Build a brand-new, complete track from KML/GPX text.

    The caller persists the result; nothing here touches storage.
    """

    if not filename.lower().endswith(SUPPORTED_EXTENSIONS):
        return ImportResult(None, "Please select only KML or GPX files")

    ts = import_time_ms if import_time_ms is not None else now_ms()
    locations = parse_track_text(text, filename, ts)
    if not locations:
        return ImportResult(None, "No valid location data found in the file")

    stem = _EXT_RE.sub("", Path(filename).name)
    stats = calculate_stats(locations)
    track = Track(
        id=f"imported_{ts}_{uuid.uuid4().hex[:8]}",
        name=f"Imported: {stem}",
        locations=locations,
        created_at=locations[0].timestamp,
        last_modified=ts,
        is_complete=True,
        total_distance=stats.distance,
        duration=stats.duration,
    )
    return ImportResult(track, f"Imported {len(locations)} points")


# -- export helpers -------------------------------------------------------------


def export_filename(name: str, ext: str, when: date | None = None) -> str:
    """``{name with non-alphanumerics as _}_{YYYY-MM-DD}.{ext}``."""

    day = when if when is not None else datetime.now(UTC).date()
    if isinstance(day, datetime):
        day = day.date()
    safe = _SANITIZE_RE.sub("_", name or "track")
    return f"{safe}_{day.isoformat()}.{ext.lstrip('.').lower()}"


@dataclass(frozen=True, slots=True)
class ExportResult:
    content: str
    filename: str
    mime_type: str
    message: str = ""

    @property
    def ok(self) -> bool:
        return bool(self.content)


def export_track(
    track: Track,
    fmt: str,
    *,
    when: date | None = None,
    tz_name: str = DEFAULT_TZ,
) -> ExportResult:
    """Export a track as "kml" or "gpx" together with its conventional filename.

    Raises:
        ValueError: If ``fmt`` is not a supported format.
    """

    fmt = fmt.lower().lstrip(".")
    if fmt == "kml":
        content, mime = export_kml(track, tz_name), KML_MIME
    elif fmt == "gpx":
        content, mime = export_gpx(track, tz_name), GPX_MIME
    else:
        raise ValueError(f"Unsupported export format: {fmt!r} (expected kml or gpx)")

    filename = export_filename(track.name, fmt, when)
    if not content:
        return ExportResult("", filename, mime, "No location data to export")
    return ExportResult(content, filename, mime, f"Exported {len(track.locations)} points")


def samples_for_display(locations: Sequence[GeoSample]) -> dict[str, list[float]]:
    """Column-wise lat/lon lists, the shape map widgets expect."""

    return {
        "lat": [s.latitude for s in locations],
        "lon": [s.longitude for s in locations],
    }
