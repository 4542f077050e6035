from datetime import date

import pytest

from track_recorder.codec import (
    export_filename,
    export_gpx,
    export_kml,
    export_track,
    import_track,
    parse_gpx,
    parse_kml,
    parse_track_text,
)
from track_recorder.models import GeoSample, Track


def _track(locations, name="Morning walk"):
    return Track(id="t1", name=name, locations=locations, created_at=locations[0].timestamp if locations else 0)


@pytest.fixture()
def walk():
    return _track(
        [
            GeoSample(52.520008, 13.404954, 1_714_550_400_123, accuracy=4.0, speed=1.4, altitude=34.5),
            GeoSample(52.520512, 13.405871, 1_714_550_405_456, speed=1.6),
            GeoSample(52.521034, 13.406702, 1_714_550_410_789, altitude=36.25),
        ]
    )


def test_empty_track_exports_nothing():
    empty = Track(id="e", name="Empty")
    assert export_kml(empty) == ""
    assert export_gpx(empty) == ""
    result = export_track(empty, "gpx", when=date(2024, 5, 1))
    assert not result.ok
    assert result.message == "No location data to export"


def test_gpx_round_trip_is_exact(walk):
    text = export_gpx(walk)
    assert "<trkpt" in text
    parsed = parse_gpx(text, import_time_ms=0)

    assert len(parsed) == len(walk.locations)
    for got, want in zip(parsed, walk.locations):
        assert got.timestamp == want.timestamp
        assert got.altitude == want.altitude
        assert got.speed == want.speed
        assert got.latitude == pytest.approx(want.latitude, abs=1e-6)
        assert got.longitude == pytest.approx(want.longitude, abs=1e-6)


def test_gpx_metadata(walk):
    text = export_gpx(walk)
    assert "<name>Morning walk</name>" in text
    assert "GPS track recorded on 2024-05-01" in text


def test_kml_round_trip_keeps_positions(walk):
    text = export_kml(walk)
    parsed = parse_kml(text, import_time_ms=5000)

    assert [(p.latitude, p.longitude, p.altitude) for p in parsed] == [
        (s.latitude, s.longitude, s.altitude) for s in walk.locations
    ]
    assert [p.timestamp for p in parsed] == [5000, 6000, 7000]


def test_kml_start_and_end_markers(walk):
    text = export_kml(walk)
    assert "<name>Start Point</name>" in text
    assert "<name>End Point</name>" in text
    assert "Accuracy: 4m" in text
    assert "Heading:" in text

    single = export_kml(_track(walk.locations[:1]))
    assert "Start Point" in single
    assert "End Point" not in single


def test_kml_parse_is_lenient():
    text = """<kml><Document><Placemark><kml:coordinates>
        13.4,52.5,10  bad,values  nan,52.6  13.5  13.6,52.7
    </kml:coordinates></Placemark>
    <Placemark><coordinates>0,0,0</coordinates></Placemark></Document></kml>"""
    parsed = parse_kml(text, import_time_ms=1000)
    assert [(p.longitude, p.latitude, p.altitude) for p in parsed] == [(13.4, 52.5, 10.0), (13.6, 52.7, None)]
    assert [p.timestamp for p in parsed] == [1000, 5000]
    assert parse_kml("<kml/>") == []


def test_gpx_parse_is_lenient():
    text = """<gpx><trk><trkseg>
      <trkpt lon="13.4"><ele>1</ele></trkpt>
      <trkpt lat="52.5" lon="13.4"/>
      <trkpt lat='52.6' lon='13.5'><ele>40.5</ele><time>2024-05-01T08:00:00Z</time>
        <extensions><speed>2.5</speed></extensions></trkpt>
      <trkpt lat="52.7" lon="13.6"><time>not a time</time></trkpt>
    </trkseg></trk></gpx>"""
    parsed = parse_gpx(text, import_time_ms=10_000)
    assert len(parsed) == 3
    assert parsed[0].timestamp == 11_000
    assert parsed[0].altitude is None
    assert parsed[1].timestamp == 1_714_550_400_000
    assert parsed[1].altitude == 40.5
    assert parsed[1].speed == 2.5
    assert parsed[2].timestamp == 13_000


def test_parse_track_text_dispatches_on_extension(walk):
    assert len(parse_track_text(export_gpx(walk), "a.GPX")) == 3
    assert len(parse_track_text(export_kml(walk), "a.kml")) == 3
    with pytest.raises(ValueError):
        parse_track_text("", "a.txt")


def test_import_track(walk):
    result = import_track(export_gpx(walk), "morning walk.GPX", import_time_ms=42)
    assert result.ok
    track = result.track
    assert track.id.startswith("imported_42_")
    assert track.name == "Imported: morning walk"
    assert track.is_complete
    assert track.created_at == walk.locations[0].timestamp
    assert track.last_modified == 42
    assert track.total_distance > 0
    assert track.duration == pytest.approx(10.666)


def test_import_rejections():
    assert import_track("<kml/>", "track.csv").message == "Please select only KML or GPX files"
    empty = import_track("<gpx></gpx>", "track.gpx")
    assert empty.track is None
    assert empty.message == "No valid location data found in the file"


def test_export_filename():
    assert export_filename("My Walk #1", "kml", date(2024, 5, 1)) == "My_Walk__1_2024-05-01.kml"
    assert export_filename("", ".GPX", date(2024, 5, 1)) == "track_2024-05-01.gpx"


def test_export_track(walk):
    result = export_track(walk, "KML", when=date(2024, 5, 1))
    assert result.ok
    assert result.filename == "Morning_walk_2024-05-01.kml"
    assert result.mime_type == "application/vnd.google-earth.kml+xml"
    with pytest.raises(ValueError):
        export_track(walk, "csv")


def test_sea_level_altitude_survives_gpx_but_not_kml():
    track = Track(id="t", name="Beach", locations=[GeoSample(43.3, 5.3, 1_714_550_400_000, altitude=0.0)])
    assert parse_gpx(export_gpx(track))[0].altitude == 0.0
    assert parse_kml(export_kml(track), import_time_ms=0)[0].altitude is None
