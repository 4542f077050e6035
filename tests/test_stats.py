import pytest

from track_recorder.models import GeoSample
from track_recorder.stats import (
    average_speed_kmh,
    calculate_extended_stats,
    calculate_stats,
    format_distance,
    format_duration,
    playback_position,
)


def _s(lat, lon, ts, *, altitude=None, speed=None):
    return GeoSample(latitude=lat, longitude=lon, timestamp=ts, altitude=altitude, speed=speed)


def test_empty_and_single_point_tracks_are_zero():
    for locs in ([], [_s(1.0, 2.0, 1000)]):
        st = calculate_stats(locs)
        assert st.distance == 0.0
        assert st.duration == 0.0
        ext = calculate_extended_stats(locs)
        assert ext.elevation_gain == 0.0
        assert ext.elevation_loss == 0.0
        assert ext.avg_speed == 0.0


def test_appending_later_sample_never_decreases_stats():
    locs = [_s(50.0, 8.0, 0), _s(50.001, 8.0, 5000)]
    before = calculate_stats(locs)
    for extra in (_s(50.002, 8.001, 9000), _s(50.002, 8.001, 9000), _s(49.0, 7.0, 20000)):
        locs.append(extra)
        after = calculate_stats(locs)
        assert after.distance >= before.distance
        assert after.duration >= before.duration
        before = after


def test_duration_is_clamped_for_out_of_order_timestamps():
    assert calculate_stats([_s(0, 0, 5000), _s(0, 0.001, 1000)]).duration == 0.0


def test_elevation_skips_pairs_with_unknown_altitude():
    locs = [_s(0, 0, 0, altitude=10.0), _s(0, 0.001, 1000), _s(0, 0.002, 2000, altitude=15.0)]
    ext = calculate_extended_stats(locs)
    assert ext.elevation_gain == 0.0
    assert ext.elevation_loss == 0.0
    assert ext.altitude_min == 10.0
    assert ext.altitude_max == 15.0
    assert ext.altitude_range == 5.0


def test_elevation_gain_and_loss():
    alts = [100.0, 104.0, 101.0, 103.5]
    locs = [_s(0, i * 0.001, i * 1000, altitude=a) for i, a in enumerate(alts)]
    ext = calculate_extended_stats(locs)
    assert ext.elevation_gain == pytest.approx(6.5)
    assert ext.elevation_loss == pytest.approx(3.0)


def test_altitude_range_unknown_without_any_altitude():
    ext = calculate_extended_stats([_s(0, 0, 0), _s(0, 0.001, 1000)])
    assert ext.altitude_min is None
    assert ext.altitude_max is None
    assert ext.altitude_range == 0.0


def test_max_speed_treats_unknown_as_zero():
    assert calculate_extended_stats([_s(0, 0, 0), _s(0, 0.001, 1000)]).max_speed == 0.0
    locs = [_s(0, 0, 0, speed=1.5), _s(0, 0.001, 1000), _s(0, 0.002, 2000, speed=3.25)]
    assert calculate_extended_stats(locs).max_speed == 3.25


def test_average_speed():
    assert average_speed_kmh(1000.0, 360.0) == pytest.approx(10.0)
    assert average_speed_kmh(1000.0, 0.0) == 0.0


def test_playback_position_clamps_index():
    locs = [_s(0, 0, 0), _s(0, 0.001, 10_000), _s(0, 0.002, 30_000)]
    assert playback_position([], 0) is None

    mid = playback_position(locs, 1)
    assert mid.index == 1
    assert mid.progress == pytest.approx(0.5)
    assert mid.time_elapsed == 10.0
    assert mid.distance_traveled == pytest.approx(calculate_stats(locs[:2]).distance)

    end = playback_position(locs, 99)
    assert end.index == 2
    assert end.progress == 1.0
    assert playback_position(locs, -5).index == 0


def test_formatting():
    assert format_distance(850.4) == "850 m"
    assert format_distance(1250.0) == "1.25 km"
    assert format_duration(3725) == "01:02:05"
    assert format_duration(-3) == "00:00:00"
