import threading

import pytest

from track_recorder.errors import LocationPermissionError, LocationTimeoutError
from track_recorder.location import ReplayLocationSource, payload_from_sample
from track_recorder.models import GeoSample, sample_from_payload
from track_recorder.scheduler import ManualScheduler, ThreadingScheduler


def _samples():
    return [GeoSample(1.0, 1.0, 10_000), GeoSample(1.001, 1.0, 3_000), GeoSample(1.002, 1.0, 25_000)]


def test_payload_round_trip():
    sample = GeoSample(1.0, 2.0, 3, accuracy=4.0, speed=5.0, heading=6.0, altitude=7.0)
    assert sample_from_payload(payload_from_sample(sample)) == sample


def test_replay_delivers_in_timestamp_order_and_advances_clock():
    scheduler = ManualScheduler()
    ticks: list[float] = []
    scheduler.schedule_periodic(5.0, lambda: ticks.append(scheduler.now), "tick")
    source = ReplayLocationSource(_samples(), scheduler=scheduler)

    assert source.get_current_position(15.0)["timestamp"] == 3_000
    got: list[int] = []
    sub = source.watch_position(lambda p: got.append(p["timestamp"]))
    assert source.next_timestamp == 10_000
    assert source.play(limit=1) == 1
    assert got == [10_000]
    assert scheduler.now == 7.0
    assert ticks == [5.0]

    sub.remove()
    assert source.subscriber_count == 0
    assert source.play() == 1
    assert got == [10_000]
    assert source.remaining == 0
    assert ticks == [5.0, 10.0, 15.0, 20.0]


def test_replay_without_fix_times_out():
    with pytest.raises(LocationTimeoutError):
        ReplayLocationSource([]).get_current_position(15.0)


def test_manual_scheduler_cancel_and_order():
    scheduler = ManualScheduler()
    calls: list[str] = []
    a = scheduler.schedule_periodic(2.0, lambda: calls.append("a"), "a")
    scheduler.schedule_periodic(3.0, lambda: calls.append("b"), "b")

    assert scheduler.advance(6.0) == 5
    assert calls == ["a", "b", "a", "a", "b"]

    a.cancel()
    assert a.cancelled
    assert scheduler.active_tasks == ["b"]
    scheduler.advance(3.0)
    assert calls[-1] == "b"
    assert calls.count("a") == 3


def test_failing_task_keeps_running():
    scheduler = ManualScheduler()
    calls = {"n": 0}

    def boom():
        calls["n"] += 1
        raise RuntimeError("tick failed")

    scheduler.schedule_periodic(1.0, boom, "boom")
    assert scheduler.advance(3.0) == 3
    assert calls["n"] == 3


def test_scheduler_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        ManualScheduler().schedule_periodic(0, lambda: None)
    with pytest.raises(ValueError):
        ThreadingScheduler().schedule_periodic(-1, lambda: None)


def test_threading_scheduler_fires_until_cancelled():
    fired = threading.Event()
    handle = ThreadingScheduler().schedule_periodic(0.01, fired.set, "ping")
    try:
        assert fired.wait(2.0)
    finally:
        handle.cancel()
    assert handle.cancelled


def test_replay_without_permission_refuses_to_watch():
    source = ReplayLocationSource(_samples(), permission=False)
    assert not source.request_permission()
    with pytest.raises(LocationPermissionError):
        source.watch_position(lambda p: None)
    with pytest.raises(LocationPermissionError):
        source.get_current_position(15.0)
