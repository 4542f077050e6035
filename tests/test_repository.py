import pytest

from track_recorder.models import GeoSample, RecordingMarker, SessionPhase, Track
from track_recorder.repository import BACKGROUND_KEY, MARKER_KEY, TRACK_KEY_PREFIX, track_key


def _track(track_id, name="Walk", created_at=1000, n=3):
    locs = [GeoSample(50.0 + i * 0.001, 8.0, created_at + i * 5000) for i in range(n)]
    return Track(id=track_id, name=name, locations=locs, created_at=created_at, last_modified=created_at)


def test_save_twice_is_one_record(repo, store):
    track = _track("t1")
    assert repo.save_track(track)
    assert repo.save_track(track)
    assert [k for k in store.list_keys() if k.startswith(TRACK_KEY_PREFIX)] == ["track:t1"]
    assert len(repo.get_all_tracks()) == 1


def test_save_recomputes_cached_stats(repo):
    track = _track("t1")
    track.total_distance = -1.0
    track.duration = 999.0
    repo.save_track(track)

    assert track.duration == 10.0
    assert track.total_distance == pytest.approx(222.4, abs=0.5)
    stored = repo.get_track("t1")
    assert stored.duration == 10.0
    assert stored.total_distance == track.total_distance


def test_get_all_tracks_newest_first(repo):
    for track_id, created in (("a", 1000), ("b", 3000), ("c", 2000)):
        repo.save_track(_track(track_id, created_at=created))
    assert [t.id for t in repo.get_all_tracks()] == ["b", "c", "a"]


def test_find_tracks_is_case_insensitive(repo):
    repo.save_track(_track("a", name="Morning Walk"))
    repo.save_track(_track("b", name="Evening run"))
    assert [t.id for t in repo.find_tracks("walk")] == ["a"]
    assert len(repo.find_tracks("  ")) == 2


def test_delete_unknown_track_is_noop(repo):
    assert repo.delete_track("nope")
    repo.save_track(_track("a"))
    assert repo.delete_track("a")
    assert repo.get_track("a") is None


def test_unreadable_records_are_skipped(repo, store):
    repo.save_track(_track("good"))
    store.set(track_key("bad"), "{broken")
    store.set(track_key("noid"), '{"name": "x"}')
    store.set(track_key("huge"), '{"id": "huge", "created_at": Infinity}')
    assert [t.id for t in repo.get_all_tracks()] == ["good"]
    assert repo.get_track("bad") is None


def test_storage_failures_are_reported_not_raised(repo, store):
    store.fail_writes = True
    assert not repo.save_track(_track("t1"))
    assert not repo.delete_track("t1")
    assert not repo.set_marker(RecordingMarker("t1", "Walk", SessionPhase.RECORDING, 0))
    assert not repo.append_background_samples([GeoSample(1.0, 1.0, 1)])


def test_marker_round_trip(repo, store):
    marker = RecordingMarker("t1", "Walk", SessionPhase.RECORDING, 123)
    assert repo.get_marker() is None
    repo.set_marker(marker)
    assert repo.get_marker() == marker
    repo.clear_marker()
    assert repo.get_marker() is None

    store.set(MARKER_KEY, "{}")
    assert repo.get_marker() is None


def test_background_mirror_append_and_drain(repo, store):
    a = GeoSample(1.0, 1.0, 1000)
    b = GeoSample(1.1, 1.1, 2000)
    repo.append_background_samples([a])
    repo.append_background_samples([b])
    assert repo.get_background_samples() == [a, b]

    assert repo.drain_background_samples() == [a, b]
    assert store.get(BACKGROUND_KEY) is None
    assert repo.drain_background_samples() == []


def test_corrupt_background_mirror_is_dropped(repo, store):
    store.set(BACKGROUND_KEY, "[{broken")
    assert repo.drain_background_samples() == []
    assert store.get(BACKGROUND_KEY) is None


def test_drain_reports_storage_failure(repo, store):
    repo.append_background_samples([GeoSample(1.0, 1.0, 1000)])
    store.fail_writes = True
    assert repo.drain_background_samples() is None
    store.fail_writes = False
    assert len(repo.get_background_samples()) == 1
