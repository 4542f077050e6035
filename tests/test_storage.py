import json

from track_recorder.storage import JsonFileStore, MemoryStore


def test_memory_store_basics():
    store = MemoryStore({"a": "1"})
    store.set("b", "2")
    store.remove("a")
    store.remove("missing")
    assert store.get("a") is None
    assert store.get("b") == "2"
    assert store.list_keys() == ["b"]


def test_journal_survives_without_flush(tmp_path):
    path = tmp_path / "tracks.json"
    store = JsonFileStore(path)
    store.set("track:1", '{"id": "1"}')
    store.set("track:2", '{"id": "2"}')
    store.remove("track:2")

    assert (tmp_path / "tracks.journal.jsonl").exists()
    assert not path.exists()

    reopened = JsonFileStore(path)
    assert reopened.get("track:1") == '{"id": "1"}'
    assert reopened.get("track:2") is None


def test_flush_writes_snapshot_and_clears_journal(tmp_path):
    path = tmp_path / "tracks.json"
    store = JsonFileStore(path)
    store.set("k", "v")
    store.flush()

    assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}
    assert not (tmp_path / "tracks.journal.jsonl").exists()
    assert JsonFileStore(path).list_keys() == ["k"]


def test_journal_compaction(tmp_path):
    path = tmp_path / "tracks.json"
    store = JsonFileStore(path, compact_every=2)
    store.set("a", "1")
    store.set("b", "2")
    assert path.exists()
    assert not (tmp_path / "tracks.journal.jsonl").exists()


def test_broken_journal_tail_is_ignored(tmp_path):
    path = tmp_path / "tracks.json"
    journal = tmp_path / "tracks.journal.jsonl"
    journal.write_text('{"k": "a", "v": "1"}\n{"k": "b", "v": "2', encoding="utf-8")
    store = JsonFileStore(path)
    assert store.get("a") == "1"
    assert store.get("b") is None


def test_corrupted_snapshot_is_backed_up(tmp_path):
    path = tmp_path / "tracks.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path)
    assert store.list_keys() == []
    assert (tmp_path / "tracks.json.broken").read_text(encoding="utf-8") == "{not json"
