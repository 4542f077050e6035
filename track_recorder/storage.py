"""Key-value persistence substrates for the track repository.

Both stores hold opaque text blobs keyed by string. ``JsonFileStore`` keeps a
JSON snapshot on disk plus a write-ahead journal so that every single ``set``
survives a crash even before the next snapshot.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Protocol

from track_recorder.errors import StorageError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """get/set/remove/list of opaque text blobs."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def list_keys(self) -> list[str]: ...


class MemoryStore:
    """In-process store, used by tests and as a scratch substrate."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def list_keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore:
    """A JSON snapshot file plus an append-only journal (key -> text blob).

    Example: tracks.json -> tracks.journal.jsonl
    """

    def __init__(self, path: str | Path, *, compact_every: int = 200) -> None:
        self._path = Path(path)
        self._journal_path = self._path.with_name(f"{self._path.stem}.journal.jsonl")
        self._compact_every = max(1, compact_every)
        self._journal_writes = 0
        self._data: dict[str, str] = {}
        self._loaded = False
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        """Load snapshot and replay the journal (no-op if already loaded)."""

        with self._lock:
            if self._loaded:
                return
            self._data = {}
            if self._path.exists():
                try:
                    text = self._path.read_text(encoding="utf-8").strip()
                except OSError as exc:
                    raise StorageError(f"cannot read {self._path}: {exc}") from exc
                if text:
                    try:
                        raw = json.loads(text)
                    except json.JSONDecodeError:
                        # Snapshot corrupted: keep a backup and start fresh
                        backup = self._path.with_suffix(self._path.suffix + ".broken")
                        backup.write_text(text, encoding="utf-8")
                        logger.warning("Corrupted store %s backed up to %s", self._path, backup)
                        raw = {}
                    if isinstance(raw, dict):
                        self._data = {str(k): v for k, v in raw.items() if isinstance(v, str)}

            self._replay_journal()
            self._loaded = True

    def get(self, key: str) -> str | None:
        with self._lock:
            self.load()
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self.load()
            self._append_journal({"k": key, "v": value})
            self._data[key] = value
            self._maybe_compact()

    def remove(self, key: str) -> None:
        with self._lock:
            self.load()
            if key not in self._data:
                return
            self._append_journal({"k": key, "d": True})
            del self._data[key]
            self._maybe_compact()

    def list_keys(self) -> list[str]:
        with self._lock:
            self.load()
            return list(self._data)

    def flush(self) -> None:
        """Persist the full snapshot atomically, then clear the journal."""

        with self._lock:
            self.load()
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                tmp.write_text(json.dumps(self._data, ensure_ascii=False, indent=2), encoding="utf-8")
                tmp.replace(self._path)
            except OSError as exc:
                raise StorageError(f"cannot write {self._path}: {exc}") from exc
            self._clear_journal()
            self._journal_writes = 0

    def _maybe_compact(self) -> None:
        self._journal_writes += 1
        if self._journal_writes >= self._compact_every:
            self.flush()

    def _append_journal(self, record: dict[str, object]) -> None:
        """Append a single update to the journal for crash-safe persistence."""

        try:
            self._journal_path.parent.mkdir(parents=True, exist_ok=True)
            with self._journal_path.open("a", encoding="utf-8", newline="\n") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        except OSError as exc:
            raise StorageError(f"cannot append to {self._journal_path}: {exc}") from exc

    def _replay_journal(self) -> None:
        """Replay journal entries into memory (best-effort)."""

        if not self._journal_path.exists():
            return
        try:
            with self._journal_path.open("r", encoding="utf-8") as f:
                for line in f:
                    s = line.strip()
                    if not s:
                        continue
                    try:
                        rec = json.loads(s)
                    except json.JSONDecodeError:
                        # ignore broken tail lines
                        continue
                    if not isinstance(rec, dict):
                        continue
                    k = rec.get("k")
                    if not isinstance(k, str):
                        continue
                    if rec.get("d"):
                        self._data.pop(k, None)
                    elif isinstance(rec.get("v"), str):
                        self._data[k] = rec["v"]
        except OSError as exc:
            logger.warning("Journal %s unreadable, ignoring: %s", self._journal_path, exc)

    def _clear_journal(self) -> None:
        try:
            if self._journal_path.exists():
                self._journal_path.unlink()
        except OSError:
            return
