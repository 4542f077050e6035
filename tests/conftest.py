from __future__ import annotations

from typing import Any, Callable, Mapping

import pytest

from track_recorder.errors import LocationTimeoutError, LocationUnavailableError, StorageError
from track_recorder.repository import TrackRepository
from track_recorder.scheduler import ManualScheduler
from track_recorder.session import RecordingSession
from track_recorder.storage import MemoryStore


class FakeSubscription:
    def __init__(self, source: FakeLocationSource, callback: Callable[[Mapping[str, Any]], None]) -> None:
        self.source = source
        self.callback = callback

    def remove(self) -> None:
        if self in self.source.subscriptions:
            self.source.subscriptions.remove(self)


class FakeLocationSource:
    """Location source driven by the test: ``emit()`` pushes a fix to every watcher."""

    def __init__(
        self,
        *,
        permission: bool = True,
        initial: Mapping[str, Any] | None = None,
        fail_watch: bool = False,
    ) -> None:
        self.permission = permission
        self.initial = initial
        self.fail_watch = fail_watch
        self.subscriptions: list[FakeSubscription] = []
        self.fix_requests = 0

    def request_permission(self) -> bool:
        return self.permission

    def get_current_position(self, timeout_s: float) -> Mapping[str, Any] | None:
        self.fix_requests += 1
        if self.initial is None:
            raise LocationTimeoutError(f"no fix within {timeout_s}s")
        return self.initial

    def watch_position(self, callback, interval_ms: int = 5000, distance_m: float = 5.0) -> FakeSubscription:
        if self.fail_watch:
            raise LocationUnavailableError("location services are off")
        sub = FakeSubscription(self, callback)
        self.subscriptions.append(sub)
        return sub

    def emit(self, payload: Any) -> None:
        for sub in list(self.subscriptions):
            sub.callback(payload)


class FlakyStore(MemoryStore):
    """MemoryStore whose writes can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False

    def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise StorageError("disk full")
        super().set(key, value)

    def remove(self, key: str) -> None:
        if self.fail_writes:
            raise StorageError("disk full")
        super().remove(key)


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture()
def store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture()
def repo(store: FlakyStore) -> TrackRepository:
    return TrackRepository(store)


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def source() -> FakeLocationSource:
    return FakeLocationSource()


@pytest.fixture()
def session(repo, source, scheduler, clock) -> RecordingSession:
    return RecordingSession(repo, source, scheduler, clock=clock)
