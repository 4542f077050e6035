"""Periodic task scheduling with explicit, cancellable handles."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class PeriodicHandle(Protocol):
    def cancel(self) -> None: ...

    @property
    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def schedule_periodic(self, interval_s: float, callback: Callable[[], None], name: str = "") -> PeriodicHandle: ...


def _run_guarded(callback: Callable[[], None], name: str) -> None:
    try:
        callback()
    except Exception:  # a failing tick must not kill the timer
        logger.exception("Periodic task %r failed; will retry on next tick", name)


class _ThreadHandle:
    def __init__(self, interval_s: float, callback: Callable[[], None], name: str) -> None:
        self._interval_s = interval_s
        self._callback = callback
        self._name = name
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"periodic-{name}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self._interval_s):
            _run_guarded(self._callback, self._name)

    def cancel(self) -> None:
        self._stop.set()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()


class ThreadingScheduler:
    """Runs each periodic task on its own daemon thread."""

    def schedule_periodic(self, interval_s: float, callback: Callable[[], None], name: str = "") -> PeriodicHandle:
        if interval_s <= 0:
            raise ValueError(f"interval must be positive, got {interval_s}")
        handle = _ThreadHandle(interval_s, callback, name or getattr(callback, "__name__", "task"))
        handle.start()
        return handle


@dataclass(slots=True)
class _ManualTask:
    interval_s: float
    callback: Callable[[], None]
    name: str
    next_due: float
    seq: int
    _cancelled: bool = field(default=False)

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler:
    """Deterministic scheduler driven by ``advance()``; used for replays and tests."""

    def __init__(self, start_s: float = 0.0) -> None:
        self._now = start_s
        self._tasks: list[_ManualTask] = []
        self._seq = 0

    @property
    def now(self) -> float:
        return self._now

    @property
    def active_tasks(self) -> list[str]:
        return [t.name for t in self._tasks if not t.cancelled]

    def schedule_periodic(self, interval_s: float, callback: Callable[[], None], name: str = "") -> PeriodicHandle:
        if interval_s <= 0:
            raise ValueError(f"interval must be positive, got {interval_s}")
        self._seq += 1
        task = _ManualTask(
            interval_s=interval_s,
            callback=callback,
            name=name or getattr(callback, "__name__", "task"),
            next_due=self._now + interval_s,
            seq=self._seq,
        )
        self._tasks.append(task)
        return task

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing every task that comes due in order.

        Returns:
            Number of callbacks fired.
        """

        target = self._now + max(0.0, seconds)
        fired = 0
        while True:
            self._tasks = [t for t in self._tasks if not t.cancelled]
            due = [t for t in self._tasks if t.next_due <= target]
            if not due:
                break
            task = min(due, key=lambda t: (t.next_due, t.seq))
            self._now = task.next_due
            task.next_due += task.interval_s
            _run_guarded(task.callback, task.name)
            fired += 1
        self._now = target
        return fired
