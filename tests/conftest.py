from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Sequence

import pytest

from driver_hours.monitor import ComplianceMonitor
from driver_hours.storage import MemoryStore

T0 = datetime(2026, 3, 2, 6, 0, 0)


def hours(value: float) -> timedelta:
    return timedelta(hours=value)


class ManualClock:
    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value

    def advance(self, delta: timedelta) -> datetime:
        self.current += delta
        return self.current


class ManualTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.callback()


class ManualTimers:
    """Timer factory that only runs callbacks when a test fires them."""

    def __init__(self) -> None:
        self.created: list[ManualTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.created.append(timer)
        return timer

    def pending(self) -> list[ManualTimer]:
        return [timer for timer in self.created if not timer.cancelled and not timer.fired]


class RecordingSink:
    def __init__(self) -> None:
        self.presented: list[dict] = []

    def present(
        self,
        alert_key: str,
        message: str,
        *,
        persistent: bool,
        urgent: bool,
        actions: Sequence[str],
    ) -> None:
        self.presented.append(
            {
                "key": alert_key,
                "message": message,
                "persistent": persistent,
                "urgent": urgent,
                "actions": tuple(actions),
            }
        )

    def keys(self) -> list[str]:
        return [item["key"] for item in self.presented]


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def timers() -> ManualTimers:
    return ManualTimers()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def monitor(clock, timers, sink, store) -> ComplianceMonitor:
    return ComplianceMonitor(store=store, clock=clock, sink=sink, timer_factory=timers)
