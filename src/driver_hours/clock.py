"""Time sources used by the tracker."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time as naive local datetimes."""

    def now(self) -> datetime:
        return datetime.now()


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def thread_timer(delay_seconds: float, callback: Callable[[], None]) -> threading.Timer:
    """Run ``callback`` once on a daemon thread after ``delay_seconds``."""
    timer = threading.Timer(max(0.0, delay_seconds), callback)
    timer.daemon = True
    timer.start()
    return timer
