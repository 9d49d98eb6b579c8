"""Append-only record of the activity intervals within one session."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from .errors import InvalidState, NoActiveActivity
from .models import ZERO, Activity, ActivityCategory, DailyTotals, clamp

logger = logging.getLogger(__name__)


class ActivityLedger:
    """Tracks closed activities plus the currently open one.

    Activities form a contiguous, non-overlapping partition of the time since
    the first activity started: opening a new activity closes the previous
    one at the same instant. The ledger does no locking of its own; the
    session manager serializes mutations.
    """

    def __init__(self) -> None:
        self._session_start: Optional[datetime] = None
        self._closed: list[Activity] = []
        self._current: Optional[Activity] = None
        self._closed_sums: dict[ActivityCategory, timedelta] = {
            category: ZERO for category in ActivityCategory
        }

    @property
    def is_open(self) -> bool:
        return self._session_start is not None

    @property
    def session_start(self) -> Optional[datetime]:
        return self._session_start

    @property
    def current(self) -> Optional[Activity]:
        return self._current

    @property
    def boundary(self) -> Optional[datetime]:
        """Earliest instant the next transition may use."""
        if self._current is not None:
            return self._current.start_time
        return self._last_boundary()

    @property
    def history(self) -> list[Activity]:
        """Closed activities in chronological order."""
        return list(self._closed)

    def begin(self, start: datetime) -> None:
        if self._session_start is not None:
            raise InvalidState("Ledger is already bound to an open session.")
        self._reset(start)

    def transition(self, category: ActivityCategory, at: datetime) -> Activity:
        """Close the open activity at ``at`` and open a ``category`` activity.

        Both halves happen in one step so the contiguity of intervals is kept
        in one place.
        """
        if self._session_start is None:
            raise InvalidState("Cannot start an activity without an open session.")
        at = self._clamp_instant(at)
        if self._current is not None:
            self._close_current(at)
        activity = Activity(id=uuid.uuid4().hex, category=category, start_time=at)
        self._current = activity
        logger.debug("Activity started: %s at %s", category.value, at.isoformat())
        return activity

    def end_activity(self, at: datetime) -> Activity:
        if self._current is None:
            raise NoActiveActivity("No activity is currently open.")
        return self._close_current(self._clamp_instant(at))

    def finish(self, at: datetime) -> list[Activity]:
        """Close any open activity and unbind from the session."""
        if self._session_start is None:
            raise InvalidState("Ledger is not bound to a session.")
        if self._current is not None:
            self._close_current(self._clamp_instant(at))
        activities = list(self._closed)
        self._reset(None)
        return activities

    def totals(self, now: datetime) -> DailyTotals:
        """Closed sums plus the open activity's elapsed time up to ``now``."""
        sums = dict(self._closed_sums)
        current = self._current
        if current is not None:
            sums[current.category] += current.elapsed(now)
        if self._session_start is None:
            total_program = ZERO
        else:
            total_program = clamp(now - self._session_start)
        return DailyTotals.from_categories(sums, total_program)

    def last_closed_of_category(self, category: ActivityCategory) -> Optional[Activity]:
        for activity in reversed(self._closed):
            if activity.category is category:
                return activity
        return None

    def _reset(self, start: Optional[datetime]) -> None:
        self._session_start = start
        self._closed = []
        self._current = None
        for category in self._closed_sums:
            self._closed_sums[category] = ZERO

    def _close_current(self, at: datetime) -> Activity:
        activity = self._current
        assert activity is not None
        activity.end_time = at
        activity.duration = clamp(at - activity.start_time)
        self._closed.append(activity)
        self._closed_sums[activity.category] += activity.duration
        self._current = None
        logger.debug(
            "Activity closed: %s duration=%s",
            activity.category.value,
            activity.duration,
        )
        return activity

    def _clamp_instant(self, at: datetime) -> datetime:
        # Never let a transition land before the previous boundary.
        floor = self.boundary
        if floor is not None and at < floor:
            logger.warning(
                "Clock moved backwards (%s < %s); clamping.", at.isoformat(), floor.isoformat()
            )
            return floor
        return at

    def _last_boundary(self) -> Optional[datetime]:
        if self._closed:
            return self._closed[-1].end_time
        return self._session_start
