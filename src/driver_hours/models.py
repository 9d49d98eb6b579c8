"""Domain models for sessions, activities and alerts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional


class ActivityCategory(str, Enum):
    DRIVING = "driving"
    BREAK = "break"
    WORK = "work"
    OTHER = "other"


class RuleKind(str, Enum):
    MAX_DRIVING = "max_driving"
    MANDATORY_BREAK = "mandatory_break"
    DAILY_REST = "daily_rest"


class AlertType(str, Enum):
    COMPLIANCE = "compliance"
    SAFETY = "safety"
    WARNING = "warning"
    INFORMATION = "information"


ZERO = timedelta(0)


def clamp(duration: timedelta) -> timedelta:
    """Negative durations (clock moved backwards) count as zero."""
    return duration if duration > ZERO else ZERO


def _ms(duration: timedelta) -> int:
    return int(duration.total_seconds() * 1000)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(slots=True)
class Activity:
    """A categorized span of time inside a session."""

    id: str
    category: ActivityCategory
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: timedelta = ZERO

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def elapsed(self, now: datetime) -> timedelta:
        if self.end_time is not None:
            return self.duration
        return clamp(now - self.start_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.category.value,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "duration_ms": _ms(self.duration),
        }


@dataclass(slots=True)
class Session:
    """One work program from start to end."""

    id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    activities: list[Activity] = field(default_factory=list)
    total_duration: timedelta = ZERO

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "total_duration_ms": _ms(self.total_duration),
            "activities": [activity.to_dict() for activity in self.activities],
        }


@dataclass(slots=True, frozen=True)
class DailyTotals:
    """Per-category time for the current session, projected to a point in time."""

    driving: timedelta = ZERO
    breaks: timedelta = ZERO
    work: timedelta = ZERO
    other: timedelta = ZERO
    total_program: timedelta = ZERO

    def of(self, category: ActivityCategory) -> timedelta:
        return {
            ActivityCategory.DRIVING: self.driving,
            ActivityCategory.BREAK: self.breaks,
            ActivityCategory.WORK: self.work,
            ActivityCategory.OTHER: self.other,
        }[category]

    @classmethod
    def from_categories(
        cls, sums: dict[ActivityCategory, timedelta], total_program: timedelta
    ) -> "DailyTotals":
        return cls(
            driving=sums.get(ActivityCategory.DRIVING, ZERO),
            breaks=sums.get(ActivityCategory.BREAK, ZERO),
            work=sums.get(ActivityCategory.WORK, ZERO),
            other=sums.get(ActivityCategory.OTHER, ZERO),
            total_program=total_program,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "driving_ms": _ms(self.driving),
            "break_ms": _ms(self.breaks),
            "work_ms": _ms(self.work),
            "other_ms": _ms(self.other),
            "total_program_ms": _ms(self.total_program),
        }


@dataclass(slots=True, frozen=True)
class SessionStatistics:
    total_activities: int
    average_activity_duration: timedelta
    driving_efficiency: float
    active_time: timedelta
    idle_time: timedelta

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_activities": self.total_activities,
            "average_activity_duration_ms": _ms(self.average_activity_duration),
            "driving_efficiency": round(self.driving_efficiency, 4),
            "active_time_ms": _ms(self.active_time),
            "idle_time_ms": _ms(self.idle_time),
        }


@dataclass(slots=True)
class SessionRecord:
    """A closed session with the figures handed to persistence."""

    session: Session
    totals: DailyTotals
    statistics: SessionStatistics
    report: Any

    def to_dict(self) -> dict[str, Any]:
        payload = self.session.to_dict()
        payload["stats"] = self.totals.to_dict()
        payload["session_stats"] = self.statistics.to_dict()
        payload["compliance_report"] = self.report.to_dict()
        return payload


@dataclass(slots=True)
class AlertTimer:
    """A pending lead-time warning for one rule and threshold-episode."""

    rule: RuleKind
    key: str
    armed_at: datetime
    fire_at: datetime
    handle: Any = None
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True
        if self.handle is not None:
            self.handle.cancel()


@dataclass(slots=True)
class Alert:
    key: str
    alert_type: AlertType
    message: str
    created_at: datetime
    persistent: bool = True
    urgent: bool = False
    actions: tuple[str, ...] = ()
    dismissed: bool = False
    dismiss_handle: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "type": self.alert_type.value,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "persistent": self.persistent,
            "urgent": self.urgent,
            "actions": list(self.actions),
            "dismissed": self.dismissed,
        }
