"""Stateless compliance evaluation over session totals."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from .config import (
    BREAK_WARNING_RATIO,
    DAILY_PROGRAM_LIMIT,
    DRIVING_WARNING_RATIO,
    ComplianceRules,
)
from .models import (
    ZERO,
    Activity,
    ActivityCategory,
    DailyTotals,
    RuleKind,
    Session,
    SessionStatistics,
    clamp,
)


class FindingCode(str, Enum):
    MAX_DRIVING_EXCEEDED = "MAX_DRIVING_EXCEEDED"
    APPROACHING_MAX_DRIVING = "APPROACHING_MAX_DRIVING"
    MANDATORY_BREAK_REQUIRED = "MANDATORY_BREAK_REQUIRED"
    APPROACHING_MANDATORY_BREAK = "APPROACHING_MANDATORY_BREAK"
    DAILY_REST_REQUIRED = "DAILY_REST_REQUIRED"


_MESSAGES: dict[FindingCode, str] = {
    FindingCode.MAX_DRIVING_EXCEEDED: "Maximum driving time ({limit}) has been exceeded.",
    FindingCode.APPROACHING_MAX_DRIVING: "Approaching the maximum driving time ({limit}).",
    FindingCode.MANDATORY_BREAK_REQUIRED: "A mandatory break is required after {limit} of activity.",
    FindingCode.APPROACHING_MANDATORY_BREAK: "A mandatory break will be required soon.",
    FindingCode.DAILY_REST_REQUIRED: "The daily rest period ({limit}) is required.",
}


@dataclass(slots=True, frozen=True)
class Finding:
    code: FindingCode
    rule: RuleKind
    severity: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.code.value,
            "rule": self.rule.value,
            "severity": self.severity,
            "message": self.message,
        }


@dataclass(slots=True, frozen=True)
class RuleCheck:
    """Outcome of one rule: at most one finding plus the remaining margin."""

    rule: RuleKind
    time_remaining: timedelta
    violation: Optional[Finding] = None
    warning: Optional[Finding] = None

    @property
    def is_violated(self) -> bool:
        return self.violation is not None

    @property
    def needs_rest_period(self) -> bool:
        return self.rule is RuleKind.DAILY_REST and self.violation is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule.value,
            "time_remaining_ms": int(self.time_remaining.total_seconds() * 1000),
            "violation": self.violation.to_dict() if self.violation else None,
            "warning": self.warning.to_dict() if self.warning else None,
        }


@dataclass(slots=True, frozen=True)
class ComplianceSnapshot:
    """Everything the engine reads, captured at one instant."""

    now: datetime
    totals: DailyTotals
    session_id: Optional[str] = None
    session_start: Optional[datetime] = None
    last_break: Optional[Activity] = None
    current_category: Optional[ActivityCategory] = None

    @property
    def has_session(self) -> bool:
        return self.session_start is not None

    @property
    def break_reference(self) -> Optional[datetime]:
        """Start of the mandatory-break clock: end of the last break, else session start."""
        if self.last_break is not None and self.last_break.end_time is not None:
            return self.last_break.end_time
        return self.session_start


@dataclass(slots=True, frozen=True)
class Projection:
    """Time left until a threshold is crossed if the current activity continues.

    ``advancing`` is false when the current activity does not move the rule
    toward its threshold, so no timer needs to be armed. ``episode`` names
    the threshold-episode the projection belongs to.
    """

    rule: RuleKind
    time_remaining: timedelta
    advancing: bool
    episode: str

    @property
    def crossed(self) -> bool:
        return self.time_remaining <= ZERO


@dataclass(slots=True, frozen=True)
class Recommendation:
    type: str
    priority: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "priority": self.priority, "message": self.message}


@dataclass(slots=True)
class ComplianceReport:
    timestamp: datetime
    totals: DailyTotals
    checks: dict[RuleKind, RuleCheck]
    recommendations: list[Recommendation] = field(default_factory=list)

    @property
    def violations(self) -> list[Finding]:
        return [check.violation for check in self.checks.values() if check.violation]

    @property
    def warnings(self) -> list[Finding]:
        return [check.warning for check in self.checks.values() if check.warning]

    @property
    def is_compliant(self) -> bool:
        # The daily rest trigger is reported separately via needs_rest_period.
        return not any(
            check.is_violated
            for rule, check in self.checks.items()
            if rule is not RuleKind.DAILY_REST
        )

    @property
    def needs_rest_period(self) -> bool:
        check = self.checks.get(RuleKind.DAILY_REST)
        return bool(check and check.needs_rest_period)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "is_compliant": self.is_compliant,
            "needs_rest_period": self.needs_rest_period,
            "stats": self.totals.to_dict(),
            "checks": {rule.value: check.to_dict() for rule, check in self.checks.items()},
            "violations": [finding.to_dict() for finding in self.violations],
            "warnings": [finding.to_dict() for finding in self.warnings],
            "recommendations": [item.to_dict() for item in self.recommendations],
        }


class ComplianceEngine:
    """Evaluates driving, break and daily-rest rules.

    Holds only the immutable rules; every check is a pure function of the
    snapshot it is given, so callers may evaluate at any frequency.
    """

    def __init__(self, rules: Optional[ComplianceRules] = None) -> None:
        self.rules = rules or ComplianceRules()

    def check_driving(self, snapshot: ComplianceSnapshot) -> RuleCheck:
        limit = self.rules.max_driving_time
        driving = snapshot.totals.driving
        remaining = clamp(limit - driving)
        if not snapshot.has_session:
            return RuleCheck(RuleKind.MAX_DRIVING, remaining)
        if driving >= limit:
            return RuleCheck(
                RuleKind.MAX_DRIVING,
                remaining,
                violation=self._finding(FindingCode.MAX_DRIVING_EXCEEDED, limit),
            )
        if driving >= limit * DRIVING_WARNING_RATIO:
            return RuleCheck(
                RuleKind.MAX_DRIVING,
                remaining,
                warning=self._finding(FindingCode.APPROACHING_MAX_DRIVING, limit),
            )
        return RuleCheck(RuleKind.MAX_DRIVING, remaining)

    def check_mandatory_break(self, snapshot: ComplianceSnapshot) -> RuleCheck:
        limit = self.rules.mandatory_break_after
        elapsed = self.time_since_break(snapshot)
        remaining = clamp(limit - elapsed)
        if not snapshot.has_session:
            return RuleCheck(RuleKind.MANDATORY_BREAK, remaining)
        if elapsed >= limit:
            return RuleCheck(
                RuleKind.MANDATORY_BREAK,
                remaining,
                violation=self._finding(FindingCode.MANDATORY_BREAK_REQUIRED, limit),
            )
        if elapsed >= limit * BREAK_WARNING_RATIO:
            return RuleCheck(
                RuleKind.MANDATORY_BREAK,
                remaining,
                warning=self._finding(FindingCode.APPROACHING_MANDATORY_BREAK, limit),
            )
        return RuleCheck(RuleKind.MANDATORY_BREAK, remaining)

    def check_daily_rest(self, snapshot: ComplianceSnapshot) -> RuleCheck:
        program = snapshot.totals.total_program
        remaining = clamp(DAILY_PROGRAM_LIMIT - program)
        if snapshot.has_session and program >= DAILY_PROGRAM_LIMIT:
            return RuleCheck(
                RuleKind.DAILY_REST,
                remaining,
                violation=self._finding(
                    FindingCode.DAILY_REST_REQUIRED, self.rules.daily_rest_period
                ),
            )
        return RuleCheck(RuleKind.DAILY_REST, remaining)

    def check_all(self, snapshot: ComplianceSnapshot) -> dict[RuleKind, RuleCheck]:
        # Every rule is evaluated, even when an earlier one is violated.
        return {
            RuleKind.MAX_DRIVING: self.check_driving(snapshot),
            RuleKind.MANDATORY_BREAK: self.check_mandatory_break(snapshot),
            RuleKind.DAILY_REST: self.check_daily_rest(snapshot),
        }

    def evaluate(self, snapshot: ComplianceSnapshot) -> ComplianceReport:
        return ComplianceReport(
            timestamp=snapshot.now,
            totals=snapshot.totals,
            checks=self.check_all(snapshot),
            recommendations=self.recommendations(snapshot.totals),
        )

    def projections(self, snapshot: ComplianceSnapshot) -> dict[RuleKind, Projection]:
        checks = self.check_all(snapshot)
        current = snapshot.current_category
        session = snapshot.session_id or ""
        open_session = snapshot.has_session
        reference = snapshot.break_reference
        break_episode = f"{session}@{reference.isoformat()}" if reference else session
        return {
            RuleKind.MAX_DRIVING: Projection(
                RuleKind.MAX_DRIVING,
                checks[RuleKind.MAX_DRIVING].time_remaining,
                advancing=open_session and current is ActivityCategory.DRIVING,
                episode=session,
            ),
            RuleKind.MANDATORY_BREAK: Projection(
                RuleKind.MANDATORY_BREAK,
                checks[RuleKind.MANDATORY_BREAK].time_remaining,
                advancing=open_session and current is not ActivityCategory.BREAK,
                episode=break_episode,
            ),
            RuleKind.DAILY_REST: Projection(
                RuleKind.DAILY_REST,
                checks[RuleKind.DAILY_REST].time_remaining,
                advancing=open_session,
                episode=session,
            ),
        }

    def time_since_break(self, snapshot: ComplianceSnapshot) -> timedelta:
        reference = snapshot.break_reference
        if reference is None or snapshot.current_category is ActivityCategory.BREAK:
            return ZERO
        return clamp(snapshot.now - reference)

    def recommendations(self, totals: DailyTotals) -> list[Recommendation]:
        items: list[Recommendation] = []
        if totals.driving > timedelta(hours=7):
            items.append(
                Recommendation("break", "high", "Consider an extended break to recover.")
            )
        if totals.total_program > ZERO and totals.breaks / totals.total_program < 0.15:
            items.append(
                Recommendation("break", "medium", "Take more frequent breaks to stay alert.")
            )
        if totals.driving > ZERO and totals.other > totals.driving:
            items.append(
                Recommendation(
                    "efficiency", "low", "Driving time is below the time spent on other activities."
                )
            )
        return items

    def _finding(self, code: FindingCode, limit: timedelta) -> Finding:
        severity = "medium" if code.value.startswith("APPROACHING") else "high"
        return Finding(
            code=code,
            rule=_RULE_FOR_CODE[code],
            severity=severity,
            message=_MESSAGES[code].format(limit=format_hours(limit)),
        )


_RULE_FOR_CODE: dict[FindingCode, RuleKind] = {
    FindingCode.MAX_DRIVING_EXCEEDED: RuleKind.MAX_DRIVING,
    FindingCode.APPROACHING_MAX_DRIVING: RuleKind.MAX_DRIVING,
    FindingCode.MANDATORY_BREAK_REQUIRED: RuleKind.MANDATORY_BREAK,
    FindingCode.APPROACHING_MANDATORY_BREAK: RuleKind.MANDATORY_BREAK,
    FindingCode.DAILY_REST_REQUIRED: RuleKind.DAILY_REST,
}


def session_statistics(session: Session) -> SessionStatistics:
    """Summary figures for a finalized session."""
    count = len(session.activities)
    active = sum((activity.duration for activity in session.activities), ZERO)
    driving = sum(
        (
            activity.duration
            for activity in session.activities
            if activity.category is ActivityCategory.DRIVING
        ),
        ZERO,
    )
    total = session.total_duration
    return SessionStatistics(
        total_activities=count,
        average_activity_duration=active / count if count else ZERO,
        driving_efficiency=driving / total if total > ZERO else 0.0,
        active_time=active,
        idle_time=clamp(total - active),
    )


def format_hours(duration: timedelta) -> str:
    total_minutes = int(duration.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    if minutes:
        return f"{hours}h{minutes:02d}"
    return f"{hours}h"
