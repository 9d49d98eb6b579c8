"""Configuration models and helpers for compliance tracking."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Any, Mapping, Optional

from .models import RuleKind

logger = logging.getLogger(__name__)

# Program time after which the daily rest becomes mandatory. This is the
# trigger, not the rest length (see ComplianceRules.daily_rest_period).
DAILY_PROGRAM_LIMIT = timedelta(hours=13)

DRIVING_WARNING_RATIO = 0.9
BREAK_WARNING_RATIO = 0.8


@dataclass(slots=True, frozen=True)
class ComplianceRules:
    """Regulatory thresholds, fixed for the lifetime of a session."""

    max_driving_time: timedelta = timedelta(hours=9)
    extended_driving_time: timedelta = timedelta(hours=10)
    mandatory_break_after: timedelta = timedelta(hours=4, minutes=30)
    min_break_duration: timedelta = timedelta(minutes=45)
    daily_rest_period: timedelta = timedelta(hours=11)
    weekly_rest_period: timedelta = timedelta(hours=45)
    max_weekly_driving_time: timedelta = timedelta(hours=56)
    max_biweekly_driving_time: timedelta = timedelta(hours=90)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ComplianceRules":
        """Build rules from stored values in milliseconds, keeping defaults for gaps.

        Keys may be snake_case (``max_driving_time``) or the camelCase names
        used by earlier versions of the stored settings (``maxDrivingTime``).
        """
        if not data:
            return cls()
        overrides: dict[str, timedelta] = {}
        for item in fields(cls):
            raw = data.get(item.name, data.get(_camel(item.name)))
            if raw is None:
                continue
            try:
                value = timedelta(milliseconds=float(raw))
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid value for %s: %r", item.name, raw)
                continue
            if value <= timedelta(0):
                logger.warning("Ignoring non-positive value for %s: %r", item.name, raw)
                continue
            overrides[item.name] = value
        return cls(**overrides)

    def to_mapping(self) -> dict[str, int]:
        return {
            item.name: int(getattr(self, item.name).total_seconds() * 1000)
            for item in fields(self)
        }


@dataclass(slots=True)
class AlertSettings:
    """Runtime configuration for alert scheduling and delivery."""

    compliance_alerts: bool = True
    safety_alerts: bool = True
    weather_alerts: bool = True
    fuel_alerts: bool = True
    maintenance_alerts: bool = True
    mandatory_break_warning: timedelta = timedelta(minutes=30)
    max_driving_warning: timedelta = timedelta(minutes=60)
    rest_period_warning: timedelta = timedelta(minutes=60)
    check_interval: timedelta = timedelta(seconds=60)
    auto_dismiss_delay: timedelta = timedelta(seconds=5)
    speed_tolerance_kmh: float = 10.0

    def lead_time(self, rule: RuleKind) -> timedelta:
        return {
            RuleKind.MAX_DRIVING: self.max_driving_warning,
            RuleKind.MANDATORY_BREAK: self.mandatory_break_warning,
            RuleKind.DAILY_REST: self.rest_period_warning,
        }[rule]

    @classmethod
    def from_minutes(
        cls,
        mandatory_break_minutes: float = 30.0,
        max_driving_minutes: float = 60.0,
        rest_period_minutes: float = 60.0,
        check_seconds: float = 60.0,
    ) -> "AlertSettings":
        return cls(
            mandatory_break_warning=timedelta(minutes=mandatory_break_minutes),
            max_driving_warning=timedelta(minutes=max_driving_minutes),
            rest_period_warning=timedelta(minutes=rest_period_minutes),
            check_interval=timedelta(seconds=check_seconds),
        )

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "AlertSettings":
        """Read the stored ``alerts`` settings block (warnings in minutes)."""
        settings = cls()
        if not data:
            return settings
        for flag in (
            "compliance_alerts",
            "safety_alerts",
            "weather_alerts",
            "fuel_alerts",
            "maintenance_alerts",
        ):
            raw = data.get(flag, data.get(_camel(flag)))
            if isinstance(raw, bool):
                setattr(settings, flag, raw)
        for name in ("mandatory_break_warning", "max_driving_warning", "rest_period_warning"):
            raw = data.get(name, data.get(_camel(name)))
            if raw is None:
                continue
            try:
                minutes = float(raw)
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid lead time for %s: %r", name, raw)
                continue
            setattr(settings, name, timedelta(minutes=max(minutes, 0.0)))
        return settings


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    camel = head + "".join(part.capitalize() for part in rest)
    return camel.replace("Biweekly", "BiWeekly")
