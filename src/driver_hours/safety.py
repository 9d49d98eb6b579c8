"""Threshold checks over speed, fuel, weather and maintenance signals."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Protocol

from .config import AlertSettings
from .models import AlertType

# Samples less precise than this are too noisy for speed checks.
MAX_SPEED_ACCURACY_M = 100.0
FUEL_LOW_PERCENT = 20.0
FUEL_CRITICAL_PERCENT = 10.0
MAINTENANCE_NOTICE_KM = 1000.0

WEATHER_MESSAGES: dict[str, str] = {
    "heavy_rain": "Heavy rain detected. Drive carefully!",
    "snow": "Snowfall detected. Check your winter equipment!",
    "fog": "Dense fog. Reduce speed and increase following distance!",
    "strong_wind": "Strong winds. Take care when handling the truck!",
}


@dataclass(slots=True, frozen=True)
class LocationSample:
    timestamp: datetime
    latitude: float
    longitude: float
    accuracy_m: float
    speed_kmh: Optional[float] = None


class LocationFeed(Protocol):
    def latest(self) -> Optional[LocationSample]: ...


@dataclass(slots=True, frozen=True)
class SafetySignals:
    """Latest readings from the vehicle and its surroundings."""

    speed_kmh: Optional[float] = None
    speed_limit_kmh: Optional[float] = None
    accuracy_m: Optional[float] = None
    fuel_percent: Optional[float] = None
    weather_condition: Optional[str] = None
    next_service_km: Optional[float] = None
    current_mileage_km: Optional[float] = None


@dataclass(slots=True, frozen=True)
class SafetyAlert:
    key: str
    alert_type: AlertType
    message: str
    persistent: bool = False
    urgent: bool = False


def check_speed(signals: SafetySignals, tolerance_kmh: float = 10.0) -> Optional[SafetyAlert]:
    if signals.speed_kmh is None or signals.speed_limit_kmh is None:
        return None
    if signals.accuracy_m is not None and signals.accuracy_m > MAX_SPEED_ACCURACY_M:
        return None
    overspeed = signals.speed_kmh - signals.speed_limit_kmh
    if overspeed <= tolerance_kmh:
        return None
    return SafetyAlert(
        key="speed_violation",
        alert_type=AlertType.SAFETY,
        message=f"Speed limit exceeded by {overspeed:.0f} km/h!",
        urgent=True,
    )


def check_fuel(signals: SafetySignals) -> Optional[SafetyAlert]:
    level = signals.fuel_percent
    if level is None:
        return None
    if level < FUEL_CRITICAL_PERCENT:
        return SafetyAlert(
            key="fuel_critical",
            alert_type=AlertType.SAFETY,
            message=f"Critical fuel level: {level:.0f}%",
            persistent=True,
            urgent=True,
        )
    if level < FUEL_LOW_PERCENT:
        return SafetyAlert(
            key="fuel_low",
            alert_type=AlertType.WARNING,
            message=f"Low fuel level: {level:.0f}%",
        )
    return None


def check_weather(signals: SafetySignals) -> Optional[SafetyAlert]:
    condition = (signals.weather_condition or "").strip().lower()
    message = WEATHER_MESSAGES.get(condition)
    if message is None:
        return None
    return SafetyAlert(key=f"weather_{condition}", alert_type=AlertType.SAFETY, message=message)


def check_maintenance(signals: SafetySignals) -> Optional[SafetyAlert]:
    if signals.next_service_km is None or signals.current_mileage_km is None:
        return None
    remaining = signals.next_service_km - signals.current_mileage_km
    if remaining >= MAINTENANCE_NOTICE_KM:
        return None
    return SafetyAlert(
        key="maintenance_due",
        alert_type=AlertType.INFORMATION,
        message=f"Service due in {remaining:.0f} km",
    )


def evaluate_safety(signals: SafetySignals, settings: AlertSettings) -> list[SafetyAlert]:
    """Run every enabled check; each produces at most one alert."""
    if not settings.safety_alerts:
        return []
    results = [check_speed(signals, settings.speed_tolerance_kmh)]
    if settings.fuel_alerts:
        results.append(check_fuel(signals))
    if settings.weather_alerts:
        results.append(check_weather(signals))
    if settings.maintenance_alerts:
        results.append(check_maintenance(signals))
    return [alert for alert in results if alert is not None]


class SignalBoard:
    """Thread-safe holder of the latest safety signals.

    Producers (GPS feed, HTTP layer) push partial updates; the scheduler
    reads a consistent snapshot by calling the board.
    """

    def __init__(self, location_feed: Optional[LocationFeed] = None) -> None:
        self._signals = SafetySignals()
        self._location_feed = location_feed
        self._lock = threading.Lock()

    def update(self, **values: Optional[float | str]) -> SafetySignals:
        with self._lock:
            self._signals = replace(self._signals, **values)
            return self._signals

    def update_location(self, sample: LocationSample) -> SafetySignals:
        return self.update(speed_kmh=sample.speed_kmh, accuracy_m=sample.accuracy_m)

    def __call__(self) -> SafetySignals:
        if self._location_feed is not None:
            sample = self._location_feed.latest()
            if sample is not None:
                self.update_location(sample)
        with self._lock:
            return self._signals
