"""Lead-time compliance warnings driven by projections and forward timers."""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from .alerts import AlertCenter
from .clock import TimerFactory, thread_timer
from .compliance import ComplianceEngine, ComplianceSnapshot, Projection, RuleCheck
from .config import AlertSettings
from .models import ZERO, AlertTimer, AlertType, RuleKind
from .safety import SafetySignals, evaluate_safety
from .session import SessionManager

logger = logging.getLogger(__name__)

# Timers may wake slightly before their deadline.
FIRE_TOLERANCE = timedelta(seconds=1)

_WARNING_TEXT: dict[RuleKind, str] = {
    RuleKind.MAX_DRIVING: "Maximum driving time reached in {minutes} minutes!",
    RuleKind.MANDATORY_BREAK: "Mandatory break required in {minutes} minutes!",
    RuleKind.DAILY_REST: "Daily rest period (11h) required in {minutes} minutes!",
}

_ACTIONS: dict[RuleKind, tuple[str, ...]] = {
    RuleKind.MAX_DRIVING: ("break", "rest"),
    RuleKind.MANDATORY_BREAK: ("break",),
    RuleKind.DAILY_REST: ("rest",),
}


class AlertScheduler:
    """Arms one timer per rule so a warning fires a lead time before the threshold.

    All work happens under the session manager's lock: topology changes,
    timer callbacks and the periodic loop never interleave. A timer that has
    been replaced or cancelled is recognised by its ``cancelled`` flag and by
    no longer being the armed timer for its rule, since ``Timer.cancel`` can
    lose the race against a callback that has already started.
    """

    def __init__(
        self,
        manager: SessionManager,
        alerts: AlertCenter,
        settings: Optional[AlertSettings] = None,
        *,
        timer_factory: TimerFactory = thread_timer,
        signals: Optional[Callable[[], SafetySignals]] = None,
    ) -> None:
        self.manager = manager
        self.alerts = alerts
        self.settings = settings or AlertSettings()
        self.clock = manager.clock
        self._lock = manager.lock
        self._timer_factory = timer_factory
        self._signals = signals
        self._timers: dict[RuleKind, AlertTimer] = {}
        self._delivered: set[str] = set()
        self._session_id: Optional[str] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        manager.add_listener(self.on_topology_change)

    @property
    def engine(self) -> ComplianceEngine:
        return self.manager.engine

    # ---- Topology and timers ----

    def on_topology_change(self, now: Optional[datetime] = None) -> None:
        """Recompute every projection and arm, replace or cancel timers."""
        with self._lock:
            now = now or self.clock.now()
            snapshot = self.manager.snapshot(now)
            self._track_session(snapshot)
            if not snapshot.has_session:
                return
            if not self.settings.compliance_alerts:
                self._cancel_all()
                return
            checks = self.engine.check_all(snapshot)
            for rule, projection in self.engine.projections(snapshot).items():
                self._apply(projection, checks[rule], now)

    def on_timer_fire(self, rule: RuleKind, now: Optional[datetime] = None) -> bool:
        """Re-check ``rule`` at fire time; returns whether an alert was delivered."""
        with self._lock:
            timer = self._timers.pop(rule, None)
            if timer is not None:
                timer.cancel()
            return self._recheck(rule, now or self.clock.now())

    def armed(self) -> dict[RuleKind, AlertTimer]:
        with self._lock:
            return dict(self._timers)

    def clear_alerts(self) -> None:
        """Dismiss every alert and cancel every pending timer."""
        with self._lock:
            self._cancel_all()
            self._delivered.clear()
            self.alerts.clear()

    def _apply(self, projection: Projection, check: RuleCheck, now: datetime) -> None:
        rule = projection.rule
        if projection.crossed:
            self._cancel(rule)
            self._deliver_violation(projection, check)
            return
        if not projection.advancing:
            self._cancel(rule)
            return

        key = self._warning_key(projection)
        if key in self._delivered:
            self._cancel(rule)
            return
        lead = self.settings.lead_time(rule)
        fire_at = now + max(ZERO, projection.time_remaining - lead)
        if fire_at <= now:
            self._cancel(rule)
            self._deliver_warning(projection)
            return

        existing = self._timers.get(rule)
        if existing is not None and existing.key == key and existing.fire_at == fire_at:
            return
        self._cancel(rule)
        self._arm(rule, key, now, fire_at)

    def _arm(self, rule: RuleKind, key: str, now: datetime, fire_at: datetime) -> None:
        timer = AlertTimer(rule=rule, key=key, armed_at=now, fire_at=fire_at)
        delay = (fire_at - now).total_seconds()
        timer.handle = self._timer_factory(delay, lambda: self._on_handle_fired(timer))
        self._timers[rule] = timer
        logger.debug("Armed %s warning in %.0fs (%s).", rule.value, delay, key)

    def _on_handle_fired(self, timer: AlertTimer) -> None:
        with self._lock:
            if timer.cancelled or self._timers.get(timer.rule) is not timer:
                logger.debug("Ignoring superseded %s timer.", timer.rule.value)
                return
            try:
                self.on_timer_fire(timer.rule)
            except Exception:
                logger.exception("Alert timer for %s failed.", timer.rule.value)

    def _recheck(self, rule: RuleKind, now: datetime) -> bool:
        snapshot = self.manager.snapshot(now)
        if not snapshot.has_session or not self.settings.compliance_alerts:
            return False
        check = self.engine.check_all(snapshot)[rule]
        projection = self.engine.projections(snapshot)[rule]
        if projection.crossed:
            return self._deliver_violation(projection, check)
        if not projection.advancing:
            logger.debug("%s warning suppressed; condition no longer holds.", rule.value)
            return False
        lead = self.settings.lead_time(rule)
        if projection.time_remaining <= lead + FIRE_TOLERANCE:
            return self._deliver_warning(projection)
        key = self._warning_key(projection)
        if key not in self._delivered:
            self._arm(rule, key, now, now + (projection.time_remaining - lead))
        return False

    def _cancel(self, rule: RuleKind) -> None:
        timer = self._timers.pop(rule, None)
        if timer is not None:
            timer.cancel()
            logger.debug("Cancelled %s timer (%s).", rule.value, timer.key)

    def _cancel_all(self) -> None:
        for rule in list(self._timers):
            self._cancel(rule)

    def _track_session(self, snapshot: ComplianceSnapshot) -> None:
        if snapshot.session_id == self._session_id:
            return
        if self._session_id is not None:
            # The previous session ended: tear everything down.
            self._cancel_all()
            self._delivered.clear()
            self.alerts.clear()
        self._session_id = snapshot.session_id

    # ---- Delivery ----

    def _deliver_warning(self, projection: Projection) -> bool:
        key = self._warning_key(projection)
        if key in self._delivered:
            return False
        self._delivered.add(key)
        minutes = max(1, math.ceil(projection.time_remaining.total_seconds() / 60))
        shown = self.alerts.show_alert(
            AlertType.COMPLIANCE,
            _WARNING_TEXT[projection.rule].format(minutes=minutes),
            key=key,
            persistent=True,
            urgent=True,
            actions=_ACTIONS[projection.rule],
        )
        return shown is not None

    def _deliver_violation(self, projection: Projection, check: RuleCheck) -> bool:
        if check.violation is None:
            return False
        key = f"violation:{check.violation.code.value}:{projection.episode}"
        if key in self._delivered:
            return False
        self._delivered.add(key)
        shown = self.alerts.show_alert(
            AlertType.COMPLIANCE,
            check.violation.message,
            key=key,
            persistent=True,
            urgent=True,
            actions=_ACTIONS[projection.rule],
        )
        return shown is not None

    @staticmethod
    def _warning_key(projection: Projection) -> str:
        return f"lead:{projection.rule.value}:{projection.episode}"

    # ---- Periodic backstop ----

    def on_periodic_tick(self, now: Optional[datetime] = None) -> None:
        """Full re-evaluation plus early warnings and safety checks."""
        with self._lock:
            now = now or self.clock.now()
            self.on_topology_change(now)
            snapshot = self.manager.snapshot(now)
            if not snapshot.has_session:
                return
            if self.settings.compliance_alerts:
                self._deliver_early_warnings(snapshot)
            self._check_safety()

    def _deliver_early_warnings(self, snapshot: ComplianceSnapshot) -> None:
        projections = self.engine.projections(snapshot)
        for rule, check in self.engine.check_all(snapshot).items():
            if check.warning is None:
                continue
            key = f"warning:{check.warning.code.value}:{projections[rule].episode}"
            if key in self._delivered:
                continue
            self._delivered.add(key)
            self.alerts.show_alert(
                AlertType.WARNING,
                check.warning.message,
                key=key,
                persistent=False,
            )

    def _check_safety(self) -> None:
        if self._signals is None:
            return
        try:
            signals = self._signals()
        except Exception:
            logger.exception("Failed to read safety signals.")
            return
        for alert in evaluate_safety(signals, self.settings):
            self.alerts.show_alert(
                alert.alert_type,
                alert.message,
                key=alert.key,
                persistent=alert.persistent,
                urgent=alert.urgent,
            )

    def start(self) -> None:
        """Run ``on_periodic_tick`` every ``check_interval`` on a daemon thread."""
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="alert-scheduler", daemon=True
        )
        self._thread.start()
        logger.info(
            "Alert scheduler started; checking every %.0fs.",
            self.settings.check_interval.total_seconds(),
        )

    def stop(self) -> None:
        thread = self._thread
        self._stop_event.set()
        if thread is not None:
            thread.join(timeout=10)
            self._thread = None
        with self._lock:
            self._cancel_all()
        logger.info("Alert scheduler stopped.")

    def _run_loop(self) -> None:
        interval = self.settings.check_interval.total_seconds()
        # Sleep in an interruptible manner.
        while not self._stop_event.wait(interval):
            try:
                self.on_periodic_tick()
            except Exception:
                logger.exception("Periodic compliance check failed.")
