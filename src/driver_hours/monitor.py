"""Wiring of the tracker's collaborators."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from .alerts import AlertCenter
from .clock import Clock, SystemClock, TimerFactory, thread_timer
from .compliance import ComplianceEngine
from .config import AlertSettings, ComplianceRules
from .db import SqliteStore
from .models import SessionRecord
from .notifier import NotificationSink
from .safety import SignalBoard
from .scheduler import AlertScheduler
from .session import SessionManager
from .storage import COMPLIANCE_RULES_KEY, SETTINGS_KEY, MemoryStore, PersistenceStore

logger = logging.getLogger(__name__)


def load_rules(store: PersistenceStore) -> ComplianceRules:
    try:
        return ComplianceRules.from_mapping(store.get(COMPLIANCE_RULES_KEY))
    except Exception:
        logger.exception("Failed to load compliance rules; using defaults.")
        return ComplianceRules()


def load_alert_settings(store: PersistenceStore) -> AlertSettings:
    try:
        settings = store.get(SETTINGS_KEY) or {}
        return AlertSettings.from_mapping(settings.get("alerts"))
    except Exception:
        logger.exception("Failed to load alert settings; using defaults.")
        return AlertSettings()


class ComplianceMonitor:
    """Owns one manager, scheduler and alert center sharing the same clock."""

    def __init__(
        self,
        *,
        store: Optional[PersistenceStore] = None,
        clock: Optional[Clock] = None,
        sink: Optional[NotificationSink] = None,
        rules: Optional[ComplianceRules] = None,
        settings: Optional[AlertSettings] = None,
        timer_factory: TimerFactory = thread_timer,
        auto_open: bool = True,
    ) -> None:
        self.store = store if store is not None else MemoryStore()
        self.clock = clock or SystemClock()
        self.rules = rules or load_rules(self.store)
        self.settings = settings or load_alert_settings(self.store)
        self.signals = SignalBoard()
        self.alerts = AlertCenter(
            sink,
            clock=self.clock,
            timer_factory=timer_factory,
            auto_dismiss_delay=self.settings.auto_dismiss_delay,
        )
        self.manager = SessionManager(
            ComplianceEngine(self.rules),
            clock=self.clock,
            store=self.store,
            auto_open=auto_open,
        )
        self.scheduler = AlertScheduler(
            self.manager,
            self.alerts,
            self.settings,
            timer_factory=timer_factory,
            signals=self.signals,
        )
        if isinstance(self.store, SqliteStore):
            self.manager.add_close_listener(self.store.archive_session)

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    def reload_rules(self) -> ComplianceRules:
        """Re-read rules from persistence; only valid between sessions."""
        rules = load_rules(self.store)
        self.manager.reload_rules(rules)
        self.rules = rules
        return rules

    def end_program(self, at: Optional[datetime] = None) -> SessionRecord:
        record = self.manager.end_program(at)
        self.scheduler.clear_alerts()
        return record

    def status(self, now: Optional[datetime] = None) -> dict[str, Any]:
        with self.manager.lock:
            now = now or self.clock.now()
            session = self.manager.session
            current = self.manager.current_activity()
            snapshot = self.manager.snapshot(now)
            report = self.manager.engine.evaluate(snapshot)
            armed = self.scheduler.armed()
            last = self.manager.last_record
        return {
            "state": self.manager.state.value,
            "session_id": session.id if session else None,
            "program_start": session.start_time.isoformat() if session else None,
            "current_activity": current.category.value if current else None,
            "current_activity_start": current.start_time.isoformat() if current else None,
            "totals": snapshot.totals.to_dict(),
            "last_session_id": last.session.id if last else None,
            "compliance": report.to_dict(),
            "armed_timers": {
                rule.value: {"key": timer.key, "fire_at": timer.fire_at.isoformat()}
                for rule, timer in armed.items()
            },
        }
