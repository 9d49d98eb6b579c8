"""Keyed alert delivery with de-duplication and auto-dismiss."""

from __future__ import annotations

import logging
import threading
import uuid
from collections import Counter, deque
from datetime import timedelta
from typing import Any, Optional, Sequence

from .clock import Clock, SystemClock, TimerFactory, thread_timer
from .models import Alert, AlertType
from .notifier import LoggingNotificationSink, NotificationSink

logger = logging.getLogger(__name__)

ALERT_PRIORITY: dict[AlertType, str] = {
    AlertType.COMPLIANCE: "high",
    AlertType.SAFETY: "high",
    AlertType.WARNING: "medium",
    AlertType.INFORMATION: "medium",
}

HISTORY_LIMIT = 500


class AlertCenter:
    """Tracks active alerts and forwards new ones to a notification sink.

    ``show_alert`` is a no-op while an alert with the same key is active.
    Non-persistent alerts dismiss themselves after ``auto_dismiss_delay``.
    """

    def __init__(
        self,
        sink: Optional[NotificationSink] = None,
        *,
        clock: Optional[Clock] = None,
        timer_factory: TimerFactory = thread_timer,
        auto_dismiss_delay: timedelta = timedelta(seconds=5),
    ) -> None:
        self.sink = sink or LoggingNotificationSink()
        self.clock = clock or SystemClock()
        self.auto_dismiss_delay = auto_dismiss_delay
        self._timer_factory = timer_factory
        self._active: dict[str, Alert] = {}
        self._history: deque[Alert] = deque(maxlen=HISTORY_LIMIT)
        self._lock = threading.RLock()

    def show_alert(
        self,
        alert_type: AlertType,
        message: str,
        *,
        key: Optional[str] = None,
        persistent: bool = True,
        urgent: bool = False,
        actions: Sequence[str] = (),
    ) -> Optional[str]:
        """Present an alert; returns its key, or ``None`` when it was already active."""
        key = key or f"alert_{uuid.uuid4().hex}"
        with self._lock:
            existing = self._active.get(key)
            if existing is not None and not existing.dismissed:
                return None
            alert = Alert(
                key=key,
                alert_type=alert_type,
                message=message,
                created_at=self.clock.now(),
                persistent=persistent,
                urgent=urgent,
                actions=tuple(actions),
            )
            self._active[key] = alert
            self._history.append(alert)
            if not persistent:
                alert.dismiss_handle = self._timer_factory(
                    self.auto_dismiss_delay.total_seconds(),
                    lambda: self._auto_dismiss(alert),
                )
        logger.info("Showing %s alert %s: %s", alert_type.value, key, message)
        try:
            self.sink.present(
                key,
                message,
                persistent=persistent,
                urgent=urgent,
                actions=alert.actions,
            )
        except Exception:
            logger.exception("Notification sink failed for %s.", key)
        return key

    def dismiss(self, key: str) -> bool:
        with self._lock:
            alert = self._active.pop(key, None)
            if alert is None:
                return False
            self._mark_dismissed(alert)
        logger.info("Alert dismissed: %s", key)
        return True

    def clear(self) -> None:
        with self._lock:
            for alert in self._active.values():
                self._mark_dismissed(alert)
            self._active.clear()
        logger.info("All alerts cleared.")

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._active

    def active(self) -> list[Alert]:
        with self._lock:
            return list(self._active.values())

    def history(self) -> list[Alert]:
        with self._lock:
            return list(self._history)

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            by_type = Counter(alert.alert_type.value for alert in self._history)
            by_priority = Counter(ALERT_PRIORITY[alert.alert_type] for alert in self._history)
            return {
                "total_alerts": len(self._history),
                "active_alerts": len(self._active),
                "alerts_by_type": dict(by_type),
                "alerts_by_priority": dict(by_priority),
            }

    def _auto_dismiss(self, alert: Alert) -> None:
        with self._lock:
            # A newer alert may have replaced this one under the same key.
            if self._active.get(alert.key) is not alert:
                return
            del self._active[alert.key]
            alert.dismissed = True
        logger.debug("Alert auto-dismissed: %s", alert.key)

    @staticmethod
    def _mark_dismissed(alert: Alert) -> None:
        alert.dismissed = True
        if alert.dismiss_handle is not None:
            alert.dismiss_handle.cancel()
            alert.dismiss_handle = None
