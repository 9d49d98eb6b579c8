"""Notification sinks that present alerts to the operator."""

from __future__ import annotations

import logging
import threading
from typing import Protocol, Sequence

from plyer import notification as plyer_notification  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

APP_NAME = "Driver Hours"


class NotificationSink(Protocol):
    def present(
        self,
        alert_key: str,
        message: str,
        *,
        persistent: bool,
        urgent: bool,
        actions: Sequence[str],
    ) -> None: ...


class LoggingNotificationSink:
    """Writes alerts to the log; the default when no desktop is available."""

    def present(
        self,
        alert_key: str,
        message: str,
        *,
        persistent: bool,
        urgent: bool,
        actions: Sequence[str],
    ) -> None:
        level = logging.WARNING if urgent else logging.INFO
        logger.log(
            level,
            "ALERT %s: %s (persistent=%s actions=%s)",
            alert_key,
            message,
            persistent,
            ",".join(actions) or "-",
        )


class DesktopNotificationSink:
    """Sends a desktop notification without blocking the caller."""

    def __init__(self, title: str = "Driver Support Alert", timeout: int = 10) -> None:
        self.title = title
        self.timeout = timeout

    def present(
        self,
        alert_key: str,
        message: str,
        *,
        persistent: bool,
        urgent: bool,
        actions: Sequence[str],
    ) -> None:
        # Persistent alerts stay on screen longer; plyer has no sticky mode.
        timeout = self.timeout * 3 if persistent else self.timeout
        title = f"{self.title} (urgent)" if urgent else self.title
        thread = threading.Thread(
            target=self._send,
            args=(alert_key, title, message, timeout),
            daemon=True,
        )
        thread.start()

    @staticmethod
    def _send(alert_key: str, title: str, message: str, timeout: int) -> None:
        try:
            plyer_notification.notify(
                title=title, message=message, timeout=timeout, app_name=APP_NAME
            )
        except Exception:
            logger.exception("Desktop notification failed for %s.", alert_key)
