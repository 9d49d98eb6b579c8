"""Key-value persistence interface used at session boundaries."""

from __future__ import annotations

import copy
import logging
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

DAILY_REPORTS_KEY = "daily_reports"
COMPLIANCE_RULES_KEY = "compliance_rules"
SETTINGS_KEY = "settings"
MAX_DAILY_REPORTS = 30


class PersistenceStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def put(self, key: str, value: Any) -> bool: ...


class MemoryStore:
    """Process-local store, used when no database is configured."""

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        return copy.deepcopy(value)

    def put(self, key: str, value: Any) -> bool:
        self._data[key] = copy.deepcopy(value)
        return True


def load_daily_reports(store: PersistenceStore) -> list[dict[str, Any]]:
    reports = store.get(DAILY_REPORTS_KEY)
    if not isinstance(reports, list):
        return []
    return reports


def append_daily_report(store: PersistenceStore, report: dict[str, Any]) -> bool:
    """Store ``report`` newest-first, keeping the most recent sessions only."""
    reports = [item for item in load_daily_reports(store) if item.get("id") != report.get("id")]
    reports.insert(0, report)
    reports.sort(key=lambda item: item.get("end_time") or "", reverse=True)
    ok = store.put(DAILY_REPORTS_KEY, reports[:MAX_DAILY_REPORTS])
    if not ok:
        logger.warning("Persistence refused daily report %s.", report.get("id"))
    return ok
