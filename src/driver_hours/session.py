"""Program and activity lifecycle."""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Union

from .clock import Clock, SystemClock
from .compliance import ComplianceEngine, ComplianceSnapshot, session_statistics
from .config import ComplianceRules
from .errors import AlreadyOpen, InvalidState, NoSession
from .ledger import ActivityLedger
from .models import Activity, ActivityCategory, Session, SessionRecord
from .normalization import normalize_category
from .storage import PersistenceStore, append_daily_report

logger = logging.getLogger(__name__)

SESSION_STATE_KEY = "session_data"

TopologyListener = Callable[[datetime], None]
CloseListener = Callable[[SessionRecord], None]


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    SESSION_OPEN = "session_open"
    SESSION_CLOSED = "session_closed"


class SessionManager:
    """Owns the session state machine and the lock shared with the scheduler.

    Every mutation runs inside ``self.lock`` together with the listener
    notifications, so a re-projection never observes a half-applied
    transition.
    """

    def __init__(
        self,
        engine: ComplianceEngine,
        *,
        ledger: Optional[ActivityLedger] = None,
        clock: Optional[Clock] = None,
        store: Optional[PersistenceStore] = None,
        auto_open: bool = True,
    ) -> None:
        self.engine = engine
        self.ledger = ledger or ActivityLedger()
        self.clock = clock or SystemClock()
        self.store = store
        self.auto_open = auto_open
        self.lock = threading.RLock()
        self._session: Optional[Session] = None
        self._state = SessionState.NO_SESSION
        self._listeners: list[TopologyListener] = []
        self._close_listeners: list[CloseListener] = []
        self._last_record: Optional[SessionRecord] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def last_record(self) -> Optional[SessionRecord]:
        return self._last_record

    def add_listener(self, listener: TopologyListener) -> None:
        """Register a callback run (under the lock) after every transition."""
        self._listeners.append(listener)

    def add_close_listener(self, listener: CloseListener) -> None:
        """Register a callback that receives each finalized session record."""
        self._close_listeners.append(listener)

    def start_program(self, at: Optional[datetime] = None) -> str:
        with self.lock:
            at = at or self.clock.now()
            if self._session is not None:
                raise AlreadyOpen(f"Session {self._session.id} is already open.")
            self._open_session(at)
            self._notify(at)
            assert self._session is not None
            return self._session.id

    def end_program(self, at: Optional[datetime] = None) -> SessionRecord:
        with self.lock:
            at = at or self.clock.now()
            session = self._session
            if session is None:
                raise NoSession("No open session to end.")
            floor = self.ledger.boundary or session.start_time
            if at < floor:
                logger.warning(
                    "Program end %s precedes the last activity; clamping to %s.",
                    at.isoformat(),
                    floor.isoformat(),
                )
                at = floor
            totals = self.ledger.totals(at)
            report = self.engine.evaluate(self.snapshot(at))
            session.activities = self.ledger.finish(at)
            session.end_time = at
            session.total_duration = at - session.start_time
            record = SessionRecord(
                session=session,
                totals=totals,
                statistics=session_statistics(session),
                report=report,
            )
            self._session = None
            self._state = SessionState.SESSION_CLOSED
            self._last_record = record
            logger.info(
                "Program %s ended after %s (%d activities).",
                session.id,
                session.total_duration,
                len(session.activities),
            )
            self._notify(at)
        self._checkpoint_closed(record)
        return record

    def set_activity(
        self, category: Union[str, ActivityCategory], at: Optional[datetime] = None
    ) -> Activity:
        resolved = normalize_category(category)
        with self.lock:
            at = at or self.clock.now()
            if self._session is None:
                if not self.auto_open:
                    raise InvalidState("Cannot set an activity without an open session.")
                logger.warning("No open session; starting one for %s.", resolved.value)
                self._open_session(at)
            activity = self.ledger.transition(resolved, at)
            self._notify(at)
            return activity

    def end_activity(self, at: Optional[datetime] = None) -> Activity:
        with self.lock:
            at = at or self.clock.now()
            if self._session is None:
                raise NoSession("No open session.")
            activity = self.ledger.end_activity(at)
            self._notify(at)
            return activity

    def reload_rules(self, rules: ComplianceRules) -> None:
        """Swap the rule set; only allowed while no session is open."""
        with self.lock:
            if self._session is not None:
                raise InvalidState("Compliance rules cannot change during an open session.")
            self.engine = ComplianceEngine(rules)
            logger.info("Compliance rules reloaded.")

    def current_activity(self) -> Optional[Activity]:
        with self.lock:
            return self.ledger.current

    def snapshot(self, now: Optional[datetime] = None) -> ComplianceSnapshot:
        with self.lock:
            now = now or self.clock.now()
            session = self._session
            current = self.ledger.current
            return ComplianceSnapshot(
                now=now,
                totals=self.ledger.totals(now),
                session_id=session.id if session else None,
                session_start=session.start_time if session else None,
                last_break=self.ledger.last_closed_of_category(ActivityCategory.BREAK),
                current_category=current.category if current else None,
            )

    def _open_session(self, at: datetime) -> None:
        session = Session(id=uuid.uuid4().hex, start_time=at)
        self.ledger.begin(at)
        self._session = session
        self._state = SessionState.SESSION_OPEN
        logger.info("Program %s started at %s.", session.id, at.isoformat())
        self._checkpoint_open(session)

    def _notify(self, at: datetime) -> None:
        for listener in list(self._listeners):
            try:
                listener(at)
            except Exception:
                logger.exception("Topology listener failed; state is unaffected.")

    def _checkpoint_open(self, session: Session) -> None:
        if self.store is None:
            return
        payload = {
            "is_active": True,
            "session_id": session.id,
            "start_time": session.start_time.isoformat(),
        }
        try:
            if not self.store.put(SESSION_STATE_KEY, payload):
                logger.warning("Persistence refused the session checkpoint.")
        except Exception:
            logger.exception("Failed to checkpoint session start.")

    def _checkpoint_closed(self, record: SessionRecord) -> None:
        if self.store is not None:
            try:
                self.store.put(SESSION_STATE_KEY, {"is_active": False})
                append_daily_report(self.store, record.to_dict())
            except Exception:
                logger.exception("Failed to persist session %s.", record.session.id)
        for listener in list(self._close_listeners):
            try:
                listener(record)
            except Exception:
                logger.exception("Close listener failed for session %s.", record.session.id)
