"""SQLite persistence for settings, session checkpoints and closed sessions."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterator, Optional

from .models import SessionRecord

logger = logging.getLogger(__name__)

DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"

# The request threads and the scheduler thread each open their own
# connection, so writers wait for the lock instead of failing at once.
BUSY_TIMEOUT_SECONDS = 5.0


def open_database(path: Path) -> sqlite3.Connection:
    """Connect in autocommit mode with foreign keys on and the schema in place."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=BUSY_TIMEOUT_SECONDS, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(path: Path) -> Iterator[sqlite3.Connection]:
    conn = open_database(path)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Group statements on an autocommit connection into one write."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except Exception:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            total_seconds REAL NOT NULL,
            is_compliant INTEGER NOT NULL DEFAULT 1
        );

        CREATE TABLE IF NOT EXISTS activities (
            id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
            category TEXT NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_activities_start_time
            ON activities(start_time);
        """
    )


def read_value(conn: sqlite3.Connection, key: str) -> Optional[Any]:
    row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
    if row is None:
        return None
    return json.loads(row["value"])


def write_value(conn: sqlite3.Connection, key: str, value: Any) -> None:
    conn.execute(
        """
        INSERT INTO kv_store (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET
            value = excluded.value,
            updated_at = excluded.updated_at
        """,
        (key, json.dumps(value), datetime.now().strftime(DATETIME_FMT)),
    )


def insert_session(conn: sqlite3.Connection, record: SessionRecord) -> None:
    """Archive a closed session and its activities in one write."""
    session = record.session
    if session.end_time is None:
        raise ValueError(f"Session {session.id} is still open")
    activity_rows = [
        (
            activity.id,
            session.id,
            activity.category.value,
            activity.start_time.strftime(DATETIME_FMT),
            activity.end_time.strftime(DATETIME_FMT),
        )
        for activity in session.activities
        if activity.end_time is not None
    ]
    with transaction(conn):
        conn.execute(
            """
            INSERT OR REPLACE INTO sessions (
                id, start_time, end_time, total_seconds, is_compliant
            ) VALUES (?, ?, ?, ?, ?)
            """,
            (
                session.id,
                session.start_time.strftime(DATETIME_FMT),
                session.end_time.strftime(DATETIME_FMT),
                session.total_duration.total_seconds(),
                1 if record.report.is_compliant else 0,
            ),
        )
        conn.executemany(
            """
            INSERT OR REPLACE INTO activities (
                id, session_id, category, start_time, end_time
            ) VALUES (?, ?, ?, ?, ?)
            """,
            activity_rows,
        )


def fetch_summary_by_day(
    conn: sqlite3.Connection, day: datetime
) -> list[sqlite3.Row]:
    """Return total seconds per activity category on a given day."""
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return list(
        conn.execute(
            """
            SELECT
                category,
                COUNT(*) AS activity_count,
                SUM(
                    (julianday(end_time) - julianday(start_time)) * 86400.0
                ) AS seconds
            FROM activities
            WHERE start_time >= ? AND start_time < ?
            GROUP BY category
            ORDER BY seconds DESC;
            """,
            (start.strftime(DATETIME_FMT), end.strftime(DATETIME_FMT)),
        )
    )


def fetch_sessions_for_day(
    conn: sqlite3.Connection, day: datetime
) -> list[sqlite3.Row]:
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return list(
        conn.execute(
            """
            SELECT id, start_time, end_time, total_seconds, is_compliant
            FROM sessions
            WHERE start_time >= ? AND start_time < ?
            ORDER BY start_time;
            """,
            (start.strftime(DATETIME_FMT), end.strftime(DATETIME_FMT)),
        )
    )


class SqliteStore:
    """``PersistenceStore`` backed by a SQLite file.

    Each call opens its own connection, so the store can be shared between
    the request threads and the scheduler thread.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def get(self, key: str) -> Optional[Any]:
        try:
            with database_connection(self.db_path) as conn:
                return read_value(conn, key)
        except (sqlite3.Error, ValueError):
            logger.exception("Failed to load %s from %s", key, self.db_path)
            return None

    def put(self, key: str, value: Any) -> bool:
        try:
            with database_connection(self.db_path) as conn:
                write_value(conn, key, value)
            return True
        except (sqlite3.Error, TypeError, ValueError):
            logger.exception("Failed to save %s to %s", key, self.db_path)
            return False

    def archive_session(self, record: SessionRecord) -> None:
        with database_connection(self.db_path) as conn:
            insert_session(conn, record)
        logger.debug(
            "Archived session %s with %d activities.",
            record.session.id,
            len(record.session.activities),
        )
