import sqlite3
from datetime import timedelta

import pytest

from driver_hours.db import (
    SqliteStore,
    database_connection,
    fetch_sessions_for_day,
    fetch_summary_by_day,
    insert_session,
    transaction,
)
from driver_hours.models import ActivityCategory, DailyTotals, SessionRecord
from driver_hours.monitor import ComplianceMonitor
from driver_hours.reporting import aggregate_by_category, format_report_line
from driver_hours.storage import load_daily_reports

from conftest import T0, hours


def test_store_round_trip(tmp_path):
    store = SqliteStore(tmp_path / "nested" / "tracker.sqlite3")

    assert store.get("settings") is None
    assert store.put("settings", {"alerts": {"fuelAlerts": False}})
    assert store.get("settings") == {"alerts": {"fuelAlerts": False}}
    assert store.put("settings", {"alerts": {}})
    assert store.get("settings") == {"alerts": {}}


def test_closed_sessions_are_archived(tmp_path, clock, timers, sink):
    db_path = tmp_path / "tracker.sqlite3"
    monitor = ComplianceMonitor(
        store=SqliteStore(db_path), clock=clock, sink=sink, timer_factory=timers
    )
    monitor.manager.start_program(T0)
    monitor.manager.set_activity(ActivityCategory.DRIVING, T0)
    monitor.manager.set_activity(ActivityCategory.BREAK, T0 + hours(2))
    monitor.manager.set_activity(ActivityCategory.DRIVING, T0 + timedelta(hours=2, minutes=45))
    record = monitor.end_program(T0 + hours(4))

    with database_connection(db_path) as conn:
        rows = fetch_summary_by_day(conn, T0)
        sessions = fetch_sessions_for_day(conn, T0)

    totals = aggregate_by_category(rows)
    assert round(totals["driving"]) == int(hours(3.25).total_seconds())
    assert round(totals["break"]) == 45 * 60
    assert [row["id"] for row in sessions] == [record.session.id]
    assert sessions[0]["is_compliant"] == 1

    reports = load_daily_reports(monitor.store)
    assert reports[0]["id"] == record.session.id
    assert format_report_line(reports[0]).startswith("OK ")


def test_report_line_uses_hours_and_minutes():
    report = {
        "start_time": T0.isoformat(),
        "stats": {"total_program_ms": 4.5 * 3600 * 1000, "driving_ms": 3 * 3600 * 1000},
        "compliance_report": {"is_compliant": False},
    }
    assert format_report_line(report) == "!! 2026-03-02 06:00  program 4h30  driving 3h  break 0h"


def test_failed_transaction_leaves_nothing_behind(tmp_path):
    db_path = tmp_path / "tracker.sqlite3"
    with database_connection(db_path) as conn:
        with pytest.raises(sqlite3.IntegrityError):
            with transaction(conn):
                conn.execute(
                    "INSERT INTO sessions (id, start_time, end_time, total_seconds) "
                    "VALUES ('s1', 'a', 'b', 1)"
                )
                conn.execute(
                    "INSERT INTO activities (id, session_id, category, start_time, end_time) "
                    "VALUES ('a1', 'missing', 'driving', 'a', 'b')"
                )
        assert conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0] == 0


def test_open_session_is_not_archived(tmp_path, monitor):
    monitor.manager.start_program(T0)
    record = SessionRecord(
        session=monitor.manager.session,
        totals=DailyTotals(),
        statistics=None,
        report=None,
    )
    with database_connection(tmp_path / "tracker.sqlite3") as conn:
        with pytest.raises(ValueError):
            insert_session(conn, record)
