"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable

from .compliance import format_hours
from .db import database_connection, fetch_sessions_for_day, fetch_summary_by_day
from .models import ActivityCategory
from .storage import PersistenceStore, load_daily_reports


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def print_daily_summary(self, day: datetime) -> None:
        with database_connection(self.db_path) as conn:
            rows = fetch_summary_by_day(conn, day)
            sessions = fetch_sessions_for_day(conn, day)
        if not rows and not sessions:
            print("No activity recorded for the selected day.")
            return

        totals = aggregate_by_category(rows)
        program_seconds = sum(row["total_seconds"] for row in sessions)
        compliant = sum(1 for row in sessions if row["is_compliant"])

        print(f"Summary for {day.strftime('%Y-%m-%d')}")
        print("-" * 40)
        print(f"Programs:      {len(sessions)} ({compliant} compliant)")
        print(f"Program time:  {_hours(program_seconds)}")
        print()
        for category in ActivityCategory:
            label = category.value.capitalize()
            print(f"  {label:<12} {_hours(totals.get(category.value, 0.0))}")


def print_recent_reports(store: PersistenceStore, limit: int = 5) -> None:
    reports = load_daily_reports(store)[:limit]
    if not reports:
        print("No sessions stored yet.")
        return
    for report in reports:
        print(format_report_line(report))


def format_report_line(report: dict[str, Any]) -> str:
    stats = report.get("stats") or {}
    compliance = report.get("compliance_report") or {}
    flag = "OK " if compliance.get("is_compliant", True) else "!! "
    started = (report.get("start_time") or "?")[:16].replace("T", " ")
    return (
        f"{flag}{started}  "
        f"program {_hours_ms(stats.get('total_program_ms', 0))}  "
        f"driving {_hours_ms(stats.get('driving_ms', 0))}  "
        f"break {_hours_ms(stats.get('break_ms', 0))}"
    )


def aggregate_by_category(rows: Iterable[Any]) -> dict[str, float]:
    totals: dict[str, float] = {}
    for row in rows:
        totals[row["category"]] = totals.get(row["category"], 0.0) + float(row["seconds"] or 0)
    return totals


def _hours(seconds: float) -> str:
    return format_hours(timedelta(seconds=seconds))


def _hours_ms(millis: float) -> str:
    return format_hours(timedelta(milliseconds=millis))
