"""Command-line interface for the driver hours monitor."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import typer

from .paths import get_db_path

app = typer.Typer(help="Driving-time and rest-time compliance monitor.")


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(
        8770, "--port", min=1, max=65535, help="TCP port for the API."
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the SQLite database."
    ),
    desktop_notifications: bool = typer.Option(
        True,
        "--desktop-notifications/--no-desktop-notifications",
        help="Show alerts as desktop notifications instead of log lines.",
    ),
    open_browser: bool = typer.Option(
        False,
        "--open-browser/--no-open-browser",
        help="Open the API in your default browser.",
    ),
) -> None:
    """Start the monitoring API with the periodic compliance checks."""
    from .server_runner import run_server

    run_server(
        host=host,
        port=port,
        db_path=db_path or get_db_path(),
        desktop_notifications=desktop_notifications,
        open_browser=open_browser,
    )


@app.command()
def summary(
    date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Date (YYYY-MM-DD) to summarize. Defaults to today.",
    ),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the SQLite database.",
    ),
) -> None:
    """Print per-category totals for a specific day."""
    from .reporting import SummaryPrinter

    target = datetime.strptime(date, "%Y-%m-%d") if date else datetime.now()
    summary_printer = SummaryPrinter(db_path=db_path or get_db_path())
    summary_printer.print_daily_summary(target)


@app.command()
def reports(
    limit: int = typer.Option(5, "--limit", min=1, max=30, help="Sessions to list."),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the SQLite database."
    ),
) -> None:
    """List the most recent stored session reports."""
    from .db import SqliteStore
    from .reporting import print_recent_reports

    print_recent_reports(SqliteStore(db_path or get_db_path()), limit=limit)


@app.command()
def rules(
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the SQLite database."
    ),
) -> None:
    """Show the compliance rules that the next session will use."""
    from .compliance import format_hours
    from .db import SqliteStore
    from .monitor import load_rules

    loaded = load_rules(SqliteStore(db_path or get_db_path()))
    for name, millis in loaded.to_mapping().items():
        typer.echo(f"{name:<28} {format_hours(timedelta(milliseconds=millis))}")
