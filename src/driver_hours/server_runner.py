"""Helpers to launch the local monitoring API."""

from __future__ import annotations

import logging
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import uvicorn

from .notifier import DesktopNotificationSink, LoggingNotificationSink
from .paths import get_db_path
from .webapp import create_app

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def run_server(
    *,
    host: str = "127.0.0.1",
    port: int = 8770,
    db_path: Optional[Path] = None,
    desktop_notifications: bool = True,
    open_browser: bool = False,
    log_level: str = "info",
    log_file: Optional[Path] = None,
) -> None:
    """Start the FastAPI service and optional browser tab."""
    if log_file is not None:
        _attach_log_file(log_file, log_level)

    sink = DesktopNotificationSink() if desktop_notifications else LoggingNotificationSink()
    app = create_app(db_path=db_path or get_db_path(), sink=sink)

    if open_browser:
        url = f"http://{host}:{port}"
        threading.Thread(
            target=_launch_browser_after_delay, args=(url,), daemon=True
        ).start()

    logging.getLogger("uvicorn.error").setLevel(log_level.upper())
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def _attach_log_file(path: Path, log_level: str) -> None:
    # Used when there is no console to write to (pythonw).
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(log_level.upper())


def _launch_browser_after_delay(url: str) -> None:
    time.sleep(1.0)
    try:
        webbrowser.open(url)
    except Exception:
        logging.getLogger(__name__).exception("Failed to launch browser for %s", url)
