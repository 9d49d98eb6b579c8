"""Locations of the monitor's database and log file."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_data_path

APP_NAME = "DriverHours"
DB_FILENAME = "driver_hours.sqlite3"
LOG_FILENAME = "monitor.log"

# Points the monitor at another data directory (portable installs, tests).
HOME_ENV_VAR = "DRIVER_HOURS_HOME"


def get_data_dir() -> Path:
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        path = Path(override).expanduser()
    else:
        path = user_data_path(appname=APP_NAME, appauthor=False, roaming=True)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_db_path() -> Path:
    return get_data_dir() / DB_FILENAME


def get_log_path() -> Path:
    return get_data_dir() / LOG_FILENAME
