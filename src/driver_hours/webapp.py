"""FastAPI application exposing the compliance monitor over a local API."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, field_validator

from . import __version__
from .db import SqliteStore
from .errors import (
    AlreadyOpen,
    DriverHoursError,
    InvalidState,
    NoActiveActivity,
    NoSession,
    UnknownCategory,
)
from .monitor import ComplianceMonitor
from .notifier import NotificationSink
from .paths import get_db_path
from .storage import load_daily_reports

logger = logging.getLogger(__name__)


def to_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an offset-aware instant to the naive local time the tracker uses."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class ProgramPayload(BaseModel):
    at: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("at")
    @classmethod
    def local_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(value)


class ActivityPayload(BaseModel):
    category: str
    at: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("at")
    @classmethod
    def local_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(value)


class SignalsPayload(BaseModel):
    speed_kmh: Optional[float] = None
    speed_limit_kmh: Optional[float] = None
    accuracy_m: Optional[float] = None
    fuel_percent: Optional[float] = None
    weather_condition: Optional[str] = None
    next_service_km: Optional[float] = None
    current_mileage_km: Optional[float] = None

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Optional[Path] = None,
    monitor: Optional[ComplianceMonitor] = None,
    sink: Optional[NotificationSink] = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    if monitor is None:
        store = SqliteStore(Path(db_path or get_db_path()))
        monitor = ComplianceMonitor(store=store, sink=sink)

    app = FastAPI(title="Driver Hours", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.monitor = monitor

    @app.on_event("startup")
    async def _startup() -> None:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        monitor.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        monitor.stop()

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        return request.app.state.monitor.status()

    @app.post("/api/program/start")
    def start_program(payload: ProgramPayload, request: Request) -> Dict[str, Any]:
        current: ComplianceMonitor = request.app.state.monitor
        try:
            session_id = current.manager.start_program(payload.at)
        except DriverHoursError as exc:
            raise _http_error(exc) from exc
        return {"session_id": session_id}

    @app.post("/api/program/end")
    def end_program(payload: ProgramPayload, request: Request) -> Dict[str, Any]:
        current: ComplianceMonitor = request.app.state.monitor
        try:
            record = current.end_program(payload.at)
        except DriverHoursError as exc:
            raise _http_error(exc) from exc
        return record.to_dict()

    @app.post("/api/activity")
    def set_activity(payload: ActivityPayload, request: Request) -> Dict[str, Any]:
        current: ComplianceMonitor = request.app.state.monitor
        try:
            activity = current.manager.set_activity(payload.category, payload.at)
        except DriverHoursError as exc:
            raise _http_error(exc) from exc
        return activity.to_dict()

    @app.post("/api/activity/end")
    def end_activity(payload: ProgramPayload, request: Request) -> Dict[str, Any]:
        current: ComplianceMonitor = request.app.state.monitor
        try:
            activity = current.manager.end_activity(payload.at)
        except DriverHoursError as exc:
            raise _http_error(exc) from exc
        return activity.to_dict()

    @app.get("/api/compliance")
    def compliance(request: Request) -> Dict[str, Any]:
        current: ComplianceMonitor = request.app.state.monitor
        snapshot = current.manager.snapshot()
        return current.manager.engine.evaluate(snapshot).to_dict()

    @app.get("/api/alerts")
    def alerts(request: Request) -> Dict[str, Any]:
        current: ComplianceMonitor = request.app.state.monitor
        return {
            "alerts": [alert.to_dict() for alert in current.alerts.active()],
            "statistics": current.alerts.statistics(),
        }

    @app.delete("/api/alerts/{key:path}")
    def dismiss_alert(key: str, request: Request) -> Dict[str, Any]:
        if not request.app.state.monitor.alerts.dismiss(key):
            raise HTTPException(status_code=404, detail="Alert not found")
        return {"dismissed": key}

    @app.delete("/api/alerts")
    def clear_alerts(request: Request) -> Dict[str, Any]:
        request.app.state.monitor.scheduler.clear_alerts()
        return {"cleared": True}

    @app.post("/api/signals")
    def update_signals(payload: SignalsPayload, request: Request) -> Dict[str, Any]:
        current: ComplianceMonitor = request.app.state.monitor
        values = payload.model_dump(exclude_unset=True)
        signals = current.signals.update(**values)
        return {field: getattr(signals, field) for field in SignalsPayload.model_fields}

    @app.get("/api/reports")
    def reports(
        request: Request,
        limit: int = Query(default=30, ge=1, le=30, description="Number of sessions."),
    ) -> Dict[str, Any]:
        current: ComplianceMonitor = request.app.state.monitor
        return {"reports": load_daily_reports(current.store)[:limit]}

    return app


def _http_error(exc: DriverHoursError) -> HTTPException:
    if isinstance(exc, UnknownCategory):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, (AlreadyOpen, NoSession, InvalidState, NoActiveActivity)):
        return HTTPException(status_code=409, detail=str(exc))
    logger.error("Unhandled tracker error: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))
