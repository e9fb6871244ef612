"""
FastAPI server: alert review API for the admin dashboard.

Exposes the alert list/detail/summary, reviewer status changes and an
on-demand scan trigger. The periodic scanner runs in a background thread
started by the lifespan. Config via env (see doorstep_guard.config).
"""

from __future__ import annotations

import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from doorstep_guard import __version__
from doorstep_guard.alerts.lifecycle import AlertLifecycleManager
from doorstep_guard.alerts.models import Alert, AlertCategory, AlertStatus
from doorstep_guard.alerts.store import AlertStore, SQLAlertStore
from doorstep_guard.analysis_engine.rules import RuleEvaluator
from doorstep_guard.config import Settings, get_settings, load_rule_config
from doorstep_guard.core.exceptions import AlertNotFound, InvalidTransition, ScanFailed
from doorstep_guard.guard_logging import get_logger
from doorstep_guard.scanner.engine import ScanEngine
from doorstep_guard.sources import ScanWindow, build_record_source

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Service wiring and dependencies
# -----------------------------------------------------------------------------


@dataclass
class GuardServices:
    """Process-wide objects shared by routes and the periodic scanner."""

    store: AlertStore
    lifecycle: AlertLifecycleManager
    scan_engine: ScanEngine | None
    """None when no record source is configured (alerts stay reviewable)."""


_services: GuardServices | None = None
_services_lock = threading.Lock()


def build_services(settings: Settings | None = None) -> GuardServices:
    settings = settings or get_settings()
    store = SQLAlertStore(settings.database_url)
    try:
        source = build_record_source(settings)
    except ValueError as e:
        logger.warning("record_source_not_configured", error=str(e))
        source = None
    scan_engine = None
    if source is not None:
        scan_engine = ScanEngine(
            source,
            store,
            RuleEvaluator(load_rule_config()),
            source_timeout_sec=settings.source_timeout_sec,
        )
    return GuardServices(store=store, lifecycle=AlertLifecycleManager(store), scan_engine=scan_engine)


def get_services() -> GuardServices:
    """Dependency: lazily built, app-scoped services."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services()
        return _services


def close_services() -> None:
    """Release the source pool and the alert store connection; next use rebuilds them."""
    global _services
    with _services_lock:
        services, _services = _services, None
    if services is None:
        return
    if services.scan_engine is not None:
        services.scan_engine.close()
    if isinstance(services.store, SQLAlertStore):
        services.store.dispose()


def get_lifecycle(services: GuardServices = Depends(get_services)) -> AlertLifecycleManager:
    return services.lifecycle


def get_scan_engine(services: GuardServices = Depends(get_services)) -> ScanEngine:
    if services.scan_engine is None:
        raise HTTPException(status_code=503, detail="No record source configured")
    return services.scan_engine


# -----------------------------------------------------------------------------
# Request / response models
# -----------------------------------------------------------------------------


class AlertResponse(BaseModel):
    """One alert as shown on the dashboard."""

    alert_id: str = Field(..., description="Deterministic id derived from subject and category")
    subject_id: str
    subject_name: str
    subject_role: str = Field(..., description="user or agent")
    category: AlertCategory
    category_label: str
    reason: str
    confidence: float = Field(..., ge=0, le=1)
    confidence_band: str = Field(..., description="high, medium or low")
    detected_at: datetime
    updated_at: datetime | None = None
    status: AlertStatus
    rule: str = ""
    evidence: dict[str, Any] = Field(default_factory=dict, description="Rule-specific evidence")

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertResponse":
        return cls(**alert.to_dict())


class AlertSummaryResponse(BaseModel):
    total: int
    pending: int
    reviewed: int = Field(..., description="confirmed + dismissed")
    by_status: dict[str, int]
    by_category: dict[str, int]


class StatusUpdateRequest(BaseModel):
    """PATCH /alerts/{alert_id}/status body."""

    status: AlertStatus = Field(..., description="pending, confirmed or dismissed")


class ScanRequest(BaseModel):
    """POST /scan body; both bounds optional (since inclusive, until exclusive)."""

    since: datetime | None = None
    until: datetime | None = None


class ScanResponse(BaseModel):
    scan_id: str
    alerts_created: int
    alerts_updated: int
    partial: bool
    failed_sources: list[str] = Field(default_factory=list)
    skipped_records: dict[str, int] = Field(default_factory=dict)
    candidates: int
    records_scanned: dict[str, int] = Field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None


def _utc(ts: datetime | None) -> datetime | None:
    if ts is None:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


# -----------------------------------------------------------------------------
# Lifespan: start periodic scanner in a background thread (never blocks API)
# -----------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    from doorstep_guard.scheduler.runner import (
        PeriodicScanConfig,
        start_periodic_scans,
        stop_periodic_scans,
    )

    settings = get_settings()
    services = get_services()
    runner = None
    if settings.scheduler_enabled and services.scan_engine is not None:
        runner = start_periodic_scans(
            services.scan_engine,
            PeriodicScanConfig(interval_sec=settings.scan_interval_sec),
        )
        logger.info("api_periodic_scanner_started", interval_sec=settings.scan_interval_sec)
    else:
        logger.info("api_periodic_scanner_disabled")

    yield

    if runner is not None:
        stop_periodic_scans(*runner)
        logger.info("api_periodic_scanner_stopped")
    close_services()


# -----------------------------------------------------------------------------
# App and routes
# -----------------------------------------------------------------------------

app = FastAPI(
    title="Doorstep Guard API",
    description="Fraud and anomaly alerts for the doorstep banking portal.",
    version=__version__,
    lifespan=lifespan,
)


@app.get("/health")
def health() -> dict[str, str]:
    """Liveness probe: API is up."""
    return {"status": "ok"}


@app.get("/alerts", response_model=list[AlertResponse])
def list_alerts(
    category: AlertCategory | None = Query(None, description="Exact category match"),
    search: str | None = Query(None, max_length=256, description="Substring of name, id or reason"),
    status: AlertStatus | None = Query(None, description="Exact status match"),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle),
) -> list[AlertResponse]:
    alerts = lifecycle.list_alerts(category=category, search=search, status=status)
    return [AlertResponse.from_alert(a) for a in alerts]


@app.get("/alerts/summary", response_model=AlertSummaryResponse)
def alerts_summary(lifecycle: AlertLifecycleManager = Depends(get_lifecycle)) -> AlertSummaryResponse:
    return AlertSummaryResponse(**lifecycle.summary())


@app.get("/alerts/{alert_id}", response_model=AlertResponse)
def get_alert(alert_id: str, lifecycle: AlertLifecycleManager = Depends(get_lifecycle)) -> AlertResponse:
    try:
        return AlertResponse.from_alert(lifecycle.get_alert(alert_id))
    except AlertNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@app.patch("/alerts/{alert_id}/status", response_model=AlertResponse)
def update_alert_status(
    alert_id: str,
    body: StatusUpdateRequest,
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle),
) -> AlertResponse:
    """
    Reviewer decision. 404 for an unknown alert; 409 when the change is not
    allowed (confirmed and dismissed must go back through pending).
    """
    try:
        alert = lifecycle.set_alert_status(alert_id, body.status)
    except AlertNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return AlertResponse.from_alert(alert)


@app.post("/scan", response_model=ScanResponse)
def trigger_scan(
    body: ScanRequest | None = None,
    scan_engine: ScanEngine = Depends(get_scan_engine),
) -> ScanResponse:
    """Run a scan now. 503 when no usable input could be read."""
    body = body or ScanRequest()
    window = None
    if body.since is not None or body.until is not None:
        try:
            window = ScanWindow(since=_utc(body.since), until=_utc(body.until))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
    try:
        result = scan_engine.run_scan(window)
    except ScanFailed as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    logger.info("api_scan_done", scan_id=result.scan_id, alerts_created=result.alerts_created)
    return ScanResponse(**result.to_dict())


@app.exception_handler(HTTPException)
def http_exception_handler(request: Any, exc: HTTPException) -> JSONResponse:
    """Consistent JSON error response for HTTPException."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )
