"""
FABCHARGE - Webhook Server

Receives usage-event notifications from the facility tracker and hands them
to the reconciliation pipeline.

Endpoints:
- POST /webhook?secret=...&resources=1322,1516 - Reconcile one notification
- GET /health - Health check
"""

import hmac
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Tuple

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from core.config import ConfigError, Settings, parse_resource_ids
from core.logging import configure_logging
from reconciliation.dispatch import ReconcilerFactory, dispatch
from reconciliation.reconciler import open_reconciler

logger = structlog.get_logger()

VERSION = "1.0.0"


# ============================================================================
# Pydantic Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    uptime_seconds: float


# ============================================================================
# Application State
# ============================================================================

class AppState:
    """Application state container."""

    def __init__(self, settings: Settings, factory: Optional[ReconcilerFactory] = None):
        self.settings = settings
        self.factory = factory or (lambda: open_reconciler(settings))
        self.start_time = datetime.now(timezone.utc)


app_state: Optional[AppState] = None


# ============================================================================
# Application Factory
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global app_state
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)
    logger.info(
        "fabcharge_starting",
        version=VERSION,
        timezone=settings.timezone,
        resources=list(settings.allowed_resources),
    )
    app_state = AppState(settings)
    yield
    logger.info("fabcharge_stopping")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    return FastAPI(
        title="fabcharge",
        description="Bills Formlabs print jobs against Fabman resource logs.",
        version=VERSION,
        lifespan=lifespan,
    )


app = create_app()


# ============================================================================
# Dependencies
# ============================================================================

def get_state() -> AppState:
    """Get application state."""
    if app_state is None:
        raise HTTPException(status_code=503, detail="Application not initialized")
    return app_state


def verify_webhook_secret(
    secret: Optional[str] = Query(None),
    state: AppState = Depends(get_state),
) -> str:
    """Verify the shared webhook secret passed as ?secret=."""
    expected = state.settings.webhook_token
    if not expected or secret is None or not hmac.compare_digest(secret, expected):
        raise HTTPException(status_code=403, detail="Invalid webhook token.")
    return secret


def allowed_resources(
    resources: Optional[str] = Query(None, description="Comma-separated resource ids"),
    state: AppState = Depends(get_state),
) -> Tuple[int, ...]:
    """Resource allow-list from ?resources=, else from configuration."""
    if resources is None:
        return state.settings.allowed_resources
    try:
        return parse_resource_ids(resources)
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ============================================================================
# Endpoints
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check(state: AppState = Depends(get_state)):
    """Health check endpoint."""
    uptime = (datetime.now(timezone.utc) - state.start_time).total_seconds()
    return HealthResponse(status="healthy", version=VERSION, uptime_seconds=uptime)


@app.post("/webhook", tags=["Webhook"])
async def receive_notification(
    request: Request,
    state: AppState = Depends(get_state),
    _secret: str = Depends(verify_webhook_secret),
    resources: Tuple[int, ...] = Depends(allowed_resources),
):
    """
    Reconcile one usage-event notification.

    The pipeline is synchronous and runs in a worker thread, one per
    notification. The response status follows the acknowledgment contract
    (200 done, 202 acknowledged without work, 500 failed run).
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON payload.")

    ack = await run_in_threadpool(
        dispatch,
        payload,
        state.factory,
        state.settings.tz,
        resources,
    )
    return JSONResponse(status_code=ack.status_code, content=ack.to_dict())
