"""
Liveness and readiness probes.

Lightweight endpoints for operational monitoring without exposing secrets.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from resumeapi.core.database import check_connection, get_engine

logger = logging.getLogger("resumeapi")

router = APIRouter(tags=["health"])

REQUIRED_TABLES = ("app_users", "billing_events")


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request):
    """Readiness check: DB connectivity + required tables. Billing being off is reported, not fatal."""
    if not check_connection():
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    inspector = inspect(get_engine())
    missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

    billing = "enabled" if getattr(request.app.state, "billing_provider", None) else "disabled"
    return {"status": "ok", "billing": billing}
