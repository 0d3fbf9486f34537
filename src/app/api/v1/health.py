"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. The
orchestrator uses these to decide whether the process is alive and whether it
can serve traffic.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.app.config import EventBackend, get_settings
from src.app.core.database import get_engine
from src.app.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database, event backend, embedding worker and event backlog. Returns check results dict."""
    settings = get_settings()
    checks: dict = {"database": "ok", "events": settings.EVENT_BACKEND.value}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    if settings.EVENT_BACKEND == EventBackend.redis:
        try:
            pong = await get_redis_pool().ping()
            checks["events"] = "ok" if pong else "error"
        except Exception as e:
            checks["events"] = "error"
            checks["events_error"] = str(e)

    worker = getattr(request.app.state, "embedding_worker", None)
    checks["embedding_worker"] = "running" if worker is not None and worker.running else "stopped"

    bus = getattr(request.app.state, "event_bus", None)
    if bus is not None:
        try:
            checks["event_backlog"] = await bus.backlog()
        except Exception as e:
            checks["event_backlog"] = None
            checks["event_backlog_error"] = str(e)

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: verifies database and event backend connectivity.

    Returns 200 if all pass, 503 if any critical dependency fails. A stopped
    embedding worker is reported but does not fail readiness; searches still
    work lexically. The event backlog (published but unacknowledged chunk
    events) is reported for monitoring only.
    """
    checks = await _check_dependencies(request)
    all_healthy = checks.get("database") == "ok" and checks.get("events") != "error"

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
