"""Health check endpoints for the Sampark API.

Liveness says the process is up; readiness additionally checks the
database and the cache.  A cache outage only degrades readiness, it
never fails it, because every cache use is best-effort.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel
from sqlalchemy import text

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    status: str
    checks: dict[str, str]


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe; does not touch downstream dependencies."""
    start_time: float = getattr(request.app.state, "start_time", time.time())
    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(time.time() - start_time, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request):
    """Readiness probe: 200 when the database answers, 503 otherwise."""
    checks: dict[str, str] = {}
    database_ok = False

    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is not None:
        try:
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
            database_ok = True
        except Exception as exc:
            checks["database"] = f"error: {type(exc).__name__}"
    else:
        checks["database"] = "not_configured"

    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        checks["cache"] = "not_configured"
    elif await cache.ping():
        checks["cache"] = "ok"
    else:
        checks["cache"] = "degraded"

    if not database_ok:
        status = "unavailable"
    elif checks["cache"] == "ok":
        status = "ready"
    else:
        status = "degraded"

    logger.info("health.readiness_check", status=status, checks=checks)

    body = ReadinessResponse(status=status, checks=checks)
    return ORJSONResponse(status_code=200 if database_ok else 503, content=body.model_dump())
