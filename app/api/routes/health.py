"""
Health Check Endpoints

Liveness and readiness for the planner. Readiness distinguishes required
dependencies (database, Redis) from the routing provider, whose outage only
degrades travel feasibility.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.infra.database import check_db_health
from app.infra.redis import check_redis_health
from app.infra.routing import get_routing_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Set application start time. Called once on startup."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    environment: str
    uptime_seconds: Optional[float] = None


class ReadyResponse(BaseModel):
    """Readiness with one entry per dependency."""
    status: str
    timestamp: datetime
    checks: dict[str, str]
    routing_degraded: bool


async def _check(name: str, probe: Callable[[], Awaitable[bool]], failed: str) -> str:
    try:
        if await probe():
            return "ok"
        logger.warning(f"Readiness check: {name} unhealthy")
        return failed
    except Exception as e:
        logger.error(f"Readiness check: {name} error - {e}")
        return "error"


async def run_checks() -> dict[str, str]:
    """Probe every dependency concurrently."""
    database, redis, routing = await asyncio.gather(
        _check("database", check_db_health, "failed"),
        _check("redis", check_redis_health, "failed"),
        _check("routing", get_routing_client().check_health, "degraded"),
    )
    return {"database": database, "redis": redis, "routing": routing}


@router.get("", response_model=HealthResponse, summary="Basic health check")
async def health() -> HealthResponse:
    """Always 200 while the process runs. Use /health/ready for dependencies."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        environment=settings.app_env,
        uptime_seconds=get_uptime_seconds(),
    )


@router.get("/live", response_model=HealthResponse, summary="Liveness probe")
async def live() -> HealthResponse:
    return HealthResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        environment=settings.app_env,
        uptime_seconds=get_uptime_seconds(),
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    responses={503: {"description": "Database or Redis is unavailable"}},
)
async def ready():
    """
    Readiness probe for load balancers.

    Returns 503 only when the database or Redis is down. A routing outage
    is reported as degraded: availability still answers, failing closed on
    travel-dependent slots, and route sequencing falls back to haversine.
    """
    checks = await run_checks()
    required_ok = checks["database"] == "ok" and checks["redis"] == "ok"

    response = ReadyResponse(
        status="ready" if required_ok else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
        routing_degraded=checks["routing"] != "ok",
    )
    if not required_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response
