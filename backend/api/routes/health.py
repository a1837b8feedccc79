"""Health check endpoints.

Provides:
- Liveness probe (/health)
- Dependency check (/health/ready)
- Queue status (/health/status)
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.dependencies import get_db
from db import database
from services.queue_store import QueueStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


@router.get("", response_model=dict[str, Any])
async def liveness() -> dict[str, Any]:
    """Simple liveness probe."""
    settings = get_settings()
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok",
    }


@router.get("/ready", response_model=dict[str, Any])
async def readiness() -> dict[str, Any]:
    """
    Dependency check.
    Pings the database and Redis; 503 if the database is down.
    """
    checks: dict[str, str] = {}

    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        checks["database"] = "unavailable"

    try:
        import redis.asyncio as aioredis

        client = aioredis.from_url(get_settings().REDIS_URL, socket_connect_timeout=2)
        try:
            checks["redis"] = "ok" if await client.ping() else "degraded"
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("Redis health check failed: %s", e)
        checks["redis"] = "unavailable"

    if checks["database"] == "unavailable":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "checks": checks},
        )

    return {"status": "healthy", **checks}


@router.get("/status", response_model=dict[str, Any])
async def system_status(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """
    Uptime, scheduler settings and queue counts by status.
    Intended for dashboards and monitoring.
    """
    settings = get_settings()
    uptime_seconds = time.monotonic() - _start_time
    hours, remainder = divmod(int(uptime_seconds), 3600)
    minutes, seconds = divmod(remainder, 60)

    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "started_at": _start_datetime,
        "uptime": f"{hours}h {minutes}m {seconds}s",
        "uptime_seconds": round(uptime_seconds, 1),
        "scheduler": {
            "time_budget_seconds": settings.SCHEDULER_TIME_BUDGET_SECONDS,
            "batch_size": settings.SCHEDULER_BATCH_SIZE,
            "lease_seconds": settings.JOB_LEASE_SECONDS,
        },
        "queue": await QueueStore(db).stats(),
    }
