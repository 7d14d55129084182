"""Health endpoints following Kubernetes probe conventions."""

import os
import platform
import resource
import time
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mundapdari.config import settings
from mundapdari.core.dependencies import get_notifications, get_scheduler
from mundapdari.core.redis_client import get_redis
from mundapdari.database import get_db

router = APIRouter(prefix="/health", tags=["Health"])

DbSession = Annotated[AsyncSession, Depends(get_db)]

_STARTED_AT = time.monotonic()


def _uptime() -> float:
    return round(time.monotonic() - _STARTED_AT, 1)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _check_database(db: AsyncSession) -> dict:
    started = time.perf_counter()
    try:
        await db.execute(select(1))
    except Exception as exc:
        return {"status": "error", "error": str(exc)}
    return {"status": "ok", "response_time_ms": round((time.perf_counter() - started) * 1000, 1)}


async def _check_redis() -> dict:
    started = time.perf_counter()
    try:
        redis = await get_redis()
        if redis is None:
            return {"status": "unavailable"}
        await redis.ping()
    except Exception as exc:
        return {"status": "error", "error": str(exc)}
    return {"status": "ok", "response_time_ms": round((time.perf_counter() - started) * 1000, 1)}


@router.get("")
async def health(db: DbSession):
    """Overall health; 503 when the database is unreachable."""
    database = await _check_database(db)
    redis = await _check_redis()

    # "unavailable" = optional service not configured; only "error" = degraded
    healthy = database["status"] == "ok" and redis["status"] != "error"
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": _now(),
            "uptime": _uptime(),
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "services": {
                "database": database["status"],
                "redis": redis["status"],
            },
        },
    )


@router.get("/detailed")
async def health_detailed(request: Request, db: DbSession):
    checks = [
        {"name": "database", **await _check_database(db)},
        {"name": "redis", **await _check_redis()},
    ]
    healthy = all(check["status"] in ("ok", "unavailable") for check in checks) and checks[0]["status"] == "ok"

    scheduler = get_scheduler(request)
    return JSONResponse(
        status_code=200 if healthy else 503,
        content=jsonable_encoder({
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": _now(),
            "uptime": _uptime(),
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "checks": checks,
            "notifications": await get_notifications(request).get_queue_stats(),
            "scheduler": {
                "running": bool(scheduler and scheduler.running),
                "jobs": scheduler.get_jobs_status() if scheduler else {},
            },
        }),
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/ready")
async def readiness(db: DbSession):
    database = await _check_database(db)
    if database["status"] != "ok":
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "timestamp": _now(), "reason": "database unavailable"},
        )
    return {"status": "ready", "timestamp": _now()}


@router.get("/live")
async def liveness():
    return {"status": "alive", "timestamp": _now(), "uptime": _uptime()}


@router.get("/metrics")
async def metrics():
    usage = resource.getrusage(resource.RUSAGE_SELF)
    return {
        "timestamp": _now(),
        "uptime": _uptime(),
        "process": {
            "pid": os.getpid(),
            "python_version": platform.python_version(),
            "platform": platform.platform(),
            "max_rss_kb": usage.ru_maxrss,
            "user_cpu_seconds": round(usage.ru_utime, 3),
            "system_cpu_seconds": round(usage.ru_stime, 3),
        },
    }
