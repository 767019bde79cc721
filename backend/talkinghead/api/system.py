from __future__ import annotations
"""System status endpoint — checks the services queue dispatch depends on."""

import asyncio
import time
from typing import Any

import redis
from fastapi import APIRouter
from sqlalchemy import text

from talkinghead.config import get_settings
from talkinghead.database import get_engine

router = APIRouter()
settings = get_settings()


def _check_redis() -> dict[str, Any]:
    """Check Redis connectivity and basic info."""
    t0 = time.time()
    try:
        r = redis.Redis.from_url(settings.REDIS_URL, socket_timeout=3)
        info = r.info("server")
        ping = r.ping()
        latency_ms = round((time.time() - t0) * 1000, 1)
        return {
            "status": "ok" if ping else "error",
            "latency_ms": latency_ms,
            "version": info.get("redis_version", "unknown"),
            "pending_tasks": r.llen("celery"),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}


def _check_celery_workers() -> dict[str, Any]:
    """Check Celery workers via ping broadcast."""
    from talkinghead.tasks import celery_app

    try:
        inspector = celery_app.control.inspect(timeout=2)
        ping_result = inspector.ping()
        if not ping_result:
            return {
                "status": "offline",
                "workers": [],
                "count": 0,
                "message": "No running Celery worker detected",
            }

        workers = [
            {"name": name, "status": "ok" if pong.get("ok") == "pong" else "error"}
            for name, pong in ping_result.items()
        ]
        active = inspector.active() or {}
        return {
            "status": "ok",
            "workers": workers,
            "count": len(workers),
            "active_tasks": sum(len(tasks) for tasks in active.values()),
        }
    except Exception as e:
        return {"status": "error", "error": str(e), "workers": [], "count": 0}


async def _check_database() -> dict[str, Any]:
    t0 = time.time()
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok", "latency_ms": round((time.time() - t0) * 1000, 1)}
    except Exception as e:
        return {"status": "error", "error": str(e)}


@router.get("/status")
async def system_status():
    """Full system status check — database, and broker/workers in queue mode."""
    db_status = await _check_database()
    services: dict[str, Any] = {"database": db_status}
    all_ok = db_status["status"] == "ok"

    if settings.DISPATCH_MODE == "queue":
        redis_status, celery_status = await asyncio.gather(
            asyncio.to_thread(_check_redis),
            asyncio.to_thread(_check_celery_workers),
        )
        services["redis"] = redis_status
        services["celery"] = celery_status
        all_ok = all_ok and redis_status["status"] == "ok" and celery_status["status"] == "ok"

    return {
        "overall": "ok" if all_ok else "degraded",
        "dispatch_mode": settings.DISPATCH_MODE,
        "api_configured": settings.api_configured,
        "services": services,
    }
