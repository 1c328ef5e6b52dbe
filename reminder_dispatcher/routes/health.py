"""
Health check endpoints.
"""

import time

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from reminder_dispatcher.config import settings
from reminder_dispatcher.db.pool import db_health_check
from reminder_dispatcher.infrastructure.observability.logging import log_health_check
from reminder_dispatcher.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "reminder-dispatcher"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness: gateway session, database, Redis, clock and scheduler state.

    503 while the messaging gateway is not connected.
    """
    checks = {}
    runtime = getattr(request.app.state, "runtime", None)

    gateway_ready = bool(runtime and runtime.gateway.is_ready())
    checks["gateway"] = {"ok": gateway_ready}

    # Redis
    t0 = time.time()
    try:
        redis_ok = await fast_redis.ping()
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}

    # Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        latency_ms = round((time.time() - t0) * 1000, 1)
        checks["database"] = {"ok": db_health.get("healthy", False), "latency_ms": latency_ms}
        if not checks["database"]["ok"]:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        log_health_check("database", checks["database"]["ok"], latency_ms, db_health.get("error"))
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}

    if runtime is not None:
        reading = runtime.clock.now()
        checks["scheduler"] = {
            "running": runtime.scheduler_running,
            "clock": runtime.clock.status_label(),
            "time": reading.time_of_day,
            "date": reading.date.isoformat(),
            "active_chains": len(runtime.engine.active_chains()),
        }

    body = {
        "status": "ready" if gateway_ready else "not_ready",
        "environment": settings.environment,
        "checks": checks,
        "timestamp": time.time(),
    }
    status_code = status.HTTP_200_OK if gateway_ready else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(content=body, status_code=status_code)
