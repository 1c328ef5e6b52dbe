"""
FastAPI application with database pool, Redis and scheduler lifecycle.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from reminder_dispatcher.config import settings
from reminder_dispatcher.db.pool import db_pool
from reminder_dispatcher.db.schema import ensure_schema
from reminder_dispatcher.infrastructure.observability.logging import get_logger, setup_logging
from reminder_dispatcher.middleware.rate_limit_headers import RateLimitHeadersMiddleware
from reminder_dispatcher.repositories.recipient_repository import RecipientRepository
from reminder_dispatcher.routes import health, holidays, recipients
from reminder_dispatcher.runtime import ReminderRuntime
from reminder_dispatcher.scheduling.clock import build_clock
from reminder_dispatcher.services.dispatch_gateway import HttpDispatchGateway
from reminder_dispatcher.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    # Fails fast on a bad simulated clock, before anything else starts
    clock = build_clock()
    logger.info("Clock configured", clock=clock.status_label())

    startup_tasks = []
    runtime = None

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")
        await ensure_schema()

        logger.info("Initializing Redis connection")
        try:
            await fast_redis.initialize()
            startup_tasks.append("redis")
        except RuntimeError as e:
            # Only the rate limiter uses Redis and it fails open
            logger.warning("Redis unavailable, continuing without it", error=str(e))

        runtime = ReminderRuntime(clock, RecipientRepository(), HttpDispatchGateway())
        await runtime.register_system_accounts()
        await runtime.start()
        startup_tasks.append("scheduler")

        app.state.runtime = runtime
        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "scheduler" in startup_tasks:
            try:
                await runtime.stop()
            except Exception as cleanup_error:
                logger.error("Error stopping scheduler", error=str(cleanup_error))

        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        await runtime.stop()
    except Exception as e:
        logger.error("Error stopping scheduler", error=str(e))
        shutdown_errors.append(f"Scheduler: {e}")
    app.state.runtime = None

    try:
        logger.info("Closing Redis connection")
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


def create_app(use_lifespan: bool = True) -> FastAPI:
    application = FastAPI(
        title="Attendance Reminder Dispatcher",
        description="Scheduled attendance reminders with escalating follow-ups",
        version="0.1.0",
        lifespan=lifespan if use_lifespan else None,
    )
    application.state.runtime = None

    application.add_middleware(RateLimitHeadersMiddleware)
    application.include_router(health.router)
    application.include_router(recipients.router)
    application.include_router(holidays.router)

    @application.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log HTTP requests with timing."""
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        logger.info(
            "HTTP request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(process_time, 2),
        )
        return response

    return application


app = create_app()
