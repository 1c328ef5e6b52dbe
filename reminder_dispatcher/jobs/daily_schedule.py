"""
Run a coroutine once a day at a fixed local time.

Shared loop for the midnight reset, backup and holiday sync jobs. Sleeps
until the next occurrence of HH:MM in the configured timezone, runs the job,
and keeps going until cancelled. Errors are logged and the loop waits for
the next occurrence.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from reminder_dispatcher.config import settings
from reminder_dispatcher.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ERROR_RETRY_SECONDS = 300


def seconds_until(hour: int, minute: int, now: datetime) -> float:
    """Seconds from `now` to the next HH:MM (tomorrow if already passed)."""
    next_run = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if now >= next_run:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def run_daily_at(
    name: str,
    hour: int,
    minute: int,
    job: Callable[[], Awaitable[object]],
    timezone: str | None = None,
) -> None:
    tz = ZoneInfo(timezone or settings.TIMEZONE)
    logger.info("Daily job scheduler started", job=name, hour=hour, minute=minute)

    while True:
        try:
            sleep_seconds = seconds_until(hour, minute, datetime.now(tz))
            logger.debug("Daily job scheduled", job=name, sleep_seconds=round(sleep_seconds))
            await asyncio.sleep(sleep_seconds)

            result = await job()
            logger.info("Daily job completed", job=name, result=result)

        except asyncio.CancelledError:
            logger.info("Daily job scheduler cancelled", job=name)
            raise
        except Exception as e:
            logger.error(
                "Error in daily job, will retry",
                job=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            await asyncio.sleep(ERROR_RETRY_SECONDS)
