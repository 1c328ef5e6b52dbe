"""
One-off job runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, opens the database pool, runs the job once and closes the pool.

Usage:
    python -m reminder_dispatcher.jobs.worker holiday_sync
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from reminder_dispatcher.db.pool import db_pool
from reminder_dispatcher.db.schema import ensure_schema
from reminder_dispatcher.infrastructure.observability.logging import get_logger, setup_logging
from reminder_dispatcher.jobs.backup_job import BackupJob
from reminder_dispatcher.jobs.daily_reset_job import DailyResetJob
from reminder_dispatcher.jobs.holiday_sync_job import HolidaySyncJob
from reminder_dispatcher.repositories.recipient_repository import RecipientRepository
from reminder_dispatcher.scheduling.clock import build_clock

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[object]]


async def run_holiday_sync() -> int:
    return await HolidaySyncJob(RecipientRepository()).run_once()


async def run_backup() -> dict:
    return await BackupJob(RecipientRepository()).run_once()


async def run_daily_reset() -> dict:
    # Separate process: no live chains here, only the persisted counters
    return await DailyResetJob(RecipientRepository(), build_clock()).run_once()


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "holiday_sync": run_holiday_sync,
    "backup": run_backup,
    "daily_reset": run_daily_reset,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "holiday_sync").strip().lower()


async def run_worker(job_name: str | None = None) -> object:
    """Run the requested job once."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting worker job", job=name)
    await db_pool.initialize()
    try:
        await ensure_schema()
        result = await JOB_REGISTRY[name]()
    finally:
        await db_pool.close()

    logger.info("Worker job finished", job=name, result=result)
    return result


def main() -> None:
    """CLI entrypoint."""
    setup_logging()
    asyncio.run(run_worker(_resolve_job_name()))


if __name__ == "__main__":
    main()
