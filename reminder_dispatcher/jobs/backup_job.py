"""
Daily database backup.

Exports every directory table into one JSON document under BACKUP_DIR and
prunes backups older than the retention period.

Usage:
    python -m reminder_dispatcher.jobs.worker backup
"""

import json
from datetime import datetime, timedelta
from pathlib import Path

from reminder_dispatcher.config import settings
from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.jobs.daily_schedule import run_daily_at
from reminder_dispatcher.repositories.recipient_repository import RecipientRepository

logger = get_logger(__name__)

BACKUP_PREFIX = "backup-"


class BackupJob:
    def __init__(
        self,
        repository: RecipientRepository,
        backup_dir: str | Path | None = None,
        retention_days: int | None = None,
    ):
        self.repository = repository
        self.backup_dir = Path(backup_dir or settings.BACKUP_DIR)
        self.retention_days = (
            settings.BACKUP_RETENTION_DAYS if retention_days is None else retention_days
        )

    async def run_once(self, now: datetime | None = None) -> dict:
        """
        Write one backup file and prune old ones.

        Returns:
            dict: {"path": str, "rows": int, "pruned": int}
        """
        now = now or datetime.now()
        tables = await self.repository.export_tables()

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        path = self.backup_dir / f"{BACKUP_PREFIX}{now:%Y%m%d-%H%M%S}.json"
        document = {"created_at": now.isoformat(), "tables": tables}
        path.write_text(json.dumps(document, default=str, ensure_ascii=False, indent=2), encoding="utf-8")

        rows = sum(len(table_rows) for table_rows in tables.values())
        pruned = self.prune(now)

        logger.info("Backup written", path=str(path), rows=rows, pruned=pruned)
        return {"path": str(path), "rows": rows, "pruned": pruned}

    def prune(self, now: datetime) -> int:
        cutoff = (now - timedelta(days=self.retention_days)).timestamp()
        pruned = 0
        for backup in self.backup_dir.glob(f"{BACKUP_PREFIX}*.json"):
            if backup.stat().st_mtime < cutoff:
                backup.unlink()
                pruned += 1
        return pruned


async def start_backup_scheduler(job: BackupJob) -> None:
    if not settings.BACKUP_ENABLED:
        logger.info("Backup scheduler DISABLED")
        return
    await run_daily_at("backup", settings.BACKUP_HOUR, settings.BACKUP_MINUTE, job.run_once)
