"""
Postgres-backed recipient directory.

Source of truth for recipients and their schedules, acknowledgments,
holidays, leaves and snooze bookkeeping. The scheduling core only sees the
RecipientDirectory protocol; the admin routes and jobs use the rest.
"""

from datetime import date
from typing import Any

from psycopg.types.json import Jsonb

from reminder_dispatcher.config import settings
from reminder_dispatcher.db.helpers import (
    DatabaseError,
    execute_query,
    execute_transaction,
    fetch_all,
    fetch_one,
    with_db_retry,
)
from reminder_dispatcher.db.schema import BACKUP_TABLES
from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.models.domain.recipient_domain import (
    AcknowledgmentRecord,
    AckMethod,
    CheckpointType,
    Holiday,
    Leave,
    LeaveStatus,
    Recipient,
    RecipientRole,
)
from reminder_dispatcher.scheduling.schedule import resolve_checkpoint_time

logger = get_logger(__name__)

RECIPIENT_COLUMNS = """
    address, name, role, checkpoint_times, schedule_overrides, work_days,
    max_followups, is_active, created_at, updated_at
"""


class RecipientRepositoryError(DatabaseError):
    """Directory operation rejected or failed."""


def _recipient(row: dict[str, Any]) -> Recipient:
    return Recipient(
        address=row["address"],
        name=row["name"],
        role=row["role"],
        checkpoint_times=row.get("checkpoint_times") or {},
        schedule_overrides=row.get("schedule_overrides") or {},
        work_days=list(row.get("work_days") or []),
        max_followups=row["max_followups"],
        is_active=row["is_active"],
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _leave(row: dict[str, Any]) -> Leave:
    return Leave(
        id=row["id"],
        address=row["address"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        reason=row["reason"],
        status=row["status"],
    )


class RecipientRepository:
    """Implements the directory on top of the shared connection pool."""

    def __init__(self, default_times: dict[str, str] | None = None):
        self.default_times = default_times or settings.get_default_checkpoint_times()

    # ------------------------------------------------------------------ #
    # Recipients
    # ------------------------------------------------------------------ #

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_active_recipients(self) -> list[Recipient]:
        rows = await fetch_all(
            f"SELECT {RECIPIENT_COLUMNS} FROM recipients WHERE is_active = true ORDER BY created_at, address"
        )
        return [_recipient(row) for row in rows]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_all_recipients(self) -> list[Recipient]:
        rows = await fetch_all(f"SELECT {RECIPIENT_COLUMNS} FROM recipients ORDER BY created_at, address")
        return [_recipient(row) for row in rows]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_recipient(self, address: str) -> Recipient | None:
        row = await fetch_one(
            f"SELECT {RECIPIENT_COLUMNS} FROM recipients WHERE address = %s", (address,)
        )
        return _recipient(row) if row else None

    async def upsert_recipient(
        self, address: str, name: str, role: RecipientRole | None = None
    ) -> Recipient:
        """
        Create a recipient with default schedule, or update name/role of an existing one.

        Returns:
            Recipient: the stored row
        """
        query = f"""
            INSERT INTO recipients (
                address, name, role, checkpoint_times, schedule_overrides, work_days, max_followups
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (address) DO UPDATE SET
                name = EXCLUDED.name,
                role = COALESCE(%s, recipients.role),
                updated_at = NOW()
            RETURNING {RECIPIENT_COLUMNS}
        """
        role_value = role.value if role else None
        row = await fetch_one(
            query,
            (
                address,
                name,
                role_value or RecipientRole.STANDARD.value,
                Jsonb(dict(self.default_times)),
                Jsonb(dict(settings.DEFAULT_SCHEDULE_OVERRIDES)),
                list(settings.DEFAULT_WORK_DAYS),
                settings.DEFAULT_MAX_FOLLOWUPS,
                role_value,
            ),
        )
        if not row:
            raise RecipientRepositoryError(f"Upsert returned no row for {address}", operation="upsert")

        logger.info("Recipient upserted", address=address, role=row["role"])
        return _recipient(row)

    async def update_schedule(
        self,
        address: str,
        *,
        checkpoint_times: dict[str, str] | None = None,
        schedule_overrides: dict[str, Any] | None = None,
        work_days: list[int] | None = None,
        max_followups: int | None = None,
    ) -> Recipient | None:
        """Replace any of the schedule fields given; None leaves a field unchanged."""
        if max_followups is not None and not 1 <= max_followups <= settings.MAX_FOLLOWUPS_LIMIT:
            raise RecipientRepositoryError(
                f"max_followups must be between 1 and {settings.MAX_FOLLOWUPS_LIMIT}",
                operation="update_schedule",
                recoverable=False,
            )

        query = f"""
            UPDATE recipients SET
                checkpoint_times = COALESCE(%s, checkpoint_times),
                schedule_overrides = COALESCE(%s, schedule_overrides),
                work_days = COALESCE(%s, work_days),
                max_followups = COALESCE(%s, max_followups),
                updated_at = NOW()
            WHERE address = %s
            RETURNING {RECIPIENT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                Jsonb(checkpoint_times) if checkpoint_times is not None else None,
                Jsonb(schedule_overrides) if schedule_overrides is not None else None,
                sorted(set(work_days)) if work_days is not None else None,
                max_followups,
                address,
            ),
        )
        if row:
            logger.info("Recipient schedule updated", address=address)
        return _recipient(row) if row else None

    async def set_active(self, address: str, active: bool) -> bool:
        updated = await execute_query(
            "UPDATE recipients SET is_active = %s, updated_at = NOW() WHERE address = %s",
            (active, address),
        )
        logger.info("Recipient active flag changed", address=address, is_active=active)
        return updated > 0

    async def remove_recipient(self, address: str) -> bool:
        """Delete a recipient; acknowledgments, leaves and snooze counters cascade."""
        deleted = await execute_query("DELETE FROM recipients WHERE address = %s", (address,))
        if deleted:
            logger.info("Recipient removed", address=address)
        return deleted > 0

    def effective_checkpoint_time(
        self, recipient: Recipient, checkpoint: CheckpointType, day_of_week: int
    ) -> str | None:
        return resolve_checkpoint_time(recipient, checkpoint, day_of_week, self.default_times)

    # ------------------------------------------------------------------ #
    # Acknowledgments
    # ------------------------------------------------------------------ #

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_acknowledgment(
        self, address: str, day: date, checkpoint: CheckpointType
    ) -> AcknowledgmentRecord | None:
        row = await fetch_one(
            """
            SELECT address, ack_date, checkpoint, acknowledged_at, method
            FROM acknowledgments
            WHERE address = %s AND ack_date = %s AND checkpoint = %s
            """,
            (address, day, checkpoint.value),
        )
        return AcknowledgmentRecord(**row) if row else None

    async def record_acknowledgment(
        self,
        address: str,
        checkpoint: CheckpointType,
        method: AckMethod,
        day: date,
        acknowledged_at: str,
    ) -> AcknowledgmentRecord:
        """Idempotent: a second acknowledgment for the same key keeps the first row."""
        await execute_query(
            """
            INSERT INTO acknowledgments (address, ack_date, checkpoint, acknowledged_at, method)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (address, ack_date, checkpoint) DO NOTHING
            """,
            (address, day, checkpoint.value, acknowledged_at, method.value),
        )
        record = await self.get_acknowledgment(address, day, checkpoint)
        if record is None:
            raise RecipientRepositoryError(
                f"Acknowledgment for {address} not stored", operation="record_acknowledgment"
            )
        return record

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_acknowledgments_between(
        self, address: str, start: date, end: date
    ) -> list[AcknowledgmentRecord]:
        rows = await fetch_all(
            """
            SELECT address, ack_date, checkpoint, acknowledged_at, method
            FROM acknowledgments
            WHERE address = %s AND ack_date BETWEEN %s AND %s
            ORDER BY ack_date, checkpoint
            """,
            (address, start, end),
        )
        return [AcknowledgmentRecord(**row) for row in rows]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_acknowledgment_history(self, address: str, limit: int = 14) -> list[AcknowledgmentRecord]:
        rows = await fetch_all(
            """
            SELECT address, ack_date, checkpoint, acknowledged_at, method
            FROM acknowledgments
            WHERE address = %s
            ORDER BY ack_date DESC, checkpoint
            LIMIT %s
            """,
            (address, limit),
        )
        return [AcknowledgmentRecord(**row) for row in rows]

    # ------------------------------------------------------------------ #
    # Holidays
    # ------------------------------------------------------------------ #

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_holiday(self, day: date) -> Holiday | None:
        row = await fetch_one(
            "SELECT holiday_date, name, is_national, created_by FROM holidays WHERE holiday_date = %s",
            (day,),
        )
        return Holiday(**row) if row else None

    async def is_holiday(self, day: date) -> bool:
        return await self.get_holiday(day) is not None

    async def get_upcoming_holidays(self, from_day: date, limit: int = 20) -> list[Holiday]:
        rows = await fetch_all(
            """
            SELECT holiday_date, name, is_national, created_by
            FROM holidays
            WHERE holiday_date >= %s
            ORDER BY holiday_date
            LIMIT %s
            """,
            (from_day, limit),
        )
        return [Holiday(**row) for row in rows]

    async def add_holiday(self, day: date, name: str, created_by: str | None = None) -> bool:
        """Add a local holiday. Returns False if the date already has one."""
        inserted = await execute_query(
            """
            INSERT INTO holidays (holiday_date, name, is_national, created_by)
            VALUES (%s, %s, false, %s)
            ON CONFLICT (holiday_date) DO NOTHING
            """,
            (day, name, created_by),
        )
        if inserted:
            logger.info("Local holiday added", date=day.isoformat(), name=name)
        return inserted > 0

    async def remove_holiday(self, day: date) -> bool:
        """Remove a local holiday. National holidays are owned by the sync job."""
        deleted = await execute_query(
            "DELETE FROM holidays WHERE holiday_date = %s AND is_national = false", (day,)
        )
        return deleted > 0

    async def replace_national_holidays(self, holidays: list[Holiday]) -> int:
        """Swap every national row for the given list in one transaction."""
        statements: list[tuple] = [("DELETE FROM holidays WHERE is_national = true", ())]
        for holiday in holidays:
            statements.append(
                (
                    """
                    INSERT INTO holidays (holiday_date, name, is_national, created_by)
                    VALUES (%s, %s, true, 'sync')
                    ON CONFLICT (holiday_date) DO NOTHING
                    """,
                    (holiday.holiday_date, holiday.name),
                )
            )
        await execute_transaction(statements)
        logger.info("National holidays replaced", count=len(holidays))
        return len(holidays)

    # ------------------------------------------------------------------ #
    # Leaves
    # ------------------------------------------------------------------ #

    async def add_leave(self, address: str, start: date, end: date, reason: str) -> Leave:
        if end < start:
            raise RecipientRepositoryError(
                "Leave end date is before its start date", operation="add_leave", recoverable=False
            )

        row = await fetch_one(
            """
            INSERT INTO leaves (address, start_date, end_date, reason)
            VALUES (%s, %s, %s, %s)
            RETURNING id, address, start_date, end_date, reason, status
            """,
            (address, start, end, reason),
        )
        if not row:
            raise RecipientRepositoryError(f"Leave for {address} not stored", operation="add_leave")

        logger.info(
            "Leave registered",
            address=address,
            start=start.isoformat(),
            end=end.isoformat(),
        )
        return _leave(row)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_active_leaves(self, address: str, day: date) -> list[Leave]:
        rows = await fetch_all(
            """
            SELECT id, address, start_date, end_date, reason, status
            FROM leaves
            WHERE address = %s AND status = %s AND start_date <= %s AND end_date >= %s
            ORDER BY start_date
            """,
            (address, LeaveStatus.ACTIVE.value, day, day),
        )
        return [_leave(row) for row in rows]

    async def list_leaves(self, address: str, from_day: date) -> list[Leave]:
        """Active leaves that have not ended before `from_day`."""
        rows = await fetch_all(
            """
            SELECT id, address, start_date, end_date, reason, status
            FROM leaves
            WHERE address = %s AND status = %s AND end_date >= %s
            ORDER BY start_date
            """,
            (address, LeaveStatus.ACTIVE.value, from_day),
        )
        return [_leave(row) for row in rows]

    async def cancel_leave(self, address: str, leave_id: int) -> bool:
        updated = await execute_query(
            "UPDATE leaves SET status = %s WHERE id = %s AND address = %s AND status = %s",
            (LeaveStatus.CANCELLED.value, leave_id, address, LeaveStatus.ACTIVE.value),
        )
        return updated > 0

    # ------------------------------------------------------------------ #
    # Snooze counters
    # ------------------------------------------------------------------ #

    async def increment_snooze(self, address: str, day: date, checkpoint: CheckpointType) -> int:
        row = await fetch_one(
            """
            INSERT INTO snooze_counters (address, counter_date, checkpoint, count)
            VALUES (%s, %s, %s, 1)
            ON CONFLICT (address, counter_date, checkpoint)
            DO UPDATE SET count = snooze_counters.count + 1
            RETURNING count
            """,
            (address, day, checkpoint.value),
        )
        return row["count"] if row else 0

    async def purge_snooze_counters(self, before: date) -> int:
        return await execute_query("DELETE FROM snooze_counters WHERE counter_date < %s", (before,))

    # ------------------------------------------------------------------ #
    # Backup
    # ------------------------------------------------------------------ #

    async def export_tables(self) -> dict[str, list[dict[str, Any]]]:
        """Every row of every backed-up table."""
        return {table: await fetch_all(f"SELECT * FROM {table}") for table in BACKUP_TABLES}
