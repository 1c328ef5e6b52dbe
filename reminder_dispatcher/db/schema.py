"""
Table definitions for the reminder directory.

Applied idempotently on startup; every statement uses IF NOT EXISTS.
"""

from reminder_dispatcher.db.helpers import execute_transaction
from reminder_dispatcher.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS recipients (
        address TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'standard' CHECK (role IN ('standard', 'privileged')),
        checkpoint_times JSONB NOT NULL,
        schedule_overrides JSONB NOT NULL DEFAULT '{}'::jsonb,
        work_days SMALLINT[] NOT NULL,
        max_followups SMALLINT NOT NULL DEFAULT 10 CHECK (max_followups BETWEEN 1 AND 10),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS acknowledgments (
        id BIGSERIAL PRIMARY KEY,
        address TEXT NOT NULL REFERENCES recipients(address) ON DELETE CASCADE,
        ack_date DATE NOT NULL,
        checkpoint TEXT NOT NULL,
        acknowledged_at TEXT NOT NULL,
        method TEXT NOT NULL CHECK (method IN ('self_reported', 'operator_forced')),
        UNIQUE (address, ack_date, checkpoint)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS leaves (
        id BIGSERIAL PRIMARY KEY,
        address TEXT NOT NULL REFERENCES recipients(address) ON DELETE CASCADE,
        start_date DATE NOT NULL,
        end_date DATE NOT NULL,
        reason TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'cancelled')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CHECK (end_date >= start_date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS holidays (
        id BIGSERIAL PRIMARY KEY,
        holiday_date DATE NOT NULL UNIQUE,
        name TEXT NOT NULL,
        is_national BOOLEAN NOT NULL DEFAULT TRUE,
        created_by TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS snooze_counters (
        address TEXT NOT NULL REFERENCES recipients(address) ON DELETE CASCADE,
        counter_date DATE NOT NULL,
        checkpoint TEXT NOT NULL,
        count INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (address, counter_date, checkpoint)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_leaves_address_range ON leaves (address, start_date, end_date)",
    "CREATE INDEX IF NOT EXISTS idx_ack_address_date ON acknowledgments (address, ack_date)",
]

BACKUP_TABLES = ["recipients", "acknowledgments", "leaves", "holidays", "snooze_counters"]


async def ensure_schema() -> None:
    """Create missing tables and indexes."""
    await execute_transaction([(statement, ()) for statement in SCHEMA_STATEMENTS])
    logger.info("Database schema ensured", tables=len(BACKUP_TABLES))
