from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CheckpointType(str, Enum):
    """Daily events that need an acknowledgment."""

    MORNING = "morning"
    EVENING = "evening"


class RecipientRole(str, Enum):
    STANDARD = "standard"
    PRIVILEGED = "privileged"


class AckMethod(str, Enum):
    SELF_REPORTED = "self_reported"
    OPERATOR_FORCED = "operator_forced"


class LeaveStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class Recipient(BaseModel):
    """A person who receives reminders (recipients table)."""

    model_config = ConfigDict(extra="ignore")

    address: str
    name: str
    role: RecipientRole = RecipientRole.STANDARD

    checkpoint_times: dict[str, str]
    # weekday (0=Mon) -> checkpoint -> HH:MM; left loose so bad rows don't break loading
    schedule_overrides: dict[str, Any] = Field(default_factory=dict)
    work_days: list[int]
    max_followups: int = 10
    is_active: bool = True

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_privileged(self) -> bool:
        return self.role == RecipientRole.PRIVILEGED


class AcknowledgmentRecord(BaseModel):
    """At most one row per (address, ack_date, checkpoint)."""

    address: str
    ack_date: date
    checkpoint: CheckpointType
    acknowledged_at: str  # HH:MM on the effective clock
    method: AckMethod


class Holiday(BaseModel):
    holiday_date: date
    name: str
    is_national: bool = True
    created_by: str | None = None


class Leave(BaseModel):
    id: int
    address: str
    start_date: date
    end_date: date
    reason: str
    status: LeaveStatus = LeaveStatus.ACTIVE

    def covers(self, day: date) -> bool:
        """Inclusive on both ends; cancelled leaves cover nothing."""
        return self.status == LeaveStatus.ACTIVE and self.start_date <= day <= self.end_date
