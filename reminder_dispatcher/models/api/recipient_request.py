from datetime import date

from pydantic import BaseModel, Field, field_validator, model_validator

from reminder_dispatcher.models.domain.recipient_domain import (
    AckMethod,
    CheckpointType,
    RecipientRole,
)
from reminder_dispatcher.scheduling.clock import parse_time_of_day


def _normalize_time(value: str) -> str:
    hour, minute = parse_time_of_day(value)
    return f"{hour:02d}:{minute:02d}"


class RecipientUpsertRequest(BaseModel):
    """Create a recipient or rename/re-role an existing one."""

    address: str = Field(..., pattern=r"^\d{8,15}$", description="Digits only, with country code")
    name: str = Field(..., min_length=1, max_length=100)
    role: RecipientRole | None = None


class DayOverride(BaseModel):
    day: int = Field(..., ge=0, le=6, description="0=Mon ... 6=Sun")
    checkpoint: CheckpointType
    time: str | None = Field(None, description="HH:MM; null resets the override")

    @field_validator("time")
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        return _normalize_time(value) if value is not None else None


class RecipientScheduleUpdateRequest(BaseModel):
    morning_time: str | None = None
    evening_time: str | None = None
    overrides: list[DayOverride] = Field(default_factory=list)
    reset_overrides: bool = False
    work_days: list[int] | None = None
    max_followups: int | None = Field(None, ge=1, le=10)

    @field_validator("morning_time", "evening_time")
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        return _normalize_time(value) if value is not None else None

    @field_validator("work_days")
    @classmethod
    def validate_work_days(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        if not value or any(day < 0 or day > 6 for day in value):
            raise ValueError("work_days must be a non-empty list of 0-6")
        return sorted(set(value))


class AcknowledgmentRequest(BaseModel):
    checkpoint: CheckpointType | None = None
    method: AckMethod = AckMethod.SELF_REPORTED


class SnoozeRequest(BaseModel):
    checkpoint: CheckpointType | None = None


class LeaveRequest(BaseModel):
    start_date: date
    end_date: date | None = None
    reason: str = Field(..., min_length=1, max_length=200)

    @model_validator(mode="after")
    def default_end_date(self) -> "LeaveRequest":
        if self.end_date is None:
            self.end_date = self.start_date
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class HolidayRequest(BaseModel):
    holiday_date: date
    name: str = Field(..., min_length=1, max_length=200)


class BroadcastRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=4000)
