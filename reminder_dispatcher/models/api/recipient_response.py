from pydantic import BaseModel

from reminder_dispatcher.models.domain.recipient_domain import (
    AcknowledgmentRecord,
    Holiday,
    Leave,
    Recipient,
)


class RecipientResponse(BaseModel):
    recipient: Recipient


class AcknowledgmentResponse(BaseModel):
    acknowledgment: AcknowledgmentRecord
    created: bool


class HistoryResponse(BaseModel):
    address: str
    acknowledgments: list[AcknowledgmentRecord]


class LeaveResponse(BaseModel):
    leave: Leave


class HolidayListResponse(BaseModel):
    holidays: list[Holiday]


class BroadcastResponse(BaseModel):
    sent: int
    failed: list[str]
