"""
Collaborator contracts consumed by the scheduling core.

The Postgres-backed directory and the HTTP gateway implement these; tests
substitute in-memory fakes.
"""

from dataclasses import dataclass
from datetime import date
from typing import Protocol

from reminder_dispatcher.models.domain.recipient_domain import (
    AcknowledgmentRecord,
    AckMethod,
    CheckpointType,
    Holiday,
    Leave,
    Recipient,
)


@dataclass(frozen=True, slots=True)
class SendResult:
    success: bool
    error: str | None = None
    throttled: bool = False

    @classmethod
    def ok(cls) -> "SendResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str, throttled: bool = False) -> "SendResult":
        return cls(success=False, error=error, throttled=throttled)


class DispatchGateway(Protocol):
    def is_ready(self) -> bool: ...

    async def send(self, address: str, body: str) -> SendResult: ...


class RecipientDirectory(Protocol):
    async def get_active_recipients(self) -> list[Recipient]: ...

    async def get_recipient(self, address: str) -> Recipient | None: ...

    def effective_checkpoint_time(
        self, recipient: Recipient, checkpoint: CheckpointType, day_of_week: int
    ) -> str | None: ...

    async def get_acknowledgment(
        self, address: str, day: date, checkpoint: CheckpointType
    ) -> AcknowledgmentRecord | None: ...

    async def get_acknowledgments_between(
        self, address: str, start: date, end: date
    ) -> list[AcknowledgmentRecord]: ...

    async def record_acknowledgment(
        self,
        address: str,
        checkpoint: CheckpointType,
        method: AckMethod,
        day: date,
        acknowledged_at: str,
    ) -> AcknowledgmentRecord: ...

    async def is_holiday(self, day: date) -> bool: ...

    async def get_holiday(self, day: date) -> Holiday | None: ...

    async def get_active_leaves(self, address: str, day: date) -> list[Leave]: ...
