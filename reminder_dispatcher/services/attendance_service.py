"""
Escalation-adjacent operator flows.

Each flow that changes whether a recipient still needs reminding
(acknowledgment, leave, pause, removal) also calls the engine's
cancellation hooks so no further follow-ups go out.
"""

from datetime import date

from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.models.domain.recipient_domain import (
    AcknowledgmentRecord,
    AckMethod,
    CheckpointType,
    Leave,
    Recipient,
)
from reminder_dispatcher.repositories.recipient_repository import RecipientRepository
from reminder_dispatcher.scheduling.clock import Clock
from reminder_dispatcher.scheduling.escalation import EscalationEngine
from reminder_dispatcher.scheduling.formatter import NotificationFormatter
from reminder_dispatcher.scheduling.interfaces import DispatchGateway
from reminder_dispatcher.services.reply_context import ReplyContextStore

logger = get_logger(__name__)


class RecipientNotFoundError(LookupError):
    def __init__(self, address: str):
        super().__init__(f"Recipient {address} not found")
        self.address = address


class AttendanceService:
    def __init__(
        self,
        repository: RecipientRepository,
        engine: EscalationEngine,
        gateway: DispatchGateway,
        formatter: NotificationFormatter,
        clock: Clock,
        reply_contexts: ReplyContextStore,
        service_account: str,
    ):
        self.repository = repository
        self.engine = engine
        self.gateway = gateway
        self.formatter = formatter
        self.clock = clock
        self.reply_contexts = reply_contexts
        self.service_account = service_account

    async def require_recipient(self, address: str) -> Recipient:
        recipient = await self.repository.get_recipient(address)
        if recipient is None:
            raise RecipientNotFoundError(address)
        return recipient

    async def acknowledge(
        self,
        address: str,
        checkpoint: CheckpointType | None = None,
        method: AckMethod = AckMethod.SELF_REPORTED,
    ) -> tuple[AcknowledgmentRecord, bool]:
        """
        Record an acknowledgment for today and stop the matching chain.

        Without an explicit checkpoint, the last reminded checkpoint is used,
        else the time of day decides.

        Returns:
            (record, created): created is False when today was already acknowledged
        """
        await self.require_recipient(address)
        reading = self.clock.now()
        checkpoint = checkpoint or self.reply_contexts.resolve_checkpoint(address, reading.hour)

        existing = await self.repository.get_acknowledgment(address, reading.date, checkpoint)
        record = existing or await self.repository.record_acknowledgment(
            address, checkpoint, method, reading.date, reading.time_of_day
        )

        self.engine.cancel(address, checkpoint, reason="acknowledged")
        if self.reply_contexts.get(address) == checkpoint:
            self.reply_contexts.forget(address)

        logger.info(
            "Acknowledgment recorded",
            address=address,
            checkpoint=checkpoint.value,
            method=method.value,
            already_recorded=existing is not None,
        )
        return record, existing is None

    async def snooze(self, address: str, checkpoint: CheckpointType | None = None) -> int:
        """Count a "remind me later" reply. The chain keeps running."""
        await self.require_recipient(address)
        reading = self.clock.now()
        checkpoint = checkpoint or self.reply_contexts.resolve_checkpoint(address, reading.hour)
        return await self.repository.increment_snooze(address, reading.date, checkpoint)

    async def register_leave(self, address: str, start: date, end: date, reason: str) -> Leave:
        await self.require_recipient(address)
        leave = await self.repository.add_leave(address, start, end, reason)
        if leave.covers(self.clock.now().date):
            self.engine.cancel_recipient(address, reason="leave")
        return leave

    async def cancel_leave(self, address: str, leave_id: int) -> bool:
        return await self.repository.cancel_leave(address, leave_id)

    async def pause(self, address: str) -> bool:
        updated = await self.repository.set_active(address, False)
        self.engine.cancel_recipient(address, reason="paused")
        return updated

    async def resume(self, address: str) -> bool:
        return await self.repository.set_active(address, True)

    async def remove(self, address: str) -> bool:
        self.engine.cancel_recipient(address, reason="removed")
        self.reply_contexts.forget(address)
        return await self.repository.remove_recipient(address)

    async def status(self, address: str) -> dict:
        recipient = await self.require_recipient(address)
        reading = self.clock.now()

        checkpoints = {}
        for checkpoint in CheckpointType:
            record = await self.repository.get_acknowledgment(address, reading.date, checkpoint)
            checkpoints[checkpoint.value] = {
                "scheduled": self.repository.effective_checkpoint_time(
                    recipient, checkpoint, reading.day_of_week
                ),
                "acknowledged_at": record.acknowledged_at if record else None,
                "method": record.method.value if record else None,
                "chain_active": self.engine.is_active(address, checkpoint),
            }

        holiday = await self.repository.get_holiday(reading.date)
        leaves = await self.repository.get_active_leaves(address, reading.date)
        return {
            "address": address,
            "name": recipient.name,
            "is_active": recipient.is_active,
            "date": reading.date.isoformat(),
            "time": reading.time_of_day,
            "work_day": reading.day_of_week in recipient.work_days,
            "holiday": holiday.name if holiday else None,
            "on_leave": leaves[0].reason if leaves else None,
            "checkpoints": checkpoints,
        }

    async def trigger_test(self, address: str, checkpoint: CheckpointType) -> bool:
        """Start a chain right now, as the scanner would."""
        recipient = await self.require_recipient(address)
        return await self.engine.begin(recipient, checkpoint)

    async def broadcast(self, text: str) -> dict:
        body = self.formatter.render_broadcast(text)
        recipients = await self.repository.get_active_recipients()

        sent, failed = 0, []
        for recipient in recipients:
            if recipient.address == self.service_account:
                continue
            result = await self.gateway.send(recipient.address, body)
            if result.success:
                sent += 1
            else:
                failed.append(recipient.address)

        logger.info("Broadcast sent", sent=sent, failed=len(failed))
        return {"sent": sent, "failed": failed}
