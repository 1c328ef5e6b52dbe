"""
Tick scanner.

Once per effective minute, works out which recipients are due for an
initial reminder and hands them to the escalation engine. Polls at least
twice per effective minute; the HH:MM de-dup guard keeps repeated polls
within one minute from firing twice.
"""

import asyncio
from collections.abc import Awaitable, Callable

from reminder_dispatcher.config import settings
from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.models.domain.recipient_domain import CheckpointType, Recipient
from reminder_dispatcher.scheduling.clock import Clock, ClockReading
from reminder_dispatcher.scheduling.escalation import EscalationEngine
from reminder_dispatcher.scheduling.interfaces import DispatchGateway, RecipientDirectory
from reminder_dispatcher.services.recap_service import WeeklyRecapService

logger = get_logger(__name__)


class TickScanner:
    def __init__(
        self,
        clock: Clock,
        directory: RecipientDirectory,
        gateway: DispatchGateway,
        engine: EscalationEngine,
        recap: WeeklyRecapService | None = None,
        *,
        service_account: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.clock = clock
        self.directory = directory
        self.gateway = gateway
        self.engine = engine
        self.recap = recap
        self.service_account = (
            settings.SERVICE_ACCOUNT_ADDRESS if service_account is None else service_account
        )
        self._sleep = sleep

        self._last_checked: str | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_tick(self) -> dict:
        """
        Process one tick.

        Returns:
            Dict: tick summary (time, skip reason, chains started, failures)

        Raises nothing for per-recipient problems; a directory read failure
        ends the tick early and is logged.
        """
        reading = self.clock.now()
        summary = {"time": reading.time_of_day, "skipped": None, "started": 0, "failures": 0}

        if not self.gateway.is_ready():
            summary["skipped"] = "gateway_not_ready"
            return summary

        if reading.time_of_day == self._last_checked:
            summary["skipped"] = "same_minute"
            return summary
        self._last_checked = reading.time_of_day

        try:
            holiday = await self.directory.get_holiday(reading.date)
            if holiday is not None:
                logger.info(
                    "Holiday today, skipping reminders",
                    date=reading.date.isoformat(),
                    holiday=holiday.name,
                )
                summary["skipped"] = "holiday"
                return summary

            recipients = await self.directory.get_active_recipients()
        except Exception as e:
            logger.error(
                "Directory read failed, tick aborted",
                time=reading.time_of_day,
                error=str(e),
                error_type=type(e).__name__,
            )
            summary["skipped"] = "directory_error"
            return summary

        if not recipients:
            return summary

        logger.debug(
            "Checking reminders",
            time=reading.time_of_day,
            day_of_week=reading.day_of_week,
            date=reading.date.isoformat(),
            recipients=len(recipients),
        )

        recap_due: list[Recipient] = []
        for recipient in recipients:
            if recipient.address == self.service_account:
                continue
            try:
                started, recap_ready = await self._process_recipient(recipient, reading)
                summary["started"] += started
                if recap_ready:
                    recap_due.append(recipient)
            except Exception as e:
                summary["failures"] += 1
                logger.error(
                    "Reminder check failed for recipient",
                    address=recipient.address,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if recap_due:
            await self._send_recaps(recap_due, reading)

        return summary

    async def _process_recipient(self, recipient: Recipient, reading: ClockReading) -> tuple[int, bool]:
        if reading.day_of_week not in recipient.work_days:
            return 0, False

        leaves = await self.directory.get_active_leaves(recipient.address, reading.date)
        if leaves:
            logger.info(
                "Recipient on leave, skipping",
                address=recipient.address,
                reason=leaves[0].reason,
            )
            return 0, False

        started = 0
        recap_ready = False
        for checkpoint in CheckpointType:
            due_time = self.directory.effective_checkpoint_time(
                recipient, checkpoint, reading.day_of_week
            )
            if due_time != reading.time_of_day:
                continue

            existing = await self.directory.get_acknowledgment(
                recipient.address, reading.date, checkpoint
            )
            if existing is not None:
                logger.info(
                    "Already acknowledged, skipping",
                    address=recipient.address,
                    checkpoint=checkpoint.value,
                )
                if checkpoint == CheckpointType.EVENING:
                    recap_ready = True
                continue

            logger.info(
                "Triggering reminder",
                address=recipient.address,
                checkpoint=checkpoint.value,
                scheduled=due_time,
            )
            if await self.engine.begin(recipient, checkpoint):
                started += 1

        return started, recap_ready

    async def _send_recaps(self, recipients: list[Recipient], reading: ClockReading) -> None:
        if self.recap is None or not self.recap.is_recap_day(reading.day_of_week):
            return

        for recipient in recipients:
            try:
                await self.recap.send_recap(recipient, reading.date)
            except Exception as e:
                logger.error(
                    "Weekly recap failed", address=recipient.address, error=str(e)
                )

    # ------------------------------------------------------------------ #
    # Loop
    # ------------------------------------------------------------------ #

    def reset_dedup(self) -> None:
        self._last_checked = None

    async def run_forever(self) -> None:
        interval = self.clock.tick_interval_seconds()
        logger.info(
            "Tick scanner started",
            interval_seconds=interval,
            clock=self.clock.status_label(),
        )

        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            try:
                await self.run_tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Error in tick scanner", error=str(e), error_type=type(e).__name__
                )
            # Time spent in the tick counts against the poll interval
            await self._sleep(max(0.0, interval - (loop.time() - started)))

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self.run_forever())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Tick scanner stopped")
