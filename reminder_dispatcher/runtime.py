"""
Process-wide wiring of the scheduler and its collaborators.

One ReminderRuntime is built in the FastAPI lifespan. It owns the live
components (engine, scanner, reply contexts) and the background tasks, so
tests can build their own with fakes instead of patching module globals.
"""

import asyncio
from collections.abc import Coroutine

from reminder_dispatcher.config import settings
from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.jobs.backup_job import BackupJob, start_backup_scheduler
from reminder_dispatcher.jobs.daily_reset_job import DailyResetJob, start_daily_reset_scheduler
from reminder_dispatcher.jobs.holiday_sync_job import HolidaySyncJob, start_holiday_sync_scheduler
from reminder_dispatcher.models.domain.recipient_domain import RecipientRole
from reminder_dispatcher.repositories.recipient_repository import RecipientRepository
from reminder_dispatcher.scheduling.clock import Clock
from reminder_dispatcher.scheduling.escalation import EscalationEngine
from reminder_dispatcher.scheduling.formatter import NotificationFormatter
from reminder_dispatcher.scheduling.tick_scanner import TickScanner
from reminder_dispatcher.scheduling.timers import AsyncioTimerScheduler
from reminder_dispatcher.services.attendance_service import AttendanceService
from reminder_dispatcher.services.dispatch_gateway import HttpDispatchGateway
from reminder_dispatcher.services.recap_service import WeeklyRecapService
from reminder_dispatcher.services.reply_context import ReplyContextStore

logger = get_logger(__name__)

GATEWAY_POLL_SECONDS = 30


class ReminderRuntime:
    def __init__(
        self,
        clock: Clock,
        repository: RecipientRepository,
        gateway: HttpDispatchGateway,
        formatter: NotificationFormatter | None = None,
        timers: AsyncioTimerScheduler | None = None,
    ):
        self.clock = clock
        self.repository = repository
        self.gateway = gateway
        self.formatter = formatter or NotificationFormatter()
        self.timers = timers or AsyncioTimerScheduler()

        self.reply_contexts = ReplyContextStore()
        self.engine = EscalationEngine(
            repository,
            gateway,
            self.formatter,
            clock,
            self.timers,
            speed_multiplier=clock.speed_multiplier,
        )
        self.engine.on_reminder_fired(self.reply_contexts.remember)

        self.recap = WeeklyRecapService(repository, gateway, self.formatter)
        self.scanner = TickScanner(clock, repository, gateway, self.engine, self.recap)
        self.attendance = AttendanceService(
            repository,
            self.engine,
            gateway,
            self.formatter,
            clock,
            self.reply_contexts,
            settings.SERVICE_ACCOUNT_ADDRESS,
        )

        self.daily_reset = DailyResetJob(
            repository, clock, self.engine, self.reply_contexts, self.recap
        )
        self.backup = BackupJob(repository)
        self.holiday_sync = HolidaySyncJob(repository)

        self._tasks: list[asyncio.Task] = []

    @property
    def scheduler_running(self) -> bool:
        return self.scanner.is_running

    async def register_system_accounts(self) -> None:
        """Primary admin is privileged; the service account never gets reminders."""
        await self.repository.upsert_recipient(
            settings.PRIMARY_ADMIN_ADDRESS, "Primary Admin", RecipientRole.PRIVILEGED
        )

        service_account = settings.SERVICE_ACCOUNT_ADDRESS
        if await self.repository.get_recipient(service_account) is None:
            await self.repository.upsert_recipient(
                service_account, "Service Account", RecipientRole.PRIVILEGED
            )
            await self.repository.set_active(service_account, False)

        logger.info(
            "System accounts registered",
            primary_admin=settings.PRIMARY_ADMIN_ADDRESS,
            service_account=service_account,
        )

    def _spawn(self, name: str, coro: Coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.append(task)

    async def _poll_gateway(self) -> None:
        while True:
            try:
                await self.gateway.refresh_readiness()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Gateway status poll failed", error=str(e), error_type=type(e).__name__
                )
            await asyncio.sleep(GATEWAY_POLL_SECONDS)

    async def start(self) -> None:
        await self.gateway.refresh_readiness()
        self._spawn("gateway_poll", self._poll_gateway())

        if not settings.SCHEDULER_ENABLED:
            logger.info("Scheduler DISABLED")
            return

        self.scanner.start()
        self._spawn("daily_reset", start_daily_reset_scheduler(self.daily_reset))
        self._spawn("backup", start_backup_scheduler(self.backup))
        self._spawn("holiday_sync", start_holiday_sync_scheduler(self.holiday_sync))

        logger.info("Scheduler started", clock=self.clock.status_label())

    async def stop(self) -> None:
        await self.scanner.stop()
        cleared = self.engine.clear_all()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.timers.drain()
        await self.gateway.close()
        logger.info("Scheduler stopped", chains_cleared=cleared)
