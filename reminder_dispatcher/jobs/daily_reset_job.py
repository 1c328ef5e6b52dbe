"""
Midnight reset.

Purges snooze counters dated before today, abandons every live escalation
chain and forgets pending reply contexts. Unacknowledged chains from the
previous day are not carried over.
"""

from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.jobs.daily_schedule import run_daily_at
from reminder_dispatcher.repositories.recipient_repository import RecipientRepository
from reminder_dispatcher.scheduling.clock import Clock
from reminder_dispatcher.scheduling.escalation import EscalationEngine
from reminder_dispatcher.services.recap_service import WeeklyRecapService
from reminder_dispatcher.services.reply_context import ReplyContextStore

logger = get_logger(__name__)


class DailyResetJob:
    def __init__(
        self,
        repository: RecipientRepository,
        clock: Clock,
        engine: EscalationEngine | None = None,
        reply_contexts: ReplyContextStore | None = None,
        recap: WeeklyRecapService | None = None,
    ):
        self.repository = repository
        self.clock = clock
        self.engine = engine
        self.reply_contexts = reply_contexts
        self.recap = recap

    async def run_once(self) -> dict:
        today = self.clock.now().date
        result = {"date": today.isoformat(), "chains_cleared": 0, "contexts_cleared": 0}

        # In-memory state first so a database failure cannot leave chains running
        if self.engine is not None:
            result["chains_cleared"] = self.engine.clear_all()
        if self.reply_contexts is not None:
            result["contexts_cleared"] = self.reply_contexts.clear_all()
        if self.recap is not None:
            self.recap.reset(before=today)

        result["snooze_counters_purged"] = await self.repository.purge_snooze_counters(today)

        logger.info("Daily reset completed", **result)
        return result


async def start_daily_reset_scheduler(job: DailyResetJob) -> None:
    await run_daily_at("daily_reset", 0, 0, job.run_once)
