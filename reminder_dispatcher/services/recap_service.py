"""
Weekly recap notifications.

Sent on the recap weekday once a recipient's evening checkpoint is already
acknowledged. Independent of the escalation chains: it never reads or
changes chain state, and each recipient gets at most one recap per date.
"""

from datetime import date, timedelta

from reminder_dispatcher.config import settings
from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.models.domain.recipient_domain import CheckpointType, Recipient
from reminder_dispatcher.scheduling.formatter import NotificationFormatter
from reminder_dispatcher.scheduling.interfaces import DispatchGateway, RecipientDirectory

logger = get_logger(__name__)


class WeeklyRecapService:
    def __init__(
        self,
        directory: RecipientDirectory,
        gateway: DispatchGateway,
        formatter: NotificationFormatter,
        *,
        weekday: int | None = None,
        enabled: bool | None = None,
    ):
        self.directory = directory
        self.gateway = gateway
        self.formatter = formatter
        self.weekday = settings.WEEKLY_RECAP_WEEKDAY if weekday is None else weekday
        self.enabled = settings.WEEKLY_RECAP_ENABLED if enabled is None else enabled
        self._sent: set[tuple[str, date]] = set()

    def is_recap_day(self, day_of_week: int) -> bool:
        return self.enabled and day_of_week == self.weekday

    @staticmethod
    def expected_days(recipient: Recipient, today: date) -> int:
        """Work days from Monday of this week through today."""
        monday = today - timedelta(days=today.weekday())
        span = (today - monday).days + 1
        work_days = set(recipient.work_days)
        return sum(1 for offset in range(span) if (monday + timedelta(days=offset)).weekday() in work_days)

    async def send_recap(self, recipient: Recipient, today: date) -> bool:
        """Send this week's summary. Returns False when skipped or failed."""
        key = (recipient.address, today)
        if key in self._sent:
            return False
        self._sent.add(key)

        monday = today - timedelta(days=today.weekday())
        records = await self.directory.get_acknowledgments_between(recipient.address, monday, today)
        morning = sum(1 for record in records if record.checkpoint == CheckpointType.MORNING)
        evening = sum(1 for record in records if record.checkpoint == CheckpointType.EVENING)
        expected = self.expected_days(recipient, today)

        body = self.formatter.render_weekly_recap(
            recipient.name,
            start=monday.isoformat(),
            end=today.isoformat(),
            morning=morning,
            evening=evening,
            expected=expected,
        )
        result = await self.gateway.send(recipient.address, body)

        if not result.success:
            logger.warning(
                "Weekly recap send failed", address=recipient.address, error=result.error
            )
            return False

        logger.info(
            "Weekly recap sent",
            address=recipient.address,
            morning=morning,
            evening=evening,
            expected=expected,
        )
        return True

    def reset(self, before: date | None = None) -> None:
        """Forget sent markers (all, or those dated before `before`)."""
        if before is None:
            self._sent.clear()
        else:
            self._sent = {key for key in self._sent if key[1] >= before}
