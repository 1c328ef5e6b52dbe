"""Effective reminder time resolution."""

from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.models.domain.recipient_domain import CheckpointType, Recipient
from reminder_dispatcher.scheduling.clock import parse_time_of_day

logger = get_logger(__name__)


def _normalize(value: str) -> str:
    hour, minute = parse_time_of_day(value)
    return f"{hour:02d}:{minute:02d}"


def resolve_checkpoint_time(
    recipient: Recipient,
    checkpoint: CheckpointType,
    day_of_week: int,
    default_times: dict[str, str] | None = None,
) -> str | None:
    """
    Return the HH:MM reminder time for a checkpoint on the given weekday.

    A day-specific override wins over the recipient's default. Malformed
    override data falls back to the default with a warning. Returns None
    only when no usable time exists at all.
    """
    overrides = recipient.schedule_overrides or {}
    try:
        day_entry = overrides.get(str(day_of_week))
        if day_entry is not None:
            if not isinstance(day_entry, dict):
                raise ValueError(f"override for day {day_of_week} is not a mapping")
            override = day_entry.get(checkpoint.value)
            if override:
                return _normalize(str(override))
    except (ValueError, AttributeError) as e:
        logger.warning(
            "Malformed schedule override, using default time",
            address=recipient.address,
            checkpoint=checkpoint.value,
            day_of_week=day_of_week,
            error=str(e),
        )

    for source in (recipient.checkpoint_times, default_times or {}):
        value = source.get(checkpoint.value)
        if not value:
            continue
        try:
            return _normalize(value)
        except ValueError as e:
            logger.warning(
                "Malformed default time",
                address=recipient.address,
                checkpoint=checkpoint.value,
                error=str(e),
            )

    return None
