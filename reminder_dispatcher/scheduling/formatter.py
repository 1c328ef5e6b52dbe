"""
Notification formatter.

Renders reminder bodies from parameterized templates. Pure: no I/O, no
state. Every `{field}` token is substituted; a token without a value
renders as an empty string rather than leaking into the message.
"""

import re
from dataclasses import dataclass
from enum import IntEnum

from reminder_dispatcher.models.domain.recipient_domain import CheckpointType

PLACEHOLDER = re.compile(r"\{(\w+)\}")
RULE = "━━━━━━━━━━━━━━━━━━━━━━━"
FALLBACK_NAME = "there"


class MessageTier(IntEnum):
    INITIAL = 0
    POLITE = 1
    DIRECT = 2
    URGENT = 3


def select_tier(count: int) -> MessageTier:
    """Tier for the 1-based follow-up count."""
    if count <= 0:
        return MessageTier.INITIAL
    if count <= 2:
        return MessageTier.POLITE
    if count <= 5:
        return MessageTier.DIRECT
    return MessageTier.URGENT


@dataclass(frozen=True, slots=True)
class FollowUpProgress:
    count: int  # 1-based follow-up number; 0 for the initial reminder
    total: int  # min(cap, backoff length)
    is_final: bool = False
    next_interval_minutes: int | None = None


INITIAL_TEMPLATES = {
    CheckpointType.MORNING: "\n".join(
        [
            "☀️  *MORNING CHECK-IN REMINDER*",
            RULE,
            "",
            "Good morning, *{name}*! 👋",
            "Time to record your arrival.",
            "",
            "📱 Open the *attendance app* and",
            "check in now.",
            "",
            RULE,
            "  ✅ Reply *1* — Checked in",
            "  ⏰ Reply *2* — Remind me later",
            "  🏖️ Reply *3* — On leave",
            "  ✈️ Reply *4* — Official travel",
            RULE,
            "",
            "_⏳ Up to {total} follow-ups until you confirm_",
        ]
    ),
    CheckpointType.EVENING: "\n".join(
        [
            "🌆  *EVENING CHECK-OUT REMINDER*",
            RULE,
            "",
            "Hi *{name}*! Time to head home 🏠",
            "Don't forget to record your departure.",
            "",
            "📱 Open the *attendance app* and",
            "check out now.",
            "",
            RULE,
            "  ✅ Reply *1* — Checked out",
            "  ⏰ Reply *2* — Remind me later",
            "  🏖️ Reply *3* — On leave",
            "  ✈️ Reply *4* — Official travel",
            RULE,
            "",
            "_⏳ Up to {total} follow-ups until you confirm_",
        ]
    ),
}

FOLLOW_UP_TEMPLATES = {
    # Follow-up 1-2
    MessageTier.POLITE: "\n".join(
        [
            "🔔 *REMINDER #{count} — {CHECKPOINT} {ACTION}*",
            "",
            "Hi *{name}*, you haven't confirmed",
            "your {checkpoint} {action} yet. Please do it soon! 🙏",
            "",
            "📱 Open the *attendance app* now.",
            "",
            "✅ Reply *1* — Done",
            "",
            "{footer}",
        ]
    ),
    # Follow-up 3-5
    MessageTier.DIRECT: "\n".join(
        [
            "🔔 *REMINDER #{count} — {CHECKPOINT} {ACTION}*",
            "",
            "*{name}*, your {checkpoint} {action} is still missing.",
            "Please record it right away! ⚠️",
            "",
            "✅ Reply *1* once done",
            "",
            "{footer}",
        ]
    ),
    # Follow-up 6+
    MessageTier.URGENT: "\n".join(
        [
            "⚠️ *URGENT — {CHECKPOINT} {ACTION}*",
            "",
            "*{name}*, {VERB} FOR {CHECKPOINT} NOW!",
            "Reminder {count} of {total}.",
            "",
            "✅ Reply *1* when done",
            "",
            "{footer}",
        ]
    ),
}

# (action, shouted verb) per checkpoint
ACTION_WORDS = {
    CheckpointType.MORNING: ("check-in", "CHECK IN"),
    CheckpointType.EVENING: ("check-out", "CHECK OUT"),
}

FINAL_FOOTER = "_⚠️ This is the last reminder ({count}/{total})_"
NEXT_FOOTER = "_⏳ Reminder {count}/{total} · Next in {next} min_"

WEEKLY_RECAP_TEMPLATE = "\n".join(
    [
        "📊  *WEEKLY RECAP*",
        RULE,
        "",
        "Period: {start} — {end}",
        "",
        "👤 *{name}*",
        "",
        "✅ Morning : *{morning}/{expected}* days",
        "✅ Evening : *{evening}/{expected}* days",
        "📈 Compliance : *{percentage}%*",
        "",
        "{status}",
    ]
)

BROADCAST_TEMPLATE = "📢 *[BROADCAST]*\n\n{text}"


def render_template(template: str, values: dict[str, object]) -> str:
    """Substitute every {field} token; unknown tokens become empty strings."""
    return PLACEHOLDER.sub(lambda match: str(values.get(match.group(1), "")), template)


class NotificationFormatter:
    """Renders message bodies for each tier and checkpoint."""

    def __init__(
        self,
        initial_templates: dict[CheckpointType, str] | None = None,
        follow_up_templates: dict[MessageTier, str] | None = None,
    ):
        self.initial_templates = initial_templates or INITIAL_TEMPLATES
        self.follow_up_templates = follow_up_templates or FOLLOW_UP_TEMPLATES

    def render(
        self,
        tier: MessageTier,
        checkpoint: CheckpointType,
        recipient_name: str | None,
        progress: FollowUpProgress,
    ) -> str:
        action, verb = ACTION_WORDS[checkpoint]
        values = {
            "name": recipient_name or FALLBACK_NAME,
            "checkpoint": checkpoint.value,
            "CHECKPOINT": checkpoint.value.upper(),
            "action": action,
            "ACTION": action.upper(),
            "VERB": verb,
            "count": progress.count,
            "total": progress.total,
            "next": progress.next_interval_minutes or "",
        }

        if tier == MessageTier.INITIAL:
            return render_template(self.initial_templates[checkpoint], values)

        footer = FINAL_FOOTER if progress.is_final or progress.next_interval_minutes is None else NEXT_FOOTER
        values["footer"] = render_template(footer, values)
        return render_template(self.follow_up_templates[tier], values)

    def render_initial(self, checkpoint: CheckpointType, recipient_name: str | None, total: int) -> str:
        return self.render(
            MessageTier.INITIAL, checkpoint, recipient_name, FollowUpProgress(count=0, total=total)
        )

    def render_weekly_recap(
        self,
        recipient_name: str | None,
        start: str,
        end: str,
        morning: int,
        evening: int,
        expected: int,
    ) -> str:
        percentage = round((morning + evening) / (expected * 2) * 100) if expected else 0
        if percentage >= 90:
            status = "🌟 *Outstanding!* You've been very diligent."
        elif percentage >= 70:
            status = "👍 *Good job!* Keep it up."
        else:
            status = "💪 *Keep going!* Aim for more discipline next week."

        return render_template(
            WEEKLY_RECAP_TEMPLATE,
            {
                "name": recipient_name or FALLBACK_NAME,
                "start": start,
                "end": end,
                "morning": morning,
                "evening": evening,
                "expected": expected,
                "percentage": percentage,
                "status": status,
            },
        )

    def render_broadcast(self, text: str) -> str:
        return render_template(BROADCAST_TEMPLATE, {"text": text})
