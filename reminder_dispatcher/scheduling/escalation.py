"""
Escalation engine.

Owns the per-(recipient, checkpoint) follow-up chains. A chain is an
explicit EscalationState plus one pending one-shot timer; each fire sends
one follow-up and re-arms through the same flat `schedule_next` step until
the recipient acknowledges, the cap or the backoff length is reached, or
the chain is cancelled.

All state lives in this instance and is only mutated on the event loop, so
every check-then-act between two awaits is atomic. After each await the
fire path re-reads its own entry and aborts if it has been replaced or
removed.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date
from functools import partial

from reminder_dispatcher.config import settings
from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.models.domain.recipient_domain import CheckpointType, Recipient
from reminder_dispatcher.scheduling.clock import Clock
from reminder_dispatcher.scheduling.formatter import (
    FollowUpProgress,
    NotificationFormatter,
    select_tier,
)
from reminder_dispatcher.scheduling.interfaces import DispatchGateway, RecipientDirectory, SendResult
from reminder_dispatcher.scheduling.timers import TimerHandle, TimerScheduler

logger = get_logger(__name__)

ChainKey = tuple[str, CheckpointType]
ReminderFiredCallback = Callable[[str, CheckpointType], Awaitable[None] | None]


@dataclass(eq=False)
class EscalationState:
    address: str
    checkpoint: CheckpointType
    name: str | None
    cap: int
    chain_date: date
    index: int = 0  # follow-ups already sent
    timer: TimerHandle | None = field(default=None, repr=False)

    @property
    def key(self) -> ChainKey:
        return (self.address, self.checkpoint)


class EscalationEngine:
    """Starts, advances and tears down follow-up chains."""

    def __init__(
        self,
        directory: RecipientDirectory,
        gateway: DispatchGateway,
        formatter: NotificationFormatter,
        clock: Clock,
        timers: TimerScheduler,
        *,
        backoff_minutes: list[int] | None = None,
        default_cap: int | None = None,
        max_cap: int | None = None,
        speed_multiplier: float = 1.0,
        send_timeout_seconds: float | None = None,
    ):
        self.directory = directory
        self.gateway = gateway
        self.formatter = formatter
        self.clock = clock
        self.timers = timers
        self.backoff_minutes = list(backoff_minutes or settings.BACKOFF_MINUTES)
        self.default_cap = default_cap or settings.DEFAULT_MAX_FOLLOWUPS
        self.max_cap = max_cap or settings.MAX_FOLLOWUPS_LIMIT
        self.speed_multiplier = speed_multiplier if speed_multiplier > 0 else 1.0
        self.send_timeout_seconds = send_timeout_seconds or settings.SEND_TIMEOUT_SECONDS

        self._states: dict[ChainKey, EscalationState] = {}
        self._fired_callbacks: list[ReminderFiredCallback] = []

    # ------------------------------------------------------------------ #
    # Public hooks
    # ------------------------------------------------------------------ #

    def on_reminder_fired(self, callback: ReminderFiredCallback) -> None:
        """Register a callback invoked with (address, checkpoint) after every successful send."""
        self._fired_callbacks.append(callback)

    def is_active(self, address: str, checkpoint: CheckpointType) -> bool:
        return (address, checkpoint) in self._states

    def active_chains(self, address: str | None = None) -> list[dict]:
        """Snapshot of live chains for status reporting."""
        return [
            {
                "address": state.address,
                "checkpoint": state.checkpoint.value,
                "followups_sent": state.index,
                "total": self._total(state),
                "date": state.chain_date.isoformat(),
            }
            for state in self._states.values()
            if address is None or state.address == address
        ]

    def resolve_cap(self, recipient: Recipient) -> int:
        cap = recipient.max_followups or self.default_cap
        return max(1, min(cap, self.max_cap))

    async def begin(self, recipient: Recipient, checkpoint: CheckpointType) -> bool:
        """
        Send the initial reminder and start the follow-up chain.

        No-op if a chain is already live for the key or the checkpoint is
        already acknowledged for today. The chain starts even when the
        initial send fails; follow-ups act as the retry.

        Returns:
            True if the initial reminder was attempted
        """
        key = (recipient.address, checkpoint)
        if key in self._states:
            logger.debug(
                "Chain already active, skipping begin",
                address=recipient.address,
                checkpoint=checkpoint.value,
            )
            return False

        # Reserve the key before the first await so a concurrent begin sees it
        state = EscalationState(
            address=recipient.address,
            checkpoint=checkpoint,
            name=recipient.name,
            cap=self.resolve_cap(recipient),
            chain_date=self.clock.now().date,
        )
        self._states[key] = state

        try:
            existing = await self.directory.get_acknowledgment(
                recipient.address, state.chain_date, checkpoint
            )
        except Exception:
            self._discard(state)
            raise

        if not self._is_current(state):
            return False

        if existing is not None:
            self._discard(state)
            logger.info(
                "Checkpoint already acknowledged, not starting chain",
                address=recipient.address,
                checkpoint=checkpoint.value,
            )
            return False

        body = self.formatter.render_initial(checkpoint, recipient.name, self._total(state))
        result = await self._send(state, body)

        logger.info(
            "Initial reminder dispatched",
            address=recipient.address,
            checkpoint=checkpoint.value,
            success=result.success,
            cap=state.cap,
        )

        if self._is_current(state):
            self.schedule_next(state)
        return True

    def schedule_next(self, state: EscalationState) -> None:
        """Arm the next follow-up, or tear the chain down once either bound is reached."""
        if not self._is_current(state):
            return

        if state.index >= state.cap or state.index >= len(self.backoff_minutes):
            self._discard(state)
            logger.info(
                "Chain completed",
                address=state.address,
                checkpoint=state.checkpoint.value,
                followups_sent=state.index,
            )
            return

        minutes = self.backoff_minutes[state.index]
        delay_seconds = minutes * 60 / self.speed_multiplier
        state.timer = self.timers.schedule(delay_seconds, partial(self._fire, state))

        logger.debug(
            "Follow-up scheduled",
            address=state.address,
            checkpoint=state.checkpoint.value,
            count=state.index + 1,
            minutes=minutes,
            delay_seconds=round(delay_seconds, 2),
        )

    def cancel(self, address: str, checkpoint: CheckpointType, reason: str = "cancelled") -> bool:
        """Tear down a live chain. Cancelling an absent chain is a no-op."""
        state = self._states.get((address, checkpoint))
        if state is None:
            return False

        self._discard(state)
        logger.info(
            "Chain cancelled",
            address=address,
            checkpoint=checkpoint.value,
            reason=reason,
            followups_sent=state.index,
        )
        return True

    def cancel_recipient(self, address: str, reason: str = "cancelled") -> int:
        """Cancel every checkpoint chain for one recipient."""
        return sum(1 for checkpoint in CheckpointType if self.cancel(address, checkpoint, reason))

    def clear_all(self) -> int:
        """Abandon every live chain (midnight reset, shutdown)."""
        states = list(self._states.values())
        for state in states:
            self._discard(state)

        if states:
            logger.info("All chains cleared", count=len(states))
        return len(states)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _total(self, state: EscalationState) -> int:
        return min(state.cap, len(self.backoff_minutes))

    def _is_current(self, state: EscalationState) -> bool:
        return self._states.get(state.key) is state

    def _discard(self, state: EscalationState) -> None:
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None
        if self._is_current(state):
            del self._states[state.key]

    async def _fire(self, state: EscalationState) -> None:
        if not self._is_current(state):
            return
        state.timer = None

        try:
            acknowledgment = await self.directory.get_acknowledgment(
                state.address, state.chain_date, state.checkpoint
            )
        except Exception as e:
            # Treat as unacknowledged; worst case is one extra message
            logger.warning(
                "Acknowledgment check failed before follow-up",
                address=state.address,
                checkpoint=state.checkpoint.value,
                error=str(e),
            )
            acknowledgment = None

        if not self._is_current(state):
            return

        if acknowledgment is not None:
            self._discard(state)
            logger.info(
                "Acknowledged before follow-up, chain stopped",
                address=state.address,
                checkpoint=state.checkpoint.value,
                followups_sent=state.index,
            )
            return

        count = state.index + 1
        total = self._total(state)
        is_final = state.index == total - 1
        progress = FollowUpProgress(
            count=count,
            total=total,
            is_final=is_final,
            next_interval_minutes=None if is_final else self.backoff_minutes[state.index + 1],
        )
        body = self.formatter.render(select_tier(count), state.checkpoint, state.name, progress)
        result = await self._send(state, body)

        logger.info(
            "Follow-up dispatched",
            address=state.address,
            checkpoint=state.checkpoint.value,
            count=count,
            total=total,
            success=result.success,
        )

        if not self._is_current(state):
            return

        state.index += 1
        self.schedule_next(state)

    async def _send(self, state: EscalationState, body: str) -> SendResult:
        try:
            result = await asyncio.wait_for(
                self.gateway.send(state.address, body), timeout=self.send_timeout_seconds
            )
        except asyncio.TimeoutError:
            result = SendResult.failed("send timed out")
        except Exception as e:
            result = SendResult.failed(str(e))

        if not result.success:
            logger.warning(
                "Reminder send failed",
                address=state.address,
                checkpoint=state.checkpoint.value,
                error=result.error,
                throttled=result.throttled,
            )
            return result

        await self._notify_fired(state.address, state.checkpoint)
        return result

    async def _notify_fired(self, address: str, checkpoint: CheckpointType) -> None:
        for callback in self._fired_callbacks:
            try:
                outcome = callback(address, checkpoint)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(
                    "Reminder-fired callback failed",
                    address=address,
                    checkpoint=checkpoint.value,
                    error=str(e),
                )
