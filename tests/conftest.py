import asyncio
from datetime import date

import pytest

from reminder_dispatcher.auth.verify import auth_dependency
from reminder_dispatcher.db.helpers import DatabaseError
from reminder_dispatcher.models.domain.recipient_domain import (
    AcknowledgmentRecord,
    AckMethod,
    CheckpointType,
    Holiday,
    Leave,
    LeaveStatus,
    Recipient,
    RecipientRole,
)
from reminder_dispatcher.repositories.recipient_repository import RecipientRepositoryError
from reminder_dispatcher.runtime import ReminderRuntime
from reminder_dispatcher.scheduling.clock import ClockReading
from reminder_dispatcher.scheduling.escalation import EscalationEngine
from reminder_dispatcher.scheduling.formatter import NotificationFormatter
from reminder_dispatcher.scheduling.interfaces import SendResult
from reminder_dispatcher.scheduling.schedule import resolve_checkpoint_time

BACKOFF = [5, 8, 13, 21, 34, 55, 89, 144, 233, 377]
DEFAULT_TIMES = {"morning": "07:25", "evening": "16:05"}
MONDAY = date(2024, 3, 4)
FRIDAY = date(2024, 3, 8)


class ManualTimerHandle:
    def __init__(self, due: float, seq: int, callback):
        self.due = due
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimerScheduler:
    """Deterministic timer wheel; time only moves when a test calls advance()."""

    def __init__(self):
        self.now = 0.0
        self._timers: list[ManualTimerHandle] = []
        self._seq = 0

    def schedule(self, delay_seconds, callback):
        self._seq += 1
        handle = ManualTimerHandle(self.now + delay_seconds, self._seq, callback)
        self._timers.append(handle)
        return handle

    @property
    def pending(self) -> list[ManualTimerHandle]:
        return [timer for timer in self._timers if not timer.cancelled]

    def next_delay(self) -> float | None:
        pending = self.pending
        if not pending:
            return None
        return min(timer.due for timer in pending) - self.now

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [timer for timer in self.pending if timer.due <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: (t.due, t.seq))
            self._timers.remove(timer)
            self.now = timer.due
            await timer.callback()
        self.now = target

    async def advance_minutes(self, minutes: float) -> None:
        await self.advance(minutes * 60)

    async def drain(self) -> None:
        return None

    async def run_all(self, limit: int = 100) -> None:
        for _ in range(limit):
            delay = self.next_delay()
            if delay is None:
                return
            await self.advance(delay)


class FixedClock:
    def __init__(self, time_of_day: str = "07:25", day: date = MONDAY, speed: float = 1.0):
        self.time_of_day = time_of_day
        self.date = day
        self.speed = speed

    def now(self) -> ClockReading:
        return ClockReading(
            time_of_day=self.time_of_day, date=self.date, day_of_week=self.date.weekday()
        )

    def set(self, time_of_day: str | None = None, day: date | None = None) -> None:
        if time_of_day is not None:
            self.time_of_day = time_of_day
        if day is not None:
            self.date = day

    @property
    def speed_multiplier(self) -> float:
        return self.speed

    @property
    def is_simulated(self) -> bool:
        return True

    def tick_interval_seconds(self) -> float:
        return min(10.0, 30.0 / self.speed)

    def status_label(self) -> str:
        return f"TEST MODE [time={self.time_of_day}]"


class FakeGateway:
    def __init__(self):
        self.ready = True
        self.sent: list[tuple[str, str]] = []
        self.attempts: list[tuple[str, str]] = []
        self.fail = False
        self.throttle = False
        self.fail_for: set[str] = set()
        self.gate: asyncio.Event | None = None
        self.in_flight = asyncio.Event()
        self.closed = False

    def is_ready(self) -> bool:
        return self.ready

    async def refresh_readiness(self) -> bool:
        return self.ready

    async def send(self, address: str, body: str) -> SendResult:
        self.attempts.append((address, body))
        if self.gate is not None:
            self.in_flight.set()
            await self.gate.wait()
        if self.throttle:
            return SendResult.failed("throttled", throttled=True)
        if self.fail or address in self.fail_for:
            return SendResult.failed("gateway down")
        self.sent.append((address, body))
        return SendResult.ok()

    def bodies_for(self, address: str) -> list[str]:
        return [body for sent_to, body in self.sent if sent_to == address]

    async def close(self) -> None:
        self.closed = True


class FakeDirectory:
    """In-memory stand-in for RecipientRepository."""

    def __init__(self, default_times: dict[str, str] | None = None):
        self.default_times = default_times or dict(DEFAULT_TIMES)
        self.recipients: dict[str, Recipient] = {}
        self.acks: dict[tuple[str, date, CheckpointType], AcknowledgmentRecord] = {}
        self.holidays: dict[date, Holiday] = {}
        self.leaves: list[Leave] = []
        self.snoozes: dict[tuple[str, date, CheckpointType], int] = {}

        self.fail_reads = False
        self.fail_leaves_for: set[str] = set()
        self.ack_gate: asyncio.Event | None = None
        self.ack_checks = 0

    def add(self, recipient: Recipient) -> Recipient:
        self.recipients[recipient.address] = recipient
        return recipient

    def acknowledge(self, address: str, day: date, checkpoint: CheckpointType, at: str = "07:30"):
        self.acks[(address, day, checkpoint)] = AcknowledgmentRecord(
            address=address,
            ack_date=day,
            checkpoint=checkpoint,
            acknowledged_at=at,
            method=AckMethod.SELF_REPORTED,
        )

    # Recipients

    async def get_active_recipients(self) -> list[Recipient]:
        if self.fail_reads:
            raise DatabaseError("connection refused", operation="fetch_all")
        return [recipient for recipient in self.recipients.values() if recipient.is_active]

    async def get_all_recipients(self) -> list[Recipient]:
        return list(self.recipients.values())

    async def get_recipient(self, address: str) -> Recipient | None:
        return self.recipients.get(address)

    async def upsert_recipient(self, address, name, role=None) -> Recipient:
        existing = self.recipients.get(address)
        if existing is not None:
            updated = existing.model_copy(update={"name": name, "role": role or existing.role})
        else:
            updated = Recipient(
                address=address,
                name=name,
                role=role or RecipientRole.STANDARD,
                checkpoint_times=dict(self.default_times),
                schedule_overrides={"4": {"evening": "16:35"}},
                work_days=[0, 1, 2, 3, 4],
            )
        self.recipients[address] = updated
        return updated

    async def update_schedule(
        self, address, *, checkpoint_times=None, schedule_overrides=None, work_days=None, max_followups=None
    ) -> Recipient | None:
        existing = self.recipients.get(address)
        if existing is None:
            return None
        if max_followups is not None and not 1 <= max_followups <= 10:
            raise RecipientRepositoryError("max_followups out of range", recoverable=False)
        changes = {
            "checkpoint_times": checkpoint_times,
            "schedule_overrides": schedule_overrides,
            "work_days": work_days,
            "max_followups": max_followups,
        }
        updated = existing.model_copy(update={k: v for k, v in changes.items() if v is not None})
        self.recipients[address] = updated
        return updated

    async def set_active(self, address: str, active: bool) -> bool:
        existing = self.recipients.get(address)
        if existing is None:
            return False
        self.recipients[address] = existing.model_copy(update={"is_active": active})
        return True

    async def remove_recipient(self, address: str) -> bool:
        if self.recipients.pop(address, None) is None:
            return False
        self.acks = {key: value for key, value in self.acks.items() if key[0] != address}
        self.leaves = [leave for leave in self.leaves if leave.address != address]
        return True

    def effective_checkpoint_time(self, recipient, checkpoint, day_of_week):
        return resolve_checkpoint_time(recipient, checkpoint, day_of_week, self.default_times)

    # Acknowledgments

    async def get_acknowledgment(self, address, day, checkpoint):
        self.ack_checks += 1
        if self.ack_gate is not None:
            await self.ack_gate.wait()
        return self.acks.get((address, day, checkpoint))

    async def record_acknowledgment(self, address, checkpoint, method, day, acknowledged_at):
        key = (address, day, checkpoint)
        if key not in self.acks:
            self.acks[key] = AcknowledgmentRecord(
                address=address,
                ack_date=day,
                checkpoint=checkpoint,
                acknowledged_at=acknowledged_at,
                method=method,
            )
        return self.acks[key]

    async def get_acknowledgments_between(self, address, start, end):
        return [
            record
            for (ack_address, day, _), record in sorted(self.acks.items(), key=lambda item: item[0][1])
            if ack_address == address and start <= day <= end
        ]

    async def get_acknowledgment_history(self, address, limit=14):
        records = [record for (ack_address, _, _), record in self.acks.items() if ack_address == address]
        return sorted(records, key=lambda record: record.ack_date, reverse=True)[:limit]

    # Holidays

    async def get_holiday(self, day):
        if self.fail_reads:
            raise DatabaseError("connection refused", operation="fetch_one")
        return self.holidays.get(day)

    async def is_holiday(self, day):
        return await self.get_holiday(day) is not None

    async def get_upcoming_holidays(self, from_day, limit=20):
        return [self.holidays[day] for day in sorted(self.holidays) if day >= from_day][:limit]

    async def add_holiday(self, day, name, created_by=None):
        if day in self.holidays:
            return False
        self.holidays[day] = Holiday(holiday_date=day, name=name, is_national=False, created_by=created_by)
        return True

    async def remove_holiday(self, day):
        holiday = self.holidays.get(day)
        if holiday is None or holiday.is_national:
            return False
        del self.holidays[day]
        return True

    async def replace_national_holidays(self, holidays):
        self.holidays = {day: h for day, h in self.holidays.items() if not h.is_national}
        for holiday in holidays:
            self.holidays.setdefault(holiday.holiday_date, holiday)
        return len(holidays)

    # Leaves

    async def add_leave(self, address, start, end, reason):
        leave = Leave(id=len(self.leaves) + 1, address=address, start_date=start, end_date=end, reason=reason)
        self.leaves.append(leave)
        return leave

    async def get_active_leaves(self, address, day):
        if address in self.fail_leaves_for:
            raise DatabaseError("leave lookup failed", operation="fetch_all")
        return [leave for leave in self.leaves if leave.address == address and leave.covers(day)]

    async def list_leaves(self, address, from_day):
        return [
            leave
            for leave in self.leaves
            if leave.address == address and leave.status == LeaveStatus.ACTIVE and leave.end_date >= from_day
        ]

    async def cancel_leave(self, address, leave_id):
        for index, leave in enumerate(self.leaves):
            if leave.id == leave_id and leave.address == address and leave.status == LeaveStatus.ACTIVE:
                self.leaves[index] = leave.model_copy(update={"status": LeaveStatus.CANCELLED})
                return True
        return False

    # Snooze counters / backup

    async def increment_snooze(self, address, day, checkpoint):
        key = (address, day, checkpoint)
        self.snoozes[key] = self.snoozes.get(key, 0) + 1
        return self.snoozes[key]

    async def purge_snooze_counters(self, before):
        stale = [key for key in self.snoozes if key[1] < before]
        for key in stale:
            del self.snoozes[key]
        return len(stale)

    async def export_tables(self):
        return {
            "recipients": [recipient.model_dump() for recipient in self.recipients.values()],
            "acknowledgments": [record.model_dump() for record in self.acks.values()],
            "leaves": [leave.model_dump() for leave in self.leaves],
            "holidays": [holiday.model_dump() for holiday in self.holidays.values()],
            "snooze_counters": [],
        }


def build_recipient(address: str = "6281100001", name: str = "Budi", **overrides) -> Recipient:
    values = {
        "address": address,
        "name": name,
        "checkpoint_times": dict(DEFAULT_TIMES),
        "schedule_overrides": {"4": {"evening": "16:35"}},
        "work_days": [0, 1, 2, 3, 4],
        "max_followups": 10,
    }
    values.update(overrides)
    return Recipient(**values)


@pytest.fixture
def make_recipient():
    return build_recipient


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def timers():
    return ManualTimerScheduler()


@pytest.fixture
def formatter():
    return NotificationFormatter()


@pytest.fixture
def engine(directory, gateway, formatter, clock, timers):
    return EscalationEngine(
        directory,
        gateway,
        formatter,
        clock,
        timers,
        backoff_minutes=BACKOFF,
        default_cap=10,
        max_cap=10,
        speed_multiplier=1.0,
        send_timeout_seconds=5,
    )


@pytest.fixture
def api_key_override():
    def _override():
        return "test-key"

    return _override


@pytest.fixture
def apply_auth_override(api_key_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = api_key_override

    return _apply


@pytest.fixture
def runtime(clock, directory, gateway, formatter, timers):
    return ReminderRuntime(clock, directory, gateway, formatter, timers)
