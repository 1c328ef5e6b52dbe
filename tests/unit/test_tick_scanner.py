from datetime import date, datetime, timezone

import pytest

from reminder_dispatcher.models.domain.recipient_domain import CheckpointType, Holiday
from reminder_dispatcher.scheduling.clock import Clock
from reminder_dispatcher.scheduling.tick_scanner import TickScanner
from reminder_dispatcher.services.recap_service import WeeklyRecapService

MONDAY = date(2024, 3, 4)
FRIDAY = date(2024, 3, 8)
SATURDAY = date(2024, 3, 9)
SERVICE_ACCOUNT = "6289900000"


class StopLoop(Exception):
    pass


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def recap(directory, gateway, formatter):
    return WeeklyRecapService(directory, gateway, formatter, weekday=4, enabled=True)


@pytest.fixture
def scanner(clock, directory, gateway, engine, recap):
    return TickScanner(clock, directory, gateway, engine, recap, service_account=SERVICE_ACCOUNT)


@pytest.mark.asyncio
async def test_due_recipient_gets_initial_reminder(scanner, clock, directory, gateway, engine, make_recipient):
    recipient = directory.add(make_recipient())
    clock.set(time_of_day="07:25", day=MONDAY)

    summary = await scanner.run_tick()

    assert summary == {"time": "07:25", "skipped": None, "started": 1, "failures": 0}
    assert gateway.bodies_for(recipient.address)[0].startswith("☀️")
    assert engine.is_active(recipient.address, CheckpointType.MORNING)


@pytest.mark.asyncio
async def test_recipient_not_due_is_left_alone(scanner, clock, directory, gateway, make_recipient):
    directory.add(make_recipient())
    clock.set(time_of_day="07:24")

    summary = await scanner.run_tick()

    assert summary["started"] == 0
    assert gateway.attempts == []


@pytest.mark.asyncio
async def test_second_poll_in_same_minute_is_skipped(scanner, clock, directory, gateway, make_recipient):
    directory.add(make_recipient())
    clock.set(time_of_day="07:25")

    await scanner.run_tick()
    summary = await scanner.run_tick()

    assert summary["skipped"] == "same_minute"
    assert len(gateway.attempts) == 1


@pytest.mark.asyncio
async def test_minute_change_is_processed_again(scanner, clock, directory, make_recipient):
    directory.add(make_recipient())
    clock.set(time_of_day="07:24")
    await scanner.run_tick()

    clock.set(time_of_day="07:25")
    summary = await scanner.run_tick()

    assert summary["skipped"] is None
    assert summary["started"] == 1


@pytest.mark.asyncio
async def test_gateway_not_ready_does_not_consume_minute(scanner, clock, directory, gateway, make_recipient):
    directory.add(make_recipient())
    clock.set(time_of_day="07:25")
    gateway.ready = False

    summary = await scanner.run_tick()
    assert summary["skipped"] == "gateway_not_ready"

    gateway.ready = True
    summary = await scanner.run_tick()
    assert summary["started"] == 1


@pytest.mark.asyncio
async def test_holiday_skips_everyone(scanner, clock, directory, gateway, make_recipient):
    directory.add(make_recipient())
    directory.holidays[MONDAY] = Holiday(holiday_date=MONDAY, name="Nyepi")
    clock.set(time_of_day="07:25", day=MONDAY)

    summary = await scanner.run_tick()

    assert summary["skipped"] == "holiday"
    assert gateway.attempts == []


@pytest.mark.asyncio
async def test_non_work_day_is_skipped(scanner, clock, directory, gateway, make_recipient):
    directory.add(make_recipient())
    clock.set(time_of_day="07:25", day=SATURDAY)

    await scanner.run_tick()

    assert gateway.attempts == []


@pytest.mark.asyncio
async def test_recipient_on_leave_is_skipped(scanner, clock, directory, gateway, make_recipient):
    recipient = directory.add(make_recipient())
    await directory.add_leave(recipient.address, MONDAY, FRIDAY, "annual leave")
    clock.set(time_of_day="07:25", day=MONDAY)

    await scanner.run_tick()

    assert gateway.attempts == []


@pytest.mark.asyncio
async def test_service_account_never_gets_reminders(scanner, clock, directory, gateway, make_recipient):
    directory.add(make_recipient(SERVICE_ACCOUNT, name="Dispatcher"))
    clock.set(time_of_day="07:25")

    summary = await scanner.run_tick()

    assert summary["started"] == 0
    assert gateway.attempts == []


@pytest.mark.asyncio
async def test_acknowledged_checkpoint_is_skipped(scanner, clock, directory, gateway, make_recipient):
    recipient = directory.add(make_recipient())
    directory.acknowledge(recipient.address, MONDAY, CheckpointType.MORNING, at="07:10")
    clock.set(time_of_day="07:25", day=MONDAY)

    summary = await scanner.run_tick()

    assert summary["started"] == 0
    assert gateway.attempts == []


@pytest.mark.asyncio
async def test_friday_evening_override_applies(scanner, clock, directory, gateway, make_recipient):
    recipient = directory.add(make_recipient())
    clock.set(time_of_day="16:05", day=FRIDAY)
    await scanner.run_tick()
    assert gateway.attempts == []

    clock.set(time_of_day="16:35", day=FRIDAY)
    await scanner.run_tick()
    assert "EVENING CHECK-OUT" in gateway.bodies_for(recipient.address)[0]


@pytest.mark.asyncio
async def test_directory_failure_aborts_tick(scanner, clock, directory, gateway, make_recipient):
    directory.add(make_recipient())
    directory.fail_reads = True
    clock.set(time_of_day="07:25")

    summary = await scanner.run_tick()

    assert summary["skipped"] == "directory_error"
    assert gateway.attempts == []


@pytest.mark.asyncio
async def test_failure_for_one_recipient_does_not_block_others(
    scanner, clock, directory, gateway, make_recipient
):
    broken = directory.add(make_recipient("6281100001", name="Budi"))
    healthy = directory.add(make_recipient("6281100002", name="Sari"))
    directory.fail_leaves_for.add(broken.address)
    clock.set(time_of_day="07:25")

    summary = await scanner.run_tick()

    assert summary["failures"] == 1
    assert summary["started"] == 1
    assert len(gateway.bodies_for(healthy.address)) == 1


@pytest.mark.asyncio
async def test_recap_sent_once_on_recap_day(scanner, clock, directory, gateway, make_recipient):
    recipient = directory.add(make_recipient())
    for offset in range(5):
        day = date(2024, 3, 4 + offset)
        directory.acknowledge(recipient.address, day, CheckpointType.MORNING)
        directory.acknowledge(recipient.address, day, CheckpointType.EVENING, at="16:40")

    clock.set(time_of_day="16:35", day=FRIDAY)
    await scanner.run_tick()
    scanner.reset_dedup()
    await scanner.run_tick()

    bodies = gateway.bodies_for(recipient.address)
    assert len(bodies) == 1
    assert "WEEKLY RECAP" in bodies[0]
    assert "*5/5* days" in bodies[0]


@pytest.mark.asyncio
async def test_no_recap_outside_recap_day(scanner, clock, directory, gateway, make_recipient):
    recipient = directory.add(make_recipient())
    directory.acknowledge(recipient.address, MONDAY, CheckpointType.EVENING, at="16:06")
    clock.set(time_of_day="16:05", day=MONDAY)

    await scanner.run_tick()

    assert gateway.attempts == []


@pytest.mark.asyncio
async def test_start_and_stop_loop(scanner):
    scanner.start()
    assert scanner.is_running

    await scanner.stop()

    assert not scanner.is_running


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "speed, tick_seconds",
    [
        (1, 2.0),  # real-time cadence, each tick takes 2 s
        (60, 0.2),  # one effective minute per real second
    ],
)
async def test_run_forever_scans_every_minute_with_slow_ticks(
    directory, gateway, engine, speed, tick_seconds
):
    monotonic = FakeMonotonic()
    clock = Clock(
        "UTC",
        wall_clock=lambda: datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc),
        monotonic=monotonic,
    )
    clock.configure(time="07:00", speed=speed)
    end = monotonic.value + 30 * 60 / speed

    async def fake_sleep(seconds):
        monotonic.value += seconds
        if monotonic.value >= end:
            raise StopLoop

    scanner = TickScanner(
        clock, directory, gateway, engine, service_account=SERVICE_ACCOUNT, sleep=fake_sleep
    )
    run_tick = scanner.run_tick
    scanned = []

    async def slow_tick():
        summary = await run_tick()
        monotonic.value += tick_seconds
        if summary["skipped"] is None:
            scanned.append(summary["time"])
        return summary

    scanner.run_tick = slow_tick

    with pytest.raises(StopLoop):
        await scanner.run_forever()

    assert scanned == [f"07:{minute:02d}" for minute in range(30)]


@pytest.mark.asyncio
async def test_run_forever_survives_a_failing_tick(scanner, monkeypatch):
    calls = []

    async def failing_tick():
        calls.append(1)
        raise RuntimeError("directory exploded")

    async def fake_sleep(seconds):
        if len(calls) >= 3:
            raise StopLoop

    monkeypatch.setattr(scanner, "run_tick", failing_tick)
    monkeypatch.setattr(scanner, "_sleep", fake_sleep)

    with pytest.raises(StopLoop):
        await scanner.run_forever()

    assert len(calls) == 3
