"""
Effective clock for the scheduler.

Runs in real time by default. For testing and demos it can start from a
simulated time of day, pin the date or weekday, and run faster than wall
clock via a speed multiplier. All due-time comparisons go through this
module, so bad simulation input is rejected before the scheduler starts.
"""

import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo

from reminder_dispatcher.config import settings

TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MINUTES_PER_DAY = 24 * 60
MAX_POLL_SECONDS = 10.0
MIN_POLL_SECONDS = 0.1
DAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


class ClockConfigError(ValueError):
    """Invalid simulated time/date/day/speed. Fatal at startup."""


@dataclass(frozen=True, slots=True)
class ClockReading:
    time_of_day: str  # HH:MM
    date: date
    day_of_week: int  # 0=Mon .. 6=Sun

    @property
    def hour(self) -> int:
        return int(self.time_of_day.split(":")[0])


def parse_time_of_day(value: str) -> tuple[int, int]:
    """Parse HH:MM into (hour, minute) or raise ValueError."""
    match = TIME_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time format: {value!r}. Use HH:MM (e.g. 07:30)")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time format: {value!r}. Use HH:MM (e.g. 07:30)")
    return hour, minute


class Clock:
    """Supplies the effective time of day, date and weekday."""

    def __init__(
        self,
        timezone: str | None = None,
        *,
        wall_clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._tz = ZoneInfo(timezone or settings.TIMEZONE)
        self._wall_clock = wall_clock or (lambda: datetime.now(self._tz))
        self._monotonic = monotonic

        self._sim_start_minutes: int | None = None
        self._sim_started_at: float | None = None
        self._sim_date: date | None = None
        self._sim_day: int | None = None
        self._speed = 1.0

    def configure(
        self,
        time: str | None = None,
        date: str | None = None,
        day: int | str | None = None,
        speed: float | str | None = None,
    ) -> None:
        """
        Apply simulation options.

        Raises:
            ClockConfigError: if any option is malformed
        """
        if time:
            try:
                hour, minute = parse_time_of_day(time)
            except ValueError as e:
                raise ClockConfigError(str(e)) from e
            self._sim_start_minutes = hour * 60 + minute
            self._sim_started_at = self._monotonic()

        if date:
            if not DATE_PATTERN.match(date):
                raise ClockConfigError(f"Invalid date: {date!r}. Use YYYY-MM-DD")
            try:
                self._sim_date = datetime.strptime(date, "%Y-%m-%d").date()
            except ValueError as e:
                raise ClockConfigError(f"Invalid date: {date!r}. Use YYYY-MM-DD") from e

        if day is not None and day != "":
            try:
                day_number = int(day)
            except (TypeError, ValueError) as e:
                raise ClockConfigError(f"Invalid day: {day!r}. Use 0-6 (0=Mon ... 6=Sun)") from e
            if not 0 <= day_number <= 6:
                raise ClockConfigError(f"Invalid day: {day!r}. Use 0-6 (0=Mon ... 6=Sun)")
            self._sim_day = day_number

        if speed is not None and speed != "":
            try:
                multiplier = float(speed)
            except (TypeError, ValueError) as e:
                raise ClockConfigError(f"Invalid speed: {speed!r}. Must be >= 1") from e
            if multiplier < 1:
                raise ClockConfigError(f"Invalid speed: {speed!r}. Must be >= 1")
            self._speed = multiplier

        if self._speed > 1 and self._sim_start_minutes is None:
            raise ClockConfigError("Speed multiplier needs a simulated start time (SIM_TIME)")

    @property
    def speed_multiplier(self) -> float:
        return self._speed

    @property
    def is_simulated(self) -> bool:
        return (
            self._sim_start_minutes is not None
            or self._sim_date is not None
            or self._sim_day is not None
        )

    def _current_minutes(self) -> int:
        if self._sim_start_minutes is None:
            wall = self._wall_clock()
            return wall.hour * 60 + wall.minute

        elapsed_real = self._monotonic() - self._sim_started_at
        elapsed_minutes = int(elapsed_real * self._speed // 60)
        return (self._sim_start_minutes + elapsed_minutes) % MINUTES_PER_DAY

    def now(self) -> ClockReading:
        minutes = self._current_minutes()
        today = self._sim_date or self._wall_clock().date()
        weekday = self._sim_day if self._sim_day is not None else today.weekday()
        return ClockReading(
            time_of_day=f"{minutes // 60:02d}:{minutes % 60:02d}",
            date=today,
            day_of_week=weekday,
        )

    def tick_interval_seconds(self) -> float:
        """Poll at least twice per effective minute so no minute is skipped."""
        minute_seconds = 60.0 / self._speed
        return max(MIN_POLL_SECONDS, min(MAX_POLL_SECONDS, minute_seconds / 2))

    def status_label(self) -> str:
        if not self.is_simulated:
            return "PRODUCTION"
        reading = self.now()
        parts = [
            f"time={reading.time_of_day}",
            f"date={reading.date.isoformat()}",
            f"day={DAY_NAMES[reading.day_of_week]}",
        ]
        if self._speed > 1:
            parts.append(f"speed={self._speed:g}x")
        return f"TEST MODE [{', '.join(parts)}]"


def build_clock() -> Clock:
    """Clock configured from settings. Raises ClockConfigError on bad input."""
    clock = Clock(settings.TIMEZONE)
    clock.configure(**settings.get_simulation_options())
    return clock
