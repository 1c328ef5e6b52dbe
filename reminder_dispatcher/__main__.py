"""
Entry point: `python -m reminder_dispatcher [--time HH:MM] [--date YYYY-MM-DD] [--day 0-6] [--speed N] [--port N]`.

The simulation flags override SIM_* settings. They are validated before the
server starts; invalid values exit with status 2.
"""

import argparse
import sys

import uvicorn

from reminder_dispatcher.config import settings
from reminder_dispatcher.scheduling.clock import ClockConfigError, build_clock


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="reminder_dispatcher")
    parser.add_argument("--time", help="simulated start time (HH:MM)")
    parser.add_argument("--date", help="simulated date (YYYY-MM-DD)")
    parser.add_argument("--day", help="simulated weekday (0=Mon ... 6=Sun)")
    parser.add_argument("--speed", help="simulated clock speed multiplier (>= 1)")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    return parser.parse_args(argv)


def apply_simulation_flags(args: argparse.Namespace) -> None:
    if args.time is not None:
        settings.SIM_TIME = args.time
    if args.date is not None:
        settings.SIM_DATE = args.date
    if args.day is not None:
        settings.SIM_DAY = args.day
    if args.speed is not None:
        settings.SIM_SPEED = args.speed


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    apply_simulation_flags(args)

    try:
        clock = build_clock()
    except ClockConfigError as e:
        print(f"Invalid clock configuration: {e}", file=sys.stderr)
        sys.exit(2)
    print(f"Clock: {clock.status_label()}")

    from reminder_dispatcher.main import app

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
