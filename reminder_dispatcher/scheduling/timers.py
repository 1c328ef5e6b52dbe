"""
One-shot timer abstraction used by the escalation engine.

`schedule(delay, callback)` returns a handle whose `cancel()` prevents the
callback from starting. A callback that has already started is not
interrupted; the engine's fire handler re-checks its own state instead.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol

from reminder_dispatcher.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimerScheduler(Protocol):
    def schedule(self, delay_seconds: float, callback: TimerCallback) -> TimerHandle: ...


class _AsyncioTimerHandle:
    def __init__(self, handle: asyncio.TimerHandle):
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()


class AsyncioTimerScheduler:
    """Timers on the running event loop (loop.call_later + a task per fire)."""

    def __init__(self):
        self._running: set[asyncio.Task] = set()

    def schedule(self, delay_seconds: float, callback: TimerCallback) -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle = loop.call_later(max(0.0, delay_seconds), self._spawn, callback)
        return _AsyncioTimerHandle(handle)

    def _spawn(self, callback: TimerCallback) -> None:
        task = asyncio.get_running_loop().create_task(callback())
        # Keep a strong reference until the task finishes
        self._running.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Timer callback failed", error=str(error), error_type=type(error).__name__
            )

    async def drain(self) -> None:
        """Wait for callbacks that are already running (used on shutdown)."""
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
