from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

Cancel = Callable[[], None]
TimerCallback = Callable[[], Awaitable[Any] | None]


class Clock(Protocol):
    def now(self) -> datetime: ...


class Scheduler(Protocol):
    def after(self, delay: float, fn: TimerCallback) -> Cancel:
        """Run ``fn`` once after ``delay`` seconds; the returned callable cancels it."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class AsyncioScheduler:
    """Timers backed by the running event loop.

    Coroutine callbacks are spawned as tasks; references are held until they
    finish so the loop does not garbage-collect a save in flight.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task] = set()

    def after(self, delay: float, fn: TimerCallback) -> Cancel:
        loop = self._loop or asyncio.get_running_loop()
        handle = loop.call_later(delay, self._fire, fn)
        return handle.cancel

    def _fire(self, fn: TimerCallback) -> None:
        try:
            outcome = fn()
        except Exception:  # noqa: BLE001
            logger.exception("Scheduled callback failed")
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for spawned callbacks, used on shutdown."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
