"""Timer and cancellation primitives built on asyncio tasks."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable


logger = logging.getLogger(__name__)


class CancelHandle:
    """
    Idempotent cancellation handle.

    Wraps a release function and runs it at most once, no matter how many
    times the handle is invoked.
    """

    def __init__(self, release: Callable[[], None]):
        self._release = release
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __call__(self) -> None:
        self.cancel()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._release()


class PeriodicTask:
    """
    Runs an async callback every ``interval_s`` seconds on the running loop.

    The first tick fires one interval after ``start()``. Errors raised by the
    callback are logged and the schedule keeps going.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], interval_s: float, name: str = "periodic"):
        if interval_s <= 0:
            raise ValueError("interval must be positive")
        self.callback = callback
        self.interval_s = interval_s
        self.name = name
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)

    def cancel(self) -> None:
        """Stop the schedule. Safe to call more than once."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def stop(self) -> None:
        """Cancel and wait until the underlying task has finished."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                await self.callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in periodic task '{self.name}': {e}", exc_info=True)
