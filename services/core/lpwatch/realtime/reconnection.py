"""Exponential-backoff restoration of subscriptions after a disconnect."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from ..errors import UpstreamError
from ..utils.timeouts import with_timeout
from .events import SessionEvents
from .registry import Subscription, SubscriptionRegistry
from .state import ConnectionPhase, ConnectionState


logger = logging.getLogger(__name__)


class ReconnectionController:
    """
    Runs one reconnection episode per disconnect.

    Each cycle waits ``base_delay_ms * 2**(attempt-1)`` (capped at
    ``max_delay_ms``), tears down every registered subscription, probes the
    connection and re-establishes the torn-down entries by kind. The episode
    ends with ``reconnected`` once a cycle restores everything, or with
    ``reconnection-failed`` after ``max_attempts`` failed cycles.

    What gets restored is whatever the registry holds at teardown time, so
    subscriptions added or removed during the episode are honoured. Entries
    that fail to restore stay in the registry as dormant and are retried on
    the next cycle.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        restore: Callable[[Subscription], Awaitable[None]],
        state: ConnectionState,
        events: SessionEvents,
        probe: Callable[[], Awaitable[object]] | None = None,
        max_attempts: int = 5,
        base_delay_ms: int = 1000,
        max_delay_ms: int | None = 30000,
        timeout_s: float = 15.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.restore = restore
        self.state = state
        self.events = events
        self.probe = probe
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.timeout_s = timeout_s
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._in_flight: list[Subscription] = []

    @property
    def in_progress(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> list[Subscription]:
        """Entries torn down by the running cycle, restored or not."""
        return list(self._in_flight)

    def backoff_ms(self, attempt: int) -> int:
        delay = self.base_delay_ms * 2 ** (attempt - 1)
        if self.max_delay_ms is not None:
            delay = min(delay, self.max_delay_ms)
        return delay

    def handle_disconnect(self, error: BaseException | None = None) -> None:
        """Start an episode unless one is already running."""
        if self.in_progress:
            logger.debug("Reconnection already in progress; ignoring disconnect")
            return
        self._task = asyncio.create_task(self.run(), name="reconnection")

    async def wait(self) -> bool | None:
        """Wait for the current episode. Returns its outcome, or None if idle."""
        if self._task is None:
            return None
        return await self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def run(self) -> bool:
        """Run one episode. Returns True when reconnected, False when exhausted."""
        attempts = 0
        while True:
            attempts += 1
            if attempts > self.max_attempts:
                logger.error(
                    f"Reconnection failed after {self.max_attempts} attempts; live updates unavailable"
                )
                self.events.reconnection_failed.emit(None)
                return False

            self.state.reconnect_attempts = attempts
            delay = self.backoff_ms(attempts)
            logger.info(f"Reconnecting in {delay}ms (attempt {attempts}/{self.max_attempts})...")
            await self._sleep(delay / 1000.0)

            try:
                await self._cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Reconnection attempt {attempts} failed: {e}")
                continue

            self.state.phase = ConnectionPhase.CONNECTED
            self.state.reconnect_attempts = 0
            logger.info("Reconnected; all subscriptions restored.")
            self.events.reconnected.emit(None)
            return True

    async def _cycle(self) -> None:
        snapshot = self.registry.snapshot()
        self.registry.clear()
        self._in_flight = snapshot
        pending = list(snapshot)
        failures = 0
        try:
            if self.probe is not None:
                await with_timeout(self.probe(), self.timeout_s, "liveness probe")

            while pending:
                entry = pending[0]
                try:
                    await with_timeout(self.restore(entry), self.timeout_s, f"resubscribe {entry.key}")
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    failures += 1
                    logger.warning(f"Could not restore {entry.kind.value} subscription {entry.key}: {e}")
                    self.registry.add_dormant(entry)
                pending.pop(0)
        finally:
            self._in_flight = []
            # Probe failure or cancellation: whatever was not processed waits for the next cycle
            for entry in pending:
                self.registry.add_dormant(entry)

        if failures:
            raise UpstreamError(f"{failures} of {len(snapshot)} subscriptions could not be restored")
