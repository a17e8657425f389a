"""Periodic liveness probing with edge-triggered connect/disconnect events."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from ..utils.scheduling import PeriodicTask
from ..utils.timeouts import with_timeout
from .events import Disconnected, SessionEvents
from .state import ConnectionPhase, ConnectionState


logger = logging.getLogger(__name__)


class ConnectionMonitor:
    """
    Probes the ledger connection on a fixed interval.

    Transitions:
        Unknown/Disconnected + probe ok  -> Connected, emit ``connected``
        Connected + probe failure        -> Disconnected, emit ``disconnected``
                                            and hand off to ``on_disconnect``
        Unknown + probe failure          -> Disconnected (nothing to restore yet)

    Repeated results in the same phase emit nothing. While ``suspended()``
    returns True (a reconnection episode owns the state) successful probes
    change nothing.
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[object]],
        state: ConnectionState,
        events: SessionEvents,
        on_disconnect: Callable[[BaseException], None] | None = None,
        interval_ms: int = 5000,
        timeout_s: float = 15.0,
        suspended: Callable[[], bool] | None = None,
    ):
        self.probe = probe
        self.state = state
        self.events = events
        self.on_disconnect = on_disconnect
        self.interval_ms = interval_ms
        self.timeout_s = timeout_s
        self.suspended = suspended
        self._task = PeriodicTask(self.check, interval_ms / 1000.0, name="connection-monitor")

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> None:
        logger.info(f"Connection monitor started (interval {self.interval_ms}ms)")
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    async def check(self) -> bool:
        """Run one probe and apply the resulting transition. Returns probe success."""
        try:
            await with_timeout(self.probe(), self.timeout_s, "liveness probe")
        except Exception as e:
            self._on_failure(e)
            return False
        self._on_success()
        return True

    def report_failure(self, error: BaseException) -> None:
        """Apply a failure observed outside the probe, such as a dropped socket."""
        self._on_failure(error)

    def _on_success(self) -> None:
        if self.state.phase is ConnectionPhase.CONNECTED:
            return
        if self.suspended is not None and self.suspended():
            return
        self.state.phase = ConnectionPhase.CONNECTED
        self.state.reconnect_attempts = 0
        logger.info("Ledger connection is up.")
        self.events.connected.emit(None)

    def _on_failure(self, error: BaseException) -> None:
        phase = self.state.phase
        if phase is ConnectionPhase.DISCONNECTED:
            return
        self.state.phase = ConnectionPhase.DISCONNECTED
        if phase is ConnectionPhase.UNKNOWN:
            logger.warning(f"Initial liveness probe failed: {error}")
            return
        logger.warning(f"Ledger connection lost: {error}")
        self.events.disconnected.emit(Disconnected(error=error))
        if self.on_disconnect is not None:
            self.on_disconnect(error)
