"""Shared connection state for one realtime session."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ConnectionPhase(Enum):
    UNKNOWN = "Unknown"
    CONNECTED = "Connected"
    DISCONNECTED = "Disconnected"


@dataclass
class ConnectionState:
    """
    Mutated only by the connection monitor and the reconnection controller.

    ``reconnect_attempts`` is reset to 0 on every successful reconnect.
    """
    phase: ConnectionPhase = ConnectionPhase.UNKNOWN
    reconnect_attempts: int = 0
    last_update_at: datetime | None = None

    @property
    def is_connected(self) -> bool:
        return self.phase is ConnectionPhase.CONNECTED
