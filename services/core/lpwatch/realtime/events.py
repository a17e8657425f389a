"""Typed session events, update variants and the recent-updates buffer."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Generic, TypeVar, Union

from ..rpc.base import AccountInfo
from ..utils.scheduling import CancelHandle


logger = logging.getLogger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UpdateKind(Enum):
    ACCOUNT_CHANGE = "AccountChange"
    WALLET_CHANGE = "WalletChange"
    TRANSACTION_UPDATE = "TransactionUpdate"


class TransactionStatus(Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class AccountChange:
    """A watched position account changed on-chain."""
    address: str
    account: AccountInfo
    timestamp: datetime = field(default_factory=utcnow)
    kind: UpdateKind = field(default=UpdateKind.ACCOUNT_CHANGE, init=False)


@dataclass(frozen=True)
class WalletChange:
    """The connected wallet's account changed on-chain."""
    address: str
    account: AccountInfo
    timestamp: datetime = field(default_factory=utcnow)
    kind: UpdateKind = field(default=UpdateKind.WALLET_CHANGE, init=False)


@dataclass(frozen=True)
class TransactionUpdate:
    """A pending transaction signature reached a terminal status."""
    signature: str
    status: TransactionStatus
    slot: int
    error: object = None
    timestamp: datetime = field(default_factory=utcnow)
    kind: UpdateKind = field(default=UpdateKind.TRANSACTION_UPDATE, init=False)


UpdateEvent = Union[AccountChange, WalletChange, TransactionUpdate]


@dataclass(frozen=True)
class Disconnected:
    """Payload of the disconnected event."""
    error: BaseException | None
    timestamp: datetime = field(default_factory=utcnow)


class EventChannel(Generic[T]):
    """
    Listener list for one event kind.

    A listener that raises is logged and skipped; the remaining listeners
    still receive the event.
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: list[Callable[[T], None]] = []

    def add_listener(self, listener: Callable[[T], None]) -> CancelHandle:
        self._listeners.append(listener)
        return CancelHandle(lambda: self.remove_listener(listener))

    def remove_listener(self, listener: Callable[[T], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def clear(self) -> None:
        self._listeners.clear()

    def emit(self, event: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Listener for '{self.name}' raised: {e}", exc_info=True)

    def __len__(self) -> int:
        return len(self._listeners)


class SessionEvents:
    """The events a realtime session produces, one typed channel each."""

    def __init__(self) -> None:
        self.connected: EventChannel[None] = EventChannel("connected")
        self.disconnected: EventChannel[Disconnected] = EventChannel("disconnected")
        self.reconnected: EventChannel[None] = EventChannel("reconnected")
        self.reconnection_failed: EventChannel[None] = EventChannel("reconnection-failed")
        self.account_change: EventChannel[AccountChange] = EventChannel("account-change")
        self.wallet_change: EventChannel[WalletChange] = EventChannel("wallet-change")
        self.transaction_update: EventChannel[TransactionUpdate] = EventChannel("transaction-update")

    def channels(self) -> list[EventChannel]:
        return [
            self.connected,
            self.disconnected,
            self.reconnected,
            self.reconnection_failed,
            self.account_change,
            self.wallet_change,
            self.transaction_update,
        ]

    def clear(self) -> None:
        for channel in self.channels():
            channel.clear()


class RecentUpdates:
    """Fixed-capacity buffer of update events, most recent first."""

    def __init__(self, capacity: int = 100):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._items: deque[UpdateEvent] = deque(maxlen=capacity)
        self.last_update_at: datetime | None = None

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def record(self, update: UpdateEvent) -> None:
        self._items.appendleft(update)
        self.last_update_at = update.timestamp

    def items(self, limit: int | None = None) -> list[UpdateEvent]:
        items = list(self._items)
        return items if limit is None else items[:limit]

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)
