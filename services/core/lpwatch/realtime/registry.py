"""Registry of live account and signature subscriptions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from ..utils.scheduling import CancelHandle


logger = logging.getLogger(__name__)


class SubscriptionKind(Enum):
    WALLET = "Wallet"
    POSITION = "Position"
    SIGNATURE = "Signature"


@dataclass
class Subscription:
    """
    One live upstream subscription.

    ``callback`` is what the subscriber asked to be notified with; it is kept
    so the subscription can be re-established after a reconnect. ``token``
    identifies the subscriber's request and survives re-establishment, so the
    handle given to the subscriber keeps working after a reconnect.
    """
    key: str  # address or signature
    kind: SubscriptionKind
    cancel: Callable[[], None]
    callback: Callable[[Any], None] | None = None
    token: object = field(default_factory=object)
    dormant: bool = False  # torn down, waiting to be restored

    @property
    def released(self) -> bool:
        """True once the subscriber has cancelled its handle."""
        return isinstance(self.token, CancelHandle) and self.token.cancelled


def _noop() -> None:
    return None


class SubscriptionRegistry:
    """
    Tracks subscriptions keyed by address or signature.

    Holds at most one entry per key: adding a key that is already present
    cancels the previous entry first. Not thread-safe; owned by a single
    session on one event loop.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Subscription] = {}

    def add(
        self,
        key: str,
        kind: SubscriptionKind,
        cancel: Callable[[], None],
        callback: Callable[[Any], None] | None = None,
        token: object | None = None,
    ) -> Subscription:
        if key in self._entries:
            self.remove(key)
        entry = Subscription(key=key, kind=kind, cancel=cancel, callback=callback)
        if token is not None:
            entry.token = token
        self._entries[key] = entry
        return entry

    def add_dormant(self, entry: Subscription) -> None:
        """Keep a subscription that could not be restored, so it is retried later."""
        if entry.released:
            return
        if entry.key in self._entries:
            # Re-subscribed in the meantime; the newer entry wins
            return
        self._entries[entry.key] = Subscription(
            key=entry.key,
            kind=entry.kind,
            cancel=_noop,
            callback=entry.callback,
            token=entry.token,
            dormant=True,
        )

    def remove(self, key: str) -> bool:
        """Remove an entry, invoking its cancel handle. Returns False for unknown keys."""
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._cancel(entry)
        return True

    def remove_token(self, key: str, token: object) -> bool:
        """Remove the entry for ``key`` only if it still belongs to ``token``."""
        entry = self._entries.get(key)
        if entry is None or entry.token is not token:
            return False
        return self.remove(key)

    def get(self, key: str) -> Subscription | None:
        return self._entries.get(key)

    def snapshot(self) -> list[Subscription]:
        """Entries in registration order."""
        return list(self._entries.values())

    def clear(self) -> None:
        """Cancel and drop every entry."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            self._cancel(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @staticmethod
    def _cancel(entry: Subscription) -> None:
        try:
            entry.cancel()
        except Exception as e:
            logger.warning(f"Cancelling subscription {entry.key} failed: {e}")
