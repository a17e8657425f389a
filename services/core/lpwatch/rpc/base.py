"""Base types and protocols for the ledger RPC boundary."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol


@dataclass
class AccountInfo:
    """Account state delivered by an account-change notification."""
    address: str
    lamports: int
    owner: str
    data: Any  # encoded account data as returned by the node
    executable: bool
    rent_epoch: int | None
    slot: int


@dataclass
class SignatureResult:
    """Outcome of a signature-confirmation notification."""
    signature: str
    err: Any  # None on success
    slot: int

    @property
    def succeeded(self) -> bool:
        return self.err is None


AccountCallback = Callable[[AccountInfo], None]
SignatureCallback = Callable[[SignatureResult], None]


class LedgerClient(Protocol):
    """
    Protocol for a ledger node connection.

    Every coroutine may fail with UpstreamError. Listener removal is
    synchronous: delivery stops immediately and unknown ids are ignored.

    ``on_connection_lost`` is set by the owner and called when the
    notification channel drops and its server-side subscriptions are gone.
    """

    on_connection_lost: Callable[[BaseException], None] | None

    async def get_slot(self) -> int:
        """Cheap liveness probe."""
        ...

    async def on_account_change(self, address: str, callback: AccountCallback) -> int:
        ...

    def remove_account_change_listener(self, subscription_id: int) -> None:
        ...

    async def on_signature(self, signature: str, callback: SignatureCallback) -> int:
        ...

    def remove_signature_listener(self, subscription_id: int) -> None:
        ...

    async def close(self) -> None:
        ...
