"""Session-scoped realtime subscription service."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable

from ..config import Settings
from ..rpc.base import AccountInfo, LedgerClient, SignatureResult
from ..utils.scheduling import CancelHandle
from ..utils.timeouts import with_timeout
from ..utils.validation import validate_address, validate_signature
from .events import (
    AccountChange,
    RecentUpdates,
    SessionEvents,
    TransactionStatus,
    TransactionUpdate,
    UpdateEvent,
    WalletChange,
)
from .monitor import ConnectionMonitor
from .reconnection import ReconnectionController
from .registry import Subscription, SubscriptionKind, SubscriptionRegistry
from .state import ConnectionState


logger = logging.getLogger(__name__)

UpdateCallback = Callable[[Any], None]


def _released(token: object) -> bool:
    return isinstance(token, CancelHandle) and token.cancelled


class RealtimeSession:
    """
    Live account and transaction subscriptions for one wallet session.

    Created when a wallet connects and closed when it disconnects. Owns the
    connection state, subscription registry, connection monitor and
    reconnection controller; consumers listen on ``events``.
    """

    def __init__(
        self,
        client: LedgerClient,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.settings = settings
        self.timeout_s = settings.upstream_timeout_seconds

        self.state = ConnectionState()
        self.events = SessionEvents()
        self.registry = SubscriptionRegistry()
        self.recent_updates = RecentUpdates(settings.update_buffer_size)

        self.reconnection = ReconnectionController(
            registry=self.registry,
            restore=self._restore,
            state=self.state,
            events=self.events,
            probe=client.get_slot,
            max_attempts=settings.max_reconnect_attempts,
            base_delay_ms=settings.reconnect_base_delay_ms,
            max_delay_ms=settings.reconnect_max_delay_ms,
            timeout_s=self.timeout_s,
            sleep=sleep,
        )
        self.monitor = ConnectionMonitor(
            probe=client.get_slot,
            state=self.state,
            events=self.events,
            on_disconnect=self.reconnection.handle_disconnect,
            interval_ms=settings.probe_interval_ms,
            timeout_s=self.timeout_s,
            suspended=lambda: self.reconnection.in_progress,
        )
        self.live_updates_available = True
        self.events.reconnection_failed.add_listener(self._on_reconnection_failed)
        client.on_connection_lost = self._on_connection_lost
        self._closed = False

    async def start(self) -> None:
        """Probe once immediately, then keep probing on the configured interval."""
        await self.monitor.check()
        self.monitor.start()

    async def close(self) -> None:
        """Tear down every subscription, timer and listener. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        await self.monitor.stop()
        await self.reconnection.stop()
        self.unsubscribe_all()
        self.events.clear()
        logger.info("Realtime session closed.")

    async def subscribe_to_account(
        self,
        address: str,
        callback: UpdateCallback,
        kind: SubscriptionKind = SubscriptionKind.POSITION,
    ) -> CancelHandle:
        """
        Watch one account for on-chain changes.

        Raises:
            InvalidAddressError: address is malformed (nothing is registered)
            UpstreamError: the node rejected or did not answer the subscription
        """
        validate_address(address)
        if kind is SubscriptionKind.SIGNATURE:
            raise ValueError("use subscribe_to_signature for signatures")
        handle = CancelHandle(lambda: self.registry.remove_token(address, handle))
        await self._subscribe_account(address, kind, callback, handle)
        return handle

    async def subscribe_to_wallet(self, address: str, on_update: UpdateCallback) -> CancelHandle:
        return await self.subscribe_to_account(address, on_update, kind=SubscriptionKind.WALLET)

    async def subscribe_to_positions(self, addresses: Iterable[str], on_update: UpdateCallback) -> CancelHandle:
        """
        Watch many position accounts.

        Accounts that fail to subscribe are logged and skipped. The returned
        handle cancels every position that did subscribe.
        """
        handles: list[CancelHandle] = []
        for address in addresses:
            try:
                handles.append(await self.subscribe_to_account(address, on_update))
            except Exception as e:
                logger.warning(f"Failed to subscribe to position {address}: {e}")

        logger.info(f"Subscribed to {len(handles)} position accounts")

        def release() -> None:
            for h in handles:
                h.cancel()

        return CancelHandle(release)

    async def subscribe_to_signature(self, signature: str, on_update: UpdateCallback) -> CancelHandle:
        """Watch a pending transaction until it confirms or fails."""
        validate_signature(signature)
        handle = CancelHandle(lambda: self.registry.remove_token(signature, handle))
        await self._subscribe_signature(signature, on_update, handle)
        return handle

    def unsubscribe_all(self) -> None:
        """Release every subscription, including any a running reconnection has torn down."""
        for entry in self.registry.snapshot() + self.reconnection.in_flight:
            if isinstance(entry.token, CancelHandle):
                entry.token.cancel()
        self.registry.clear()

    def get_connection_status(self) -> dict[str, Any]:
        return {
            "is_connected": self.state.is_connected,
            "phase": self.state.phase.value,
            "subscription_count": len(self.registry),
            "reconnect_attempts": self.state.reconnect_attempts,
            "max_reconnect_attempts": self.reconnection.max_attempts,
            "last_update_at": self.state.last_update_at.isoformat() if self.state.last_update_at else None,
            "live_updates_available": self.live_updates_available,
        }

    async def _subscribe_account(
        self,
        address: str,
        kind: SubscriptionKind,
        callback: UpdateCallback,
        token: object,
        restoring: bool = False,
    ) -> None:
        def on_change(info: AccountInfo) -> None:
            update: AccountChange | WalletChange
            if kind is SubscriptionKind.WALLET:
                update = WalletChange(address=address, account=info)
                self._record(update)
                self.events.wallet_change.emit(update)
            else:
                update = AccountChange(address=address, account=info)
                self._record(update)
                self.events.account_change.emit(update)
            self._notify(callback, update)

        subscription_id = await with_timeout(
            self.client.on_account_change(address, on_change),
            self.timeout_s,
            f"accountSubscribe {address}",
        )
        if _released(token) or (restoring and self._superseded(address, token)):
            # Subscriber went away, or re-subscribed, while we were waiting on the node
            self.client.remove_account_change_listener(subscription_id)
            return
        self.registry.add(
            address,
            kind,
            CancelHandle(lambda: self.client.remove_account_change_listener(subscription_id)),
            callback=callback,
            token=token,
        )

    async def _subscribe_signature(
        self,
        signature: str,
        callback: UpdateCallback,
        token: object,
        restoring: bool = False,
    ) -> None:
        finished = False

        def on_result(result: SignatureResult) -> None:
            nonlocal finished
            finished = True
            update = TransactionUpdate(
                signature=signature,
                status=TransactionStatus.CONFIRMED if result.succeeded else TransactionStatus.FAILED,
                slot=result.slot,
                error=result.err,
            )
            self._record(update)
            self.events.transaction_update.emit(update)
            self._notify(callback, update)
            self.registry.remove_token(signature, token)

        subscription_id = await with_timeout(
            self.client.on_signature(signature, on_result),
            self.timeout_s,
            f"signatureSubscribe {signature}",
        )
        if finished or _released(token) or (restoring and self._superseded(signature, token)):
            self.client.remove_signature_listener(subscription_id)
            return
        self.registry.add(
            signature,
            SubscriptionKind.SIGNATURE,
            CancelHandle(lambda: self.client.remove_signature_listener(subscription_id)),
            callback=callback,
            token=token,
        )

    async def _restore(self, entry: Subscription) -> None:
        token = entry.token
        if _released(token) or self._superseded(entry.key, token):
            return
        if entry.kind is SubscriptionKind.SIGNATURE:
            await self._subscribe_signature(entry.key, entry.callback, token, restoring=True)
        else:
            await self._subscribe_account(entry.key, entry.kind, entry.callback, token, restoring=True)

    def _superseded(self, key: str, token: object) -> bool:
        """True when a newer subscription for ``key`` was registered during reconnection."""
        current = self.registry.get(key)
        return current is not None and current.token is not token

    def _on_connection_lost(self, error: BaseException) -> None:
        if self._closed:
            return
        self.monitor.report_failure(error)

    def _on_reconnection_failed(self, _: None) -> None:
        # Terminal for this session; subscriptions stay registered but dormant
        self.live_updates_available = False

    def _record(self, update: UpdateEvent) -> None:
        self.recent_updates.record(update)
        self.state.last_update_at = update.timestamp

    @staticmethod
    def _notify(callback: UpdateCallback | None, update: UpdateEvent) -> None:
        if callback is None:
            return
        try:
            callback(update)
        except Exception as e:
            logger.error(f"Subscriber callback raised for {update.kind.value}: {e}", exc_info=True)
