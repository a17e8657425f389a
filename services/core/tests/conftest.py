"""Shared fakes for ledger and price-source tests."""

import asyncio
import itertools

import base58
import pytest

from lpwatch.config import Settings
from lpwatch.errors import UpstreamError
from lpwatch.pricing.types import PriceSourceKind, Quote
from lpwatch.rpc.base import AccountInfo, SignatureResult


def make_address(seed: int) -> str:
    """Deterministic valid ledger address (32 bytes, base58)."""
    return base58.b58encode(bytes([seed % 256]) * 32).decode()


def make_signature(seed: int) -> str:
    """Deterministic valid transaction signature (64 bytes, base58)."""
    return base58.b58encode(bytes([(seed + i) % 256 for i in range(64)])).decode()


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeLedgerClient:
    """In-memory ledger node with a switchable health flag."""

    def __init__(self):
        self.healthy = True
        self.fail_subscribe = False
        self.slot = 100
        self._ids = itertools.count(1)
        self.account_listeners = {}
        self.signature_listeners = {}
        self.subscribe_calls = []
        self.signature_calls = []
        self.removed_account_ids = []
        self.removed_signature_ids = []
        self.probe_calls = 0
        self.on_connection_lost = None

    async def get_slot(self) -> int:
        self.probe_calls += 1
        if not self.healthy:
            raise UpstreamError("node unreachable")
        self.slot += 1
        return self.slot

    async def on_account_change(self, address, callback) -> int:
        self.subscribe_calls.append(address)
        if not self.healthy or self.fail_subscribe:
            raise UpstreamError("accountSubscribe failed")
        subscription_id = next(self._ids)
        self.account_listeners[subscription_id] = (address, callback)
        return subscription_id

    def remove_account_change_listener(self, subscription_id: int) -> None:
        self.removed_account_ids.append(subscription_id)
        self.account_listeners.pop(subscription_id, None)

    async def on_signature(self, signature, callback) -> int:
        self.signature_calls.append(signature)
        if not self.healthy or self.fail_subscribe:
            raise UpstreamError("signatureSubscribe failed")
        subscription_id = next(self._ids)
        self.signature_listeners[subscription_id] = (signature, callback)
        return subscription_id

    def remove_signature_listener(self, subscription_id: int) -> None:
        self.removed_signature_ids.append(subscription_id)
        self.signature_listeners.pop(subscription_id, None)

    async def close(self) -> None:
        pass

    def push_account(self, address: str, lamports: int = 5_000, slot: int = 1) -> int:
        """Deliver an account notification; returns how many listeners fired."""
        fired = 0
        for _, (addr, callback) in list(self.account_listeners.items()):
            if addr == address:
                callback(AccountInfo(
                    address=address,
                    lamports=lamports,
                    owner="11111111111111111111111111111111",
                    data=["", "base64"],
                    executable=False,
                    rent_epoch=0,
                    slot=slot,
                ))
                fired += 1
        return fired

    def push_signature(self, signature: str, err=None, slot: int = 1) -> None:
        for subscription_id, (sig, callback) in list(self.signature_listeners.items()):
            if sig == signature:
                del self.signature_listeners[subscription_id]
                callback(SignatureResult(signature=signature, err=err, slot=slot))

    def lose_socket(self) -> None:
        """Simulate the notification socket dropping while HTTP checks keep passing."""
        self.account_listeners.clear()
        self.signature_listeners.clear()
        if self.on_connection_lost is not None:
            self.on_connection_lost(UpstreamError("pubsub connection closed"))

    def drop_connection(self) -> None:
        """Simulate the node going away: probes fail and subscriptions are lost."""
        self.healthy = False
        self.account_listeners.clear()
        self.signature_listeners.clear()


class FakePriceSource:
    """Scriptable price source recording every batch it is asked for."""

    def __init__(self, name, kind, prices=None, error=None, delay=0.0, supported=None):
        self.name = name
        self.kind = kind
        self.prices = dict(prices or {})
        self.error = error
        self.delay = delay
        self.supported = supported
        self.calls = []

    def supports(self, asset_id: str) -> bool:
        return self.supported is None or asset_id in self.supported

    async def fetch(self, asset_ids):
        self.calls.append(list(asset_ids))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {a: Quote(price=self.prices[a]) for a in asset_ids if a in self.prices}


def oracle_source(**kwargs) -> FakePriceSource:
    return FakePriceSource("oracle", PriceSourceKind.PRIMARY_ORACLE, **kwargs)


def aggregator_source(**kwargs) -> FakePriceSource:
    return FakePriceSource("aggregator", PriceSourceKind.AGGREGATOR_API, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    return FakeLedgerClient()


@pytest.fixture
def settings():
    return Settings(
        probe_interval_ms=5000,
        max_reconnect_attempts=5,
        reconnect_base_delay_ms=1000,
        reconnect_max_delay_ms=30000,
        upstream_timeout_ms=2000,
        update_buffer_size=10,
    )


@pytest.fixture
def recorded_sleeps():
    """Replacement for asyncio.sleep that records requested delays."""
    delays = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)
        await asyncio.sleep(0)

    fake_sleep.delays = delays
    return fake_sleep
