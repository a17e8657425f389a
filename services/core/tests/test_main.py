"""Tests for application wiring."""

import pytest

from lpwatch.config import Settings
from lpwatch.main import _subscribe_configured_accounts, create_app
from lpwatch.realtime.registry import SubscriptionKind
from lpwatch.realtime.session import RealtimeSession

from conftest import make_address


@pytest.mark.asyncio
async def test_configured_accounts_are_subscribed(ledger, recorded_sleeps):
    wallet, pos_a, pos_b = make_address(1), make_address(2), make_address(3)
    settings = Settings(wallet_address=wallet, position_addresses=f"{pos_a},not-valid,{pos_b}")
    session = RealtimeSession(ledger, settings, sleep=recorded_sleeps)

    await _subscribe_configured_accounts(session, settings)

    assert session.registry.get(wallet).kind is SubscriptionKind.WALLET
    assert pos_a in session.registry
    assert pos_b in session.registry
    assert len(session.registry) == 3
    await session.close()


@pytest.mark.asyncio
async def test_invalid_wallet_does_not_abort_startup(ledger, recorded_sleeps):
    settings = Settings(wallet_address="bad-wallet", position_addresses=make_address(4))
    session = RealtimeSession(ledger, settings, sleep=recorded_sleeps)

    await _subscribe_configured_accounts(session, settings)

    assert len(session.registry) == 1
    await session.close()


@pytest.mark.asyncio
async def test_health_before_startup():
    app = create_app(Settings())
    health = next(route.endpoint for route in app.routes if getattr(route, "path", None) == "/health")

    result = await health()

    assert result["ok"] is True
    assert result["connected"] is False
    assert {route.path for route in app.routes} >= {"/health", "/v1/status", "/v1/updates", "/v1/prices"}
