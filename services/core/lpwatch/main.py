from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import aiohttp
import uvicorn
from fastapi import FastAPI

from .api.status import router as status_router
from .config import Settings, get_settings
from .pricing.aggregator import PriceAggregator
from .pricing.cache import PriceCache
from .pricing.rate_limiter import RateLimiter
from .pricing.sources import build_sources
from .realtime.session import RealtimeSession
from .rpc.solana import SolanaRpcClient


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


async def _subscribe_configured_accounts(session: RealtimeSession, settings: Settings) -> None:
    """Subscribe the wallet and position accounts named in the settings, if any."""
    if settings.wallet_address:
        try:
            await session.subscribe_to_wallet(settings.wallet_address, lambda update: None)
        except Exception as e:
            logger.warning(f"Could not subscribe to wallet {settings.wallet_address}: {e}")

    positions = settings.get_position_addresses()
    if positions:
        await session.subscribe_to_positions(positions, lambda update: None)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Lifespan context manager for session startup/teardown."""
        http = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=settings.upstream_timeout_seconds)
        )
        client = SolanaRpcClient(
            http_url=settings.rpc_http_url,
            ws_url=settings.get_ws_url(),
            commitment=settings.commitment,
            timeout_s=settings.upstream_timeout_seconds,
            session=http,
        )
        session = RealtimeSession(client, settings)
        aggregator = PriceAggregator(
            build_sources(settings, http),
            cache=PriceCache(settings.price_cache_expiry_ms),
            rate_limiter=RateLimiter(settings.rate_limit_max_calls, settings.rate_limit_window_ms),
            timeout_s=settings.upstream_timeout_seconds,
            poll_interval_ms=settings.price_poll_interval_ms,
            balance_expiry_ms=settings.balance_price_expiry_ms,
        )
        app.state.session = session
        app.state.aggregator = aggregator

        await session.start()
        await _subscribe_configured_accounts(session, settings)

        yield

        # Shutdown: release every subscription, timer and socket
        await session.close()
        await aggregator.close()
        await client.close()
        await http.close()
        app.state.session = None
        app.state.aggregator = None

    app = FastAPI(
        title="LP Watch Core API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    @app.get("/health")
    async def health() -> dict[str, Any]:
        session = getattr(app.state, "session", None)
        return {
            "ok": True,
            "ts": int(time.time()),
            "connected": bool(session and session.state.is_connected),
        }

    app.include_router(status_router)
    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("lpwatch.main:app", host=settings.host, port=settings.port)
