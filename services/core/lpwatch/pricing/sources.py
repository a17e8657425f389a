"""Upstream HTTP price sources (Pyth Hermes oracle, Jupiter price API)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import aiohttp

from ..config import Settings
from ..errors import InvalidPriceError, UpstreamError
from ..utils.validation import validate_price
from .types import PriceSourceKind, Quote


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    pyth_feed_id: str  # hex, no 0x prefix


# Well-known mints and their Pyth price feed ids
KNOWN_TOKENS: dict[str, TokenInfo] = {
    "So11111111111111111111111111111111111111112": TokenInfo(
        "SOL", "ef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d"
    ),
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": TokenInfo(
        "USDC", "eaa020c61cc479712813461ce153894a96a6c00b21ed0cfc2798d1f9a9e9c94a"
    ),
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": TokenInfo(
        "USDT", "2b89b9dc8fdf9f34709a5b106b472f0f39bb6ca9ce04b0fd7f2e971688e2e53b"
    ),
    "9n4nbM75f5Ui33ZbPYXn59EwSgE8CGsHtAeTH5YFeJ9E": TokenInfo(
        "WBTC", "e62df6c8b4c85fe1a67db44dc12de5db330f7ac66b72dc658afedf0f4a415b43"
    ),
    "2FPyTwcZLUg1MDrwsyoP4D6s1tM7hAkHYRjkNb5w6Pxk": TokenInfo(
        "WETH", "ff61491a931112ddf1bd8147cd1b641375f79f5825126d665480874634fd0ace"
    ),
}


def symbol_for(asset_id: str) -> str:
    info = KNOWN_TOKENS.get(asset_id)
    return info.symbol if info else "UNKNOWN"


class PriceSource(Protocol):
    """Protocol for batch price endpoints."""

    name: str
    kind: PriceSourceKind

    def supports(self, asset_id: str) -> bool:
        ...

    async def fetch(self, asset_ids: list[str]) -> dict[str, Quote]:
        """
        Fetch quotes for a batch of assets in a single upstream call.

        Returns only the assets the source could price. Raises UpstreamError
        when the call itself fails.
        """
        ...


async def _get_json(session: aiohttp.ClientSession, url: str, params) -> dict:
    try:
        async with session.get(url, params=params) as response:
            if response.status != 200:
                text = await response.text()
                raise UpstreamError(f"HTTP {response.status} from {url}: {text[:200]}")
            data = await response.json(content_type=None)
    except aiohttp.ClientError as e:
        raise UpstreamError(f"Network error fetching {url}: {e}") from e
    except ValueError as e:
        raise UpstreamError(f"Malformed JSON from {url}: {e}") from e
    if not isinstance(data, dict):
        raise UpstreamError(f"Unexpected payload type from {url}: {type(data).__name__}")
    return data


class PythHermesSource:
    """Primary oracle: Pyth Hermes latest price updates."""

    name = "pyth"
    kind = PriceSourceKind.PRIMARY_ORACLE

    def __init__(self, session: aiohttp.ClientSession, base_url: str = "https://hermes.pyth.network"):
        self.session = session
        self.base_url = base_url.rstrip("/")

    def supports(self, asset_id: str) -> bool:
        return asset_id in KNOWN_TOKENS

    async def fetch(self, asset_ids: list[str]) -> dict[str, Quote]:
        feed_to_mint = {
            KNOWN_TOKENS[mint].pyth_feed_id: mint
            for mint in asset_ids
            if mint in KNOWN_TOKENS
        }
        if not feed_to_mint:
            return {}

        params = [("ids[]", feed_id) for feed_id in feed_to_mint]
        params.append(("parsed", "true"))
        data = await _get_json(self.session, f"{self.base_url}/v2/updates/price/latest", params)

        quotes: dict[str, Quote] = {}
        for item in data.get("parsed") or []:
            try:
                feed_id = str(item["id"]).lower().removeprefix("0x")
                mint = feed_to_mint.get(feed_id)
                if mint is None:
                    continue
                raw = item["price"]
                expo = int(raw["expo"])
                price = validate_price(int(raw["price"]) * 10 ** expo)
                conf = int(raw.get("conf", 0)) * 10 ** expo
                quotes[mint] = Quote(price=price, confidence=float(conf))
            except (KeyError, TypeError, ValueError) as e:
                # InvalidPriceError is a ValueError
                logger.warning(f"Skipping malformed Pyth entry: {e}")
        return quotes


class JupiterPriceSource:
    """General aggregator API: Jupiter price v2."""

    name = "jupiter"
    kind = PriceSourceKind.AGGREGATOR_API

    def __init__(self, session: aiohttp.ClientSession, url: str = "https://lite-api.jup.ag/price/v2"):
        self.session = session
        self.url = url

    def supports(self, asset_id: str) -> bool:
        return True

    async def fetch(self, asset_ids: list[str]) -> dict[str, Quote]:
        if not asset_ids:
            return {}
        data = await _get_json(self.session, self.url, {"ids": ",".join(asset_ids)})
        payload = data.get("data") or {}
        if not isinstance(payload, dict):
            raise UpstreamError("Unexpected Jupiter payload: 'data' is not an object")

        quotes: dict[str, Quote] = {}
        for mint in asset_ids:
            item = payload.get(mint)
            if not item:
                continue
            try:
                price = validate_price(item["price"])
            except (KeyError, TypeError, InvalidPriceError) as e:
                logger.warning(f"Skipping Jupiter price for {mint}: {e}")
                continue
            quotes[mint] = Quote(price=price, confidence=1.0)
        return quotes


def build_sources(settings: Settings, session: aiohttp.ClientSession) -> list[PriceSource]:
    """Construct configured sources in priority order."""
    sources: list[PriceSource] = []
    for name in settings.get_price_sources():
        if name == "pyth":
            sources.append(PythHermesSource(session, settings.pyth_hermes_url))
        elif name == "jupiter":
            sources.append(JupiterPriceSource(session, settings.jupiter_price_url))
        else:
            logger.error(f"Unknown price source '{name}'. Skipping.")
    return sources


