"""Multi-source price aggregation with caching, rate limiting and polling subscriptions."""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Iterable, Union

from ..errors import InvalidInputError, UpstreamError
from ..utils.scheduling import CancelHandle, PeriodicTask
from ..utils.timeouts import with_timeout
from .cache import PriceCache
from .rate_limiter import RateLimiter
from .sources import PriceSource, symbol_for
from .types import PriceEntry, Quote


logger = logging.getLogger(__name__)

PriceCallback = Callable[[PriceEntry], Union[None, Awaitable[None]]]


class _Subscriber:
    """One registered callback; identity distinguishes duplicate callbacks."""

    __slots__ = ("callback",)

    def __init__(self, callback: PriceCallback):
        self.callback = callback


def _validate_asset_id(asset_id: Any) -> str:
    if not isinstance(asset_id, str) or not asset_id.strip():
        raise InvalidInputError(f"Invalid asset id: {asset_id!r}")
    return asset_id


class PriceAggregator:
    """
    Serves prices from a shared cache, falling back across sources.

    Sources are tried in the order given (primary oracle first). A failing
    source degrades to the next one, then to a stale cached value within
    twice the normal expiry, then to ``None``. Upstream errors never
    propagate to callers or subscribers.
    """

    def __init__(
        self,
        sources: list[PriceSource],
        cache: PriceCache | None = None,
        rate_limiter: RateLimiter | None = None,
        timeout_s: float = 15.0,
        poll_interval_ms: int = 30000,
        balance_expiry_ms: int = 300000,
    ):
        """
        Initialize aggregator.

        Args:
            sources: Price sources in priority order
            cache: Shared price cache (default: 30s expiry)
            rate_limiter: Budget for upstream calls (default: 100 calls / 60s)
            timeout_s: Timeout applied to each upstream fetch
            poll_interval_ms: Default polling interval for subscriptions
            balance_expiry_ms: Freshness tolerance for balance enrichment reads
        """
        self.sources = list(sources)
        self.cache = cache or PriceCache()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.timeout_s = timeout_s
        self.poll_interval_ms = poll_interval_ms
        self.balance_expiry_ms = balance_expiry_ms

        self._subscribers: dict[str, list[_Subscriber]] = defaultdict(list)
        self._timers: dict[str, PeriodicTask] = {}

        logger.info(f"PriceAggregator initialized. Sources: {[s.name for s in self.sources]}")

    @property
    def stale_tolerance_ms(self) -> float:
        return self.cache.expiry_ms * 2

    async def get_price(self, asset_id: str) -> PriceEntry | None:
        """
        Resolve a single price.

        Returns None when no source (nor the stale cache) can provide one;
        callers must not read None as a zero price.
        """
        asset_id = _validate_asset_id(asset_id)

        cached = self.cache.get(asset_id)
        if cached is not None:
            return cached

        for source in self.sources:
            if not source.supports(asset_id):
                continue
            quotes = await self._fetch_from(source, [asset_id])
            quote = quotes.get(asset_id)
            if quote is not None:
                entry = self._store(asset_id, quote, source)
                if entry is not None:
                    return entry

        stale = self.cache.get_stale_if_within(asset_id, self.stale_tolerance_ms)
        if stale is not None:
            logger.warning(f"All price sources failed for {asset_id}; serving stale {stale.source.value} price")
        return stale

    async def get_prices(self, asset_ids: Iterable[str], max_age_ms: float | None = None) -> dict[str, PriceEntry]:
        """
        Resolve many prices with one batched upstream call per source.

        Args:
            asset_ids: Assets to price
            max_age_ms: Freshness window for cache hits (default: cache expiry)

        Returns:
            Map of the assets that could be resolved. Missing keys mean
            "unknown", never zero.
        """
        ids = [_validate_asset_id(a) for a in dict.fromkeys(asset_ids)]
        prices: dict[str, PriceEntry] = {}
        remaining: list[str] = []

        for asset_id in ids:
            cached = self.cache.get(asset_id, max_age_ms=max_age_ms)
            if cached is not None:
                prices[asset_id] = cached
            else:
                remaining.append(asset_id)

        for source in self.sources:
            if not remaining:
                break
            batch = [a for a in remaining if source.supports(a)]
            if not batch:
                continue
            quotes = await self._fetch_from(source, batch)
            for asset_id in batch:
                quote = quotes.get(asset_id)
                if quote is None:
                    continue
                entry = self._store(asset_id, quote, source)
                if entry is not None:
                    prices[asset_id] = entry
            remaining = [a for a in remaining if a not in prices]

        if remaining:
            tolerance = 2 * (self.cache.expiry_ms if max_age_ms is None else max_age_ms)
            for asset_id in remaining:
                stale = self.cache.get_stale_if_within(asset_id, tolerance)
                if stale is not None:
                    prices[asset_id] = stale
            unresolved = len(ids) - len(prices)
            if unresolved:
                logger.warning(f"Could not resolve prices for {unresolved} of {len(ids)} assets")

        return prices

    async def get_prices_for_balances(self, asset_ids: Iterable[str]) -> dict[str, PriceEntry]:
        """Balance enrichment read: tolerates prices up to ``balance_expiry_ms`` old."""
        return await self.get_prices(asset_ids, max_age_ms=self.balance_expiry_ms)

    def subscribe(self, asset_id: str, callback: PriceCallback, interval_ms: int | None = None) -> CancelHandle:
        """
        Register a callback for periodic price pushes.

        All subscribers of one asset share a single polling timer, created on
        the first subscription and destroyed with the last. Must be called
        from a running event loop.

        Returns:
            Idempotent handle that removes this subscription
        """
        asset_id = _validate_asset_id(asset_id)
        subscriber = _Subscriber(callback)
        self._subscribers[asset_id].append(subscriber)

        if asset_id not in self._timers:
            interval = interval_ms if interval_ms is not None else self.poll_interval_ms
            timer = PeriodicTask(
                lambda: self._tick(asset_id),
                interval / 1000.0,
                name=f"price-poll:{asset_id}",
            )
            self._timers[asset_id] = timer
            timer.start()

        return CancelHandle(lambda: self._unsubscribe(asset_id, subscriber))

    def get_cache_stats(self) -> dict[str, Any]:
        return {
            "cache_size": len(self.cache),
            "active_subscriptions": sum(len(subs) for subs in self._subscribers.values()),
            "active_timers": len(self._timers),
            "rate_limit_remaining": self.rate_limiter.get_remaining_calls(),
        }

    async def close(self) -> None:
        """Stop all polling timers and drop cached prices."""
        timers = list(self._timers.values())
        self._timers.clear()
        self._subscribers.clear()
        for timer in timers:
            await timer.stop()
        self.cache.clear()
        logger.info("PriceAggregator closed.")

    def _unsubscribe(self, asset_id: str, subscriber: _Subscriber) -> None:
        subs = self._subscribers.get(asset_id)
        if subs is None:
            return
        if subscriber in subs:
            subs.remove(subscriber)
        if not subs:
            del self._subscribers[asset_id]
            timer = self._timers.pop(asset_id, None)
            if timer is not None:
                timer.cancel()

    async def _tick(self, asset_id: str) -> None:
        try:
            entry = await self.get_price(asset_id)
        except Exception as e:
            logger.error(f"Price poll for {asset_id} failed: {e}", exc_info=True)
            return
        if entry is None:
            # Missed tick; subscribers are not notified
            return

        for subscriber in list(self._subscribers.get(asset_id, [])):
            try:
                result = subscriber.callback(entry)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Price subscriber for {asset_id} raised: {e}", exc_info=True)

    async def _fetch_from(self, source: PriceSource, asset_ids: list[str]) -> dict[str, Quote]:
        if not self.rate_limiter.can_make_call():
            logger.warning(f"Rate limit reached; skipping {source.name} for {len(asset_ids)} assets")
            return {}
        try:
            return await with_timeout(
                source.fetch(asset_ids),
                self.timeout_s,
                f"{source.name} price fetch",
            )
        except UpstreamError as e:
            logger.warning(f"Price source {source.name} failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error from price source {source.name}: {e}", exc_info=True)
        return {}

    def _store(self, asset_id: str, quote: Quote, source: PriceSource) -> PriceEntry | None:
        try:
            entry = PriceEntry(
                asset_id=asset_id,
                price=quote.price,
                change_percent_24h=quote.change_percent_24h,
                fetched_at=self.cache.now(),
                source=source.kind,
                symbol=symbol_for(asset_id),
                confidence=quote.confidence,
            )
        except InvalidInputError as e:
            logger.warning(f"Rejected price for {asset_id} from {source.name}: {e}")
            return None
        self.cache.put(asset_id, entry)
        return entry
