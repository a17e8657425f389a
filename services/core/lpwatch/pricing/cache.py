"""Time-boxed price memoization with stale-but-usable reads."""

from __future__ import annotations

from typing import Callable

from .rate_limiter import monotonic_ms
from .types import PriceEntry


class PriceCache:
    """
    Stores the latest PriceEntry per asset id.

    There is no eviction beyond expiry filtering on read; the key set is
    bounded by the number of tracked assets. Different call sites can read
    the same store with different tolerances via ``max_age_ms``.
    """

    def __init__(self, expiry_ms: int = 30000, clock: Callable[[], float] = monotonic_ms):
        if expiry_ms <= 0:
            raise ValueError("expiry_ms must be positive")
        self.expiry_ms = expiry_ms
        self._clock = clock
        self._entries: dict[str, PriceEntry] = {}

    def now(self) -> float:
        return self._clock()

    def get(self, key: str, max_age_ms: float | None = None) -> PriceEntry | None:
        """Return the entry only if it is younger than the expiry window."""
        limit = self.expiry_ms if max_age_ms is None else max_age_ms
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at < limit:
            return entry
        return None

    def get_stale_if_within(self, key: str, tolerance_ms: float) -> PriceEntry | None:
        """Degraded read: serve an expired entry if it is within tolerance."""
        return self.get(key, max_age_ms=tolerance_ms)

    def put(self, key: str, entry: PriceEntry) -> None:
        self._entries[key] = entry

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
