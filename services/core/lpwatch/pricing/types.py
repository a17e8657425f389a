"""Price feed types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..utils.validation import validate_price


class PriceSourceKind(Enum):
    """Where a price came from, in fallback priority order."""
    PRIMARY_ORACLE = "PrimaryOracle"
    AGGREGATOR_API = "AggregatorAPI"
    FALLBACK = "Fallback"


@dataclass(frozen=True)
class Quote:
    """Raw quote returned by a price source for one asset."""
    price: float
    change_percent_24h: float = 0.0
    confidence: float = 0.0


@dataclass(frozen=True)
class PriceEntry:
    """
    Cached price for a single asset.

    Immutable; a refresh replaces the whole entry. ``fetched_at`` is in
    milliseconds on the owning cache's clock.
    """
    asset_id: str
    price: float
    change_percent_24h: float
    fetched_at: float
    source: PriceSourceKind
    symbol: str = "UNKNOWN"
    confidence: float = 0.0

    def __post_init__(self) -> None:
        # Non-finite or negative prices never make it into the cache
        object.__setattr__(self, "price", validate_price(self.price))

    def to_dict(self) -> dict:
        return {
            "asset_id": self.asset_id,
            "symbol": self.symbol,
            "price": self.price,
            "change_percent_24h": self.change_percent_24h,
            "confidence": self.confidence,
            "fetched_at": self.fetched_at,
            "source": self.source.value,
        }
