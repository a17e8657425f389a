"""Exception types shared across the realtime and pricing components."""

from __future__ import annotations


class LpWatchError(Exception):
    """Base class for all lpwatch errors."""
    pass


class UpstreamError(LpWatchError):
    """Raised when a ledger node or price endpoint call fails (transient)."""
    pass


class UpstreamTimeout(UpstreamError):
    """Raised when an upstream call does not complete within its timeout."""

    def __init__(self, operation: str, timeout_s: float):
        super().__init__(f"{operation} timed out after {timeout_s:.1f}s")
        self.operation = operation
        self.timeout_s = timeout_s


class InvalidInputError(LpWatchError, ValueError):
    """Raised for malformed input rejected at the component boundary."""
    pass


class InvalidAddressError(InvalidInputError):
    """Raised for a malformed ledger address or transaction signature."""
    pass


class InvalidPriceError(InvalidInputError):
    """Raised for a price that is not a finite, non-negative number."""
    pass
