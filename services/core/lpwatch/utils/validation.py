"""Boundary validation for ledger addresses, signatures and prices."""

from __future__ import annotations

import math
import re

import base58

from ..errors import InvalidAddressError, InvalidPriceError


BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")

ADDRESS_BYTES = 32
SIGNATURE_BYTES = 64


def _decode_base58(value: str) -> bytes | None:
    if not value or not BASE58_RE.match(value):
        return None
    try:
        return base58.b58decode(value)
    except ValueError:
        return None


def is_valid_address(address: object) -> bool:
    """Check that address is a base58 string decoding to a 32-byte public key."""
    if not isinstance(address, str):
        return False
    if len(address) < 32 or len(address) > 44:
        return False
    decoded = _decode_base58(address)
    return decoded is not None and len(decoded) == ADDRESS_BYTES


def validate_address(address: object) -> str:
    """Return address unchanged, or raise InvalidAddressError."""
    if not is_valid_address(address):
        raise InvalidAddressError(f"Invalid ledger address: {address!r}")
    return address  # type: ignore[return-value]


def validate_signature(signature: object) -> str:
    """Return a transaction signature unchanged, or raise InvalidAddressError."""
    if isinstance(signature, str) and 64 <= len(signature) <= 88:
        decoded = _decode_base58(signature)
        if decoded is not None and len(decoded) == SIGNATURE_BYTES:
            return signature
    raise InvalidAddressError(f"Invalid transaction signature: {signature!r}")


def validate_price(price: object) -> float:
    """
    Coerce and check a price value.

    Accepts ints, floats and numeric strings (price APIs often quote strings).
    Booleans are rejected even though they are ints.
    """
    if isinstance(price, bool):
        raise InvalidPriceError(f"Price must be a number, got {price!r}")
    if isinstance(price, str):
        try:
            price = float(price)
        except ValueError:
            raise InvalidPriceError(f"Price must be a number, got {price!r}") from None
    if not isinstance(price, (int, float)):
        raise InvalidPriceError(f"Price must be a number, got {type(price).__name__}")
    value = float(price)
    if not math.isfinite(value):
        raise InvalidPriceError("Price must be finite")
    if value < 0:
        raise InvalidPriceError("Price cannot be negative")
    return value
