"""Tests for boundary validation of addresses, signatures and prices."""

import math

import pytest

from lpwatch.errors import InvalidAddressError, InvalidInputError, InvalidPriceError
from lpwatch.utils.validation import (
    is_valid_address,
    validate_address,
    validate_price,
    validate_signature,
)

from conftest import make_address, make_signature


SYSTEM_PROGRAM = "11111111111111111111111111111111"
WSOL_MINT = "So11111111111111111111111111111111111111112"


class TestAddresses:

    @pytest.mark.parametrize("address", [SYSTEM_PROGRAM, WSOL_MINT, make_address(1), make_address(200)])
    def test_valid(self, address):
        assert is_valid_address(address)
        assert validate_address(address) == address

    @pytest.mark.parametrize("address", [
        "",
        "short",
        "0OIl" * 10,  # characters outside the base58 alphabet
        WSOL_MINT + "zzz",
        "1" * 31,
        None,
        12345,
    ])
    def test_invalid(self, address):
        assert not is_valid_address(address)
        with pytest.raises(InvalidAddressError):
            validate_address(address)

    def test_invalid_address_is_a_value_error(self):
        with pytest.raises(ValueError):
            validate_address("nope")
        assert issubclass(InvalidAddressError, InvalidInputError)


class TestSignatures:

    def test_valid(self):
        signature = make_signature(1)
        assert validate_signature(signature) == signature

    @pytest.mark.parametrize("signature", ["", WSOL_MINT, "x" * 90, None])
    def test_invalid(self, signature):
        with pytest.raises(InvalidAddressError):
            validate_signature(signature)


class TestPrices:

    @pytest.mark.parametrize("value, expected", [
        (0, 0.0),
        (150, 150.0),
        (0.00002, 0.00002),
        ("1.0001", 1.0001),
    ])
    def test_accepts(self, value, expected):
        assert validate_price(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", [-0.01, math.inf, -math.inf, math.nan, "1.2.3", False, None, [1]])
    def test_rejects(self, value):
        with pytest.raises(InvalidPriceError):
            validate_price(value)
