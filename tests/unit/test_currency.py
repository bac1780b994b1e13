"""
Unit tests for the ISO 4217 currency registry.
"""

from decimal import Decimal

import pytest

from budget_kernel.domain.currency import CurrencyRegistry
from budget_kernel.domain.values import Currency
from budget_kernel.exceptions import InvalidCurrencyError


class TestCurrencyRegistry:
    """Tests for CurrencyRegistry lookups."""

    @pytest.mark.parametrize("code", ["USD", "EUR", "GBP", "KES", "UGX", "KWD"])
    def test_registered_codes_valid(self, code):
        assert CurrencyRegistry.is_valid(code)

    def test_lowercase_valid(self):
        assert CurrencyRegistry.is_valid("usd")

    @pytest.mark.parametrize("code", ["", "US", "XYZ", None, 840])
    def test_invalid_codes(self, code):
        assert not CurrencyRegistry.is_valid(code)

    def test_validate_normalizes(self):
        assert CurrencyRegistry.validate(" eur ") == "EUR"

    def test_validate_raises(self):
        with pytest.raises(InvalidCurrencyError) as exc_info:
            CurrencyRegistry.validate("ABC")
        assert exc_info.value.code == "INVALID_CURRENCY"
        assert exc_info.value.currency == "ABC"

    @pytest.mark.parametrize(
        "code,places",
        [("USD", 2), ("JPY", 0), ("UGX", 0), ("KWD", 3), ("BHD", 3)],
    )
    def test_decimal_places(self, code, places):
        assert CurrencyRegistry.get_decimal_places(code) == places

    def test_quantize_exponent(self):
        assert CurrencyRegistry.get_info("KWD").quantize_exponent == Decimal("0.001")
        assert CurrencyRegistry.get_info("JPY").quantize_exponent == Decimal("1")

    def test_all_codes(self):
        codes = CurrencyRegistry.all_codes()
        assert "USD" in codes
        assert all(len(code) == 3 for code in codes)


class TestCurrencyValue:
    def test_equality_after_normalization(self):
        assert Currency("gbp") == Currency("GBP")

    def test_hashable(self):
        assert len({Currency("USD"), Currency("usd"), Currency("EUR")}) == 2

    def test_decimal_places(self):
        assert Currency("JPY").decimal_places == 0

    def test_unknown_rejected(self):
        with pytest.raises(InvalidCurrencyError):
            Currency("QQQ")
