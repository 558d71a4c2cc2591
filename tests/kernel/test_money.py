"""
Tests for the Money value object and decimal helpers.

Covers:
- Construction and validation
- Currency-checked arithmetic
- Tolerance-based equality
- Banker's rounding at the display boundary
"""

from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from hotel_kernel.domain.values import Money, quantize_amount, to_decimal
from hotel_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    InvalidCurrencyError,
)

amounts = st.decimals(
    min_value=Decimal("-1000000000"),
    max_value=Decimal("1000000000"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
)


class TestConstruction:
    """Tests for building Money values."""

    def test_accepts_strings_ints_and_decimals(self):
        assert Money.of("10.50", "INR").amount == Decimal("10.50")
        assert Money.of(10, "INR").amount == Decimal("10")
        assert Money.of(Decimal("1.2345"), "INR").amount == Decimal("1.2345")

    def test_float_routed_through_str(self):
        assert Money.of(0.1, "USD").amount == Decimal("0.1")

    def test_currency_normalized(self):
        assert Money.of("1", " usd ").currency == "USD"

    def test_unknown_currency_rejected(self):
        with pytest.raises(InvalidCurrencyError):
            Money.of("1", "ABC")

    @pytest.mark.parametrize("bad", ["abc", "NaN", "Infinity", True, None])
    def test_invalid_amounts_rejected(self, bad):
        with pytest.raises(InvalidAmountError):
            Money.of(bad, "INR")

    def test_zero_and_total(self):
        assert Money.zero("INR").is_zero
        items = [Money.of("1.25", "INR"), Money.of("2.75", "INR")]
        assert Money.total(items, "INR") == Money.of("4", "INR")
        assert Money.total([], "INR").is_zero


class TestArithmetic:
    """Tests for currency-checked arithmetic."""

    def test_add_and_subtract(self):
        a = Money.of("100", "INR")
        b = Money.of("30.5", "INR")
        assert (a + b).amount == Decimal("130.5")
        assert (a - b).amount == Decimal("69.5")

    def test_mixed_currencies_rejected(self):
        with pytest.raises(CurrencyMismatchError):
            Money.of("1", "INR") + Money.of("1", "USD")

    def test_division_rounds_to_six_places(self):
        assert Money.of("10", "INR").div(3).amount == Decimal("3.333333")

    def test_division_by_zero_rejected(self):
        with pytest.raises(InvalidAmountError):
            Money.of("10", "INR").div(0)

    def test_non_negative_clamps(self):
        assert Money.of("-5", "INR").non_negative().is_zero
        assert Money.of("5", "INR").non_negative().amount == Decimal("5")

    @given(a=amounts, b=amounts)
    def test_add_then_subtract_is_identity(self, a, b):
        x = Money.of(a, "INR")
        y = Money.of(b, "INR")
        assert (x + y) - y == x

    @given(a=amounts)
    def test_negation_sums_to_zero(self, a):
        x = Money.of(a, "INR")
        assert (x + (-x)).is_zero


class TestEqualityAndRounding:
    """Tests for tolerance equality and banker's rounding."""

    def test_equal_within_tolerance(self):
        assert Money.of("1.00001", "INR") == Money.of("1", "INR")
        assert Money.of("1.001", "INR") != Money.of("1", "INR")

    def test_different_currencies_not_equal(self):
        assert Money.of("1", "INR") != Money.of("1", "USD")

    def test_unhashable(self):
        a = Money.of("0.00499", "INR")
        b = Money.of("0.00501", "INR")
        assert a == b
        with pytest.raises(TypeError):
            {a, b}

    def test_round_is_bankers(self):
        assert Money.of("2.345", "INR").round().amount == Decimal("2.34")
        assert Money.of("2.355", "INR").round().amount == Decimal("2.36")

    def test_quantized_keeps_four_places(self):
        assert Money.of("1.23456", "INR").quantized().amount == Decimal("1.2346")

    def test_quantize_amount_helper(self):
        assert quantize_amount(Decimal("0.00005")) == Decimal("0.0000")
        assert quantize_amount(Decimal("0.00015")) == Decimal("0.0002")

    def test_to_decimal_rejects_bool(self):
        with pytest.raises(InvalidAmountError):
            to_decimal(False)

    @given(a=amounts)
    def test_dict_form_round_trips(self, a):
        money = Money.of(a, "USD")
        assert Money.from_dict(money.to_dict()).amount == money.amount
