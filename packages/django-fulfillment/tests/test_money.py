"""Tests for the Money value object."""
from decimal import Decimal

import pytest

from django_fulfillment.exceptions import CurrencyMismatchError, ValidationError
from django_fulfillment.money import Money


class TestMoney:
    """Test suite for Money."""

    def test_amount_normalized_to_decimal(self):
        assert Money("19.99", "RUB").amount == Decimal("19.99")
        assert Money(19.99, "RUB").amount == Decimal("19.99")
        assert Money(5, "RUB").amount == Decimal("5")

    def test_currency_upper_cased(self):
        assert Money("1", "rub").currency == "RUB"

    def test_invalid_amount_rejected(self):
        with pytest.raises(ValidationError):
            Money("not-a-number", "RUB")

    def test_currency_required(self):
        with pytest.raises(ValidationError):
            Money("1", "")

    def test_multiply_by_quantity(self):
        assert Money("199.00", "RUB") * 3 == Money("597.00", "RUB")
        assert 2 * Money("1.50", "USD") == Money("3.00", "USD")

    def test_multiply_by_float_rejected(self):
        with pytest.raises(TypeError):
            Money("1.00", "RUB") * 1.5

    def test_add_same_currency(self):
        assert Money("1.10", "RUB") + Money("2.20", "RUB") == Money("3.30", "RUB")

    def test_add_mixed_currency_raises(self):
        with pytest.raises(CurrencyMismatchError):
            Money("1", "RUB") + Money("1", "USD")

    def test_currency_mismatch_is_validation_error(self):
        assert issubclass(CurrencyMismatchError, ValidationError)

    def test_subtract(self):
        assert Money("5", "RUB") - Money("2", "RUB") == Money("3", "RUB")
        assert (Money("1", "RUB") - Money("2", "RUB")).is_negative()

    def test_sum(self):
        values = [Money("0.10", "RUB")] * 3
        assert Money.sum(values, "RUB") == Money("0.30", "RUB")

    def test_sum_empty_is_zero(self):
        assert Money.sum([], "RUB") == Money.zero("RUB")

    def test_sum_rejects_other_currency(self):
        with pytest.raises(CurrencyMismatchError):
            Money.sum([Money("1", "USD")], "RUB")

    def test_quantized_uses_bankers_rounding(self):
        assert Money("0.125", "USD").quantized().amount == Decimal("0.12")
        assert Money("0.135", "USD").quantized().amount == Decimal("0.14")
        assert Money("10.5", "JPY").quantized().amount == Decimal("10")

    def test_str(self):
        assert str(Money("199", "RUB")) == "199.00 RUB"
