"""
Test suite for currency module

Tests Money arithmetic, rounding and the non-negative, single-currency rules.
All financial math must be exact.
"""

import pytest
from decimal import Decimal, ROUND_DOWN

from loan_engine.currency import Money, Currency, quantize, truncate, sum_money
from loan_engine.errors import InvalidAmount, CurrencyMismatch


class TestCurrency:
    """Test Currency enum functionality"""

    def test_currency_precision(self):
        """Test currency precision values"""
        assert Currency.GBP.precision == 2
        assert Currency.USD.precision == 2
        assert Currency.JPY.precision == 0

    def test_minor_unit(self):
        assert Currency.GBP.minor_unit == Decimal('0.01')
        assert Currency.JPY.minor_unit == Decimal('1')

    def test_from_code_is_case_insensitive(self):
        assert Currency.from_code("gbp") is Currency.GBP
        assert Currency.from_code(" EUR ") is Currency.EUR

    def test_from_code_unknown(self):
        with pytest.raises(InvalidAmount, match="Unsupported currency"):
            Currency.from_code("XYZ")


class TestMoney:
    """Test Money class functionality"""

    def test_default_currency_is_gbp(self):
        assert Money(Decimal('10')).currency == Currency.GBP

    def test_money_rounds_half_up(self):
        """Test amounts are quantized to the minor unit"""
        assert Money(Decimal('1.005')).amount == Decimal('1.01')
        assert Money(Decimal('1.004')).amount == Decimal('1.00')
        assert Money(Decimal('99.5'), Currency.JPY).amount == Decimal('100')

    def test_money_from_string(self):
        assert Money('2250.00').amount == Decimal('2250.00')

    def test_negative_money_rejected(self):
        with pytest.raises(InvalidAmount, match="cannot be negative"):
            Money(Decimal('-0.01'))

    def test_zero(self):
        zero = Money.zero(Currency.USD)
        assert zero.is_zero()
        assert not zero.is_positive()
        assert zero.currency == Currency.USD

    def test_addition(self):
        total = Money(Decimal('100.10')) + Money(Decimal('0.90'))
        assert total == Money(Decimal('101.00'))

    def test_subtraction(self):
        assert Money(Decimal('100')) - Money(Decimal('40')) == Money(Decimal('60'))

    def test_subtraction_below_zero_rejected(self):
        with pytest.raises(InvalidAmount, match="would go negative"):
            Money(Decimal('10')) - Money(Decimal('10.01'))

    def test_currency_mismatch_on_arithmetic(self):
        with pytest.raises(CurrencyMismatch):
            Money(Decimal('1'), Currency.GBP) + Money(Decimal('1'), Currency.USD)
        with pytest.raises(CurrencyMismatch):
            Money(Decimal('1'), Currency.GBP) - Money(Decimal('1'), Currency.EUR)

    def test_currency_mismatch_is_invalid_amount(self):
        """CurrencyMismatch is a kind of InvalidAmount"""
        with pytest.raises(InvalidAmount):
            Money(Decimal('1'), Currency.GBP) > Money(Decimal('1'), Currency.USD)

    def test_adding_non_money_is_type_error(self):
        with pytest.raises(TypeError):
            Money(Decimal('1')) + Decimal('1')

    def test_comparisons(self):
        small = Money(Decimal('5'))
        large = Money(Decimal('10'))
        assert small < large
        assert large > small
        assert small <= Money(Decimal('5.00'))
        assert large >= small

    def test_equality_across_currencies_is_false(self):
        assert Money(Decimal('1'), Currency.GBP) != Money(Decimal('1'), Currency.USD)

    def test_multiply_and_divide(self):
        assert Money(Decimal('10')) * Decimal('0.6') == Money(Decimal('6'))
        assert Money(Decimal('10')) / Decimal('3') == Money(Decimal('3.33'))

    def test_money_is_hashable(self):
        assert len({Money(Decimal('1.0')), Money(Decimal('1.00'))}) == 1

    def test_to_string(self):
        assert Money(Decimal('2250')).to_string() == "GBP 2,250.00"
        assert str(Money(Decimal('1500'), Currency.JPY)) == "JPY 1,500"


class TestHelpers:
    """Test module-level rounding helpers"""

    def test_quantize_default_half_up(self):
        assert quantize(Decimal('2.345'), Currency.GBP) == Decimal('2.35')

    def test_quantize_with_rounding_mode(self):
        assert quantize(Decimal('2.349'), Currency.GBP, rounding=ROUND_DOWN) == Decimal('2.34')

    def test_truncate(self):
        assert truncate(Decimal('1349.999'), Currency.GBP) == Decimal('1349.99')

    def test_sum_money_empty(self):
        assert sum_money([], Currency.EUR) == Money.zero(Currency.EUR)

    def test_sum_money(self):
        values = [Money(Decimal('0.10')), Money(Decimal('0.20')), Money(Decimal('0.30'))]
        assert sum_money(values, Currency.GBP) == Money(Decimal('0.60'))
