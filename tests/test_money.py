"""Tests for decimal money helpers."""

from decimal import Decimal

import pytest

from roomledger.money import format_inr, is_zero, parse_inr, round_money, to_decimal


class TestToDecimal:
    """Tests for to_decimal."""

    def test_float_goes_through_str(self):
        """0.1 should not pick up binary floating point noise."""
        assert to_decimal(0.1) == Decimal("0.1")

    def test_strings_and_ints(self):
        assert to_decimal("12.50") == Decimal("12.50")
        assert to_decimal(7) == Decimal("7")

    def test_decimal_passes_through(self):
        value = Decimal("3.333")
        assert to_decimal(value) is value

    @pytest.mark.parametrize("value", ["abc", True, None])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)


class TestRounding:
    """Tests for round_money and is_zero."""

    def test_rounds_half_up(self):
        assert round_money(Decimal("2.345")) == Decimal("2.35")
        assert round_money(Decimal("-2.345")) == Decimal("-2.35")

    def test_negative_zero_is_normalized(self):
        """Tiny negative residue should print as 0.00, not -0.00."""
        assert str(round_money(Decimal("-0.001"))) == "0.00"

    def test_zero_epsilon_is_half_a_paisa(self):
        assert is_zero(Decimal("0.004"))
        assert is_zero(Decimal("-0.0049"))
        assert not is_zero(Decimal("0.005"))

    def test_repeated_division_residue_is_zero(self):
        third = Decimal(100) / 3
        assert is_zero(Decimal(100) - third * 3)


class TestRupeeFormatting:
    """Tests for format_inr and parse_inr."""

    @pytest.mark.parametrize(
        "amount,expected",
        [
            (Decimal("123456.78"), "₹1,23,456.78"),
            (Decimal("12345678"), "₹1,23,45,678"),
            (250, "₹250"),
            (Decimal("1000.00"), "₹1,000"),
            (Decimal("-42.5"), "-₹42.50"),
            (Decimal("0.004"), "₹0"),
        ],
    )
    def test_indian_grouping(self, amount, expected):
        assert format_inr(amount) == expected

    def test_parse_strips_symbol_and_commas(self):
        assert parse_inr("₹1,23,456.78") == Decimal("123456.78")
        assert parse_inr(" 250 ") == Decimal("250")

    def test_parse_rejects_empty(self):
        with pytest.raises(ValueError):
            parse_inr("₹")
