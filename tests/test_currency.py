"""Tests for money parsing and formatting."""

from decimal import Decimal

import pytest

from receipt_ledger.ledger.currency import (
    currency_symbol,
    format_amount,
    format_with_symbol,
    is_currency_token,
    normalize_currency,
    parse_money2,
    round2,
)
from receipt_ledger.ledger.errors import ParseError


class TestParseMoney:
    """Tests for parse_money2."""

    def test_rounds_to_cents(self):
        """Test thousands separators are dropped and the value rounded."""
        assert parse_money2("1,234.567") == Decimal("1234.57")

    @pytest.mark.parametrize("text,expected", [
        ("฿150", Decimal("150.00")),
        ("$ 12.5", Decimal("12.50")),
        ("89.99€", Decimal("89.99")),
        ("0.005", Decimal("0.01")),
    ])
    def test_strips_symbols(self, text, expected):
        """Test currency symbols and spaces are ignored."""
        assert parse_money2(text) == expected

    def test_rejects_non_numbers(self):
        """Test text without digits raises ParseError."""
        with pytest.raises(ParseError, match="Not a money amount"):
            parse_money2("TOTAL")

    def test_round2_accepts_floats_without_artefacts(self):
        """Test floats go through their repr before rounding."""
        assert round2(2.675) == Decimal("2.68")


class TestFormatting:
    """Tests for amount and symbol formatting."""

    def test_format_amount(self):
        """Test thousands separators and two decimals."""
        assert format_amount(Decimal("1234.5")) == "1,234.50"

    def test_thb_symbol_is_suffix(self):
        """Test baht is written after the number."""
        assert format_with_symbol(Decimal("150"), "THB") == "150.00฿"

    def test_usd_symbol_is_prefix(self):
        """Test dollars are written before the number."""
        assert format_with_symbol(Decimal("12.5"), "usd") == "$12.50"

    def test_unknown_currency_uses_code(self):
        """Test codes without a symbol are written as the code."""
        assert currency_symbol("JPY") == "JPY"
        assert format_with_symbol(Decimal("100"), "JPY") == "JPY100.00"


class TestCurrencyTokens:
    """Tests for currency normalization."""

    @pytest.mark.parametrize("token,expected", [
        ("$", "USD"),
        ("฿", "THB"),
        ("usd", "USD"),
        (" eur ", "EUR"),
        ("dollars", None),
        ("", None),
        (None, None),
    ])
    def test_normalize_currency(self, token, expected):
        """Test symbols and codes map to ISO codes."""
        assert normalize_currency(token) == expected

    def test_is_currency_token(self):
        """Test only symbols and known codes count as currency tokens."""
        assert is_currency_token("THB")
        assert is_currency_token("thb")
        assert is_currency_token("€")
        assert not is_currency_token("tea")
