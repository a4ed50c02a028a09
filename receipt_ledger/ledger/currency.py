"""
Currency and money helpers.

All amounts are Decimal and rounded half-up to cents.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from receipt_ledger.ledger.errors import ParseError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

CURRENCY_SYMBOLS = {
    "THB": "฿",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
}

SYMBOL_TO_CURRENCY = {symbol: code for code, symbol in CURRENCY_SYMBOLS.items()}

# Currencies whose symbol is written after the number
SUFFIX_SYMBOL_CURRENCIES = {"THB"}

KNOWN_CURRENCY_CODES = {
    "THB", "USD", "EUR", "GBP", "JPY", "CNY", "SGD", "MYR", "HKD", "AUD",
    "CAD", "CHF", "KRW", "INR", "IDR", "VND", "PHP", "TWD", "NZD", "LAK",
}

_NON_NUMERIC_RE = re.compile(r"[^\d.\-]")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert without float artefacts (floats go through their repr)."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def round2(value: Number) -> Decimal:
    """Round to cents, half away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money2(text: str) -> Decimal:
    """
    Parse a money token such as '฿1,234.567' or '$ 12' and round to cents.

    Raises ParseError when no number is left after stripping symbols.
    """
    cleaned = _NON_NUMERIC_RE.sub("", text or "")
    try:
        return round2(Decimal(cleaned))
    except InvalidOperation:
        raise ParseError(f"Not a money amount: {text!r}")


def currency_symbol(currency: Optional[str]) -> str:
    """Symbol for a currency code; unknown codes are their own symbol."""
    code = (currency or "THB").upper()
    return CURRENCY_SYMBOLS.get(code, code)


def format_amount(amount: Number) -> str:
    """Thousands-separated with two decimals: 1234.5 -> '1,234.50'."""
    return f"{round2(amount):,.2f}"


def format_with_symbol(amount: Number, currency: Optional[str]) -> str:
    """Place the symbol before or after the number depending on currency."""
    code = (currency or "THB").upper()
    formatted = format_amount(amount)
    symbol = currency_symbol(code)
    if code in SUFFIX_SYMBOL_CURRENCIES:
        return f"{formatted}{symbol}"
    return f"{symbol}{formatted}"


def normalize_currency(token: Optional[str]) -> Optional[str]:
    """
    Map a symbol or code to an ISO-3 code.

    '$' -> USD, '฿' -> THB, 'usd' -> USD. Returns None for anything that
    is not a symbol or a three letter code.
    """
    if not token:
        return None
    token = token.strip()
    if token in SYMBOL_TO_CURRENCY:
        return SYMBOL_TO_CURRENCY[token]
    if len(token) == 3 and token.isalpha() and token.isascii():
        return token.upper()
    return None


def is_currency_token(token: str) -> bool:
    """True for currency symbols and known ISO codes in any case."""
    return token in SYMBOL_TO_CURRENCY or token.upper() in KNOWN_CURRENCY_CODES
