"""
Manual command parser.

Grammar (best effort, not a full parser):

    [date] <description> [@ <payee> | <payee>] <amount with optional currency>
        [via <payment method>] [memo "<text>"]

    coffee starbucks 150
    2025/08/09 lunch @ Pizza Hut $12.50 via credit card
    yesterday taxi 5 USD memo "airport"

Without an '@' the last remaining word is taken as the payee, which is
wrong for multi-word payees ("lunch Pizza Hut" gives payee "Hut"), so
such results carry a low payee_confidence.
"""

import re
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from receipt_ledger.ledger.currency import (
    is_currency_token,
    normalize_currency,
    round2,
)
from receipt_ledger.ledger.errors import ParseError
from receipt_ledger.ledger.postings import resolve_payment_account
from receipt_ledger.models.receipt import ParsedCommand, ReceiptItem, ReceiptShape

DEFAULT_PAYEE = "Personal"

# Payee confidence by how the payee was found
PAYEE_CONFIDENCE_MARKED = 0.9
PAYEE_CONFIDENCE_LAST_TOKEN = 0.4
PAYEE_CONFIDENCE_DEFAULT = 0.2

DATE_TOKEN_RE = re.compile(r"^(\d{4})[/-](\d{1,2})[/-](\d{1,2})$")
MEMO_RE = re.compile(r'\bmemo\s+"([^"]*)"', re.IGNORECASE)
PAYMENT_CLAUSE_RE = re.compile(
    r"\b(?:via|using|paid\s+(?:with|by))\s+"
    r"(credit\s*card|debit\s*card|bank\s*card|bank\s*transfer|card|cash"
    r"|bank|kbank|kasikorn|scb|promptpay|transfer)\b",
    re.IGNORECASE,
)
AMOUNT_TOKEN_RE = re.compile(
    r"^(?P<pre>[$฿€£])?"
    r"(?P<number>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"
    r"(?P<post>[$฿€£]|[A-Za-z]{3})?$"
)


def parse_date_token(token: str, today: date) -> Optional[date]:
    """today / yesterday / YYYY-MM-DD / YYYY/MM/DD, else None."""
    lowered = token.lower()
    if lowered == "today":
        return today
    if lowered == "yesterday":
        return today - timedelta(days=1)
    match = DATE_TOKEN_RE.match(token)
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        raise ParseError(f"Invalid date: {token}")


def _amount_from_token(token: str) -> Optional[tuple[Decimal, Optional[str]]]:
    match = AMOUNT_TOKEN_RE.match(token)
    if not match:
        return None
    attached = match.group("pre") or match.group("post")
    if attached and not is_currency_token(attached):
        return None
    try:
        amount = round2(Decimal(match.group("number").replace(",", "")))
    except InvalidOperation:
        return None
    return amount, normalize_currency(attached)


def _find_amount(tokens: list[str]) -> tuple[Decimal, Optional[str], set[int]]:
    """
    Rightmost amount in the tokens, with its currency and the token indexes
    it used. Tries '<currency> <amount>' before '<amount> <currency>'.
    """
    for index in range(len(tokens) - 1, -1, -1):
        found = _amount_from_token(tokens[index])
        if found is None:
            continue
        amount, currency = found
        used = {index}
        if currency is None:
            if index > 0 and is_currency_token(tokens[index - 1]):
                currency = normalize_currency(tokens[index - 1])
                used.add(index - 1)
            elif index + 1 < len(tokens) and is_currency_token(tokens[index + 1]):
                currency = normalize_currency(tokens[index + 1])
                used.add(index + 1)
        return amount, currency, used
    raise ParseError("Amount not found")


def _split_payee(words: list[str]) -> tuple[str, str, float]:
    text = " ".join(words)
    if "@" in text:
        description, _, payee = text.partition("@")
        description, payee = description.strip(), payee.strip()
        if not description:
            raise ParseError("Description not found")
        if not payee:
            return description, DEFAULT_PAYEE, PAYEE_CONFIDENCE_DEFAULT
        return description, payee, PAYEE_CONFIDENCE_MARKED

    if not words:
        raise ParseError("Description not found")
    if len(words) == 1:
        return words[0], DEFAULT_PAYEE, PAYEE_CONFIDENCE_DEFAULT
    return " ".join(words[:-1]), words[-1], PAYEE_CONFIDENCE_LAST_TOKEN


def parse_manual_command(
    text: str,
    default_currency: str = "THB",
    today: Optional[Callable[[], date]] = None,
) -> ParsedCommand:
    """
    Parse a free-text command (without its leading 'new') into a receipt.

    Raises ParseError for empty input, a missing amount or a missing
    description.
    """
    text = (text or "").strip()
    if not text:
        raise ParseError("Empty command")

    memo = None
    memo_match = MEMO_RE.search(text)
    if memo_match:
        memo = memo_match.group(1).strip() or None
        text = (text[:memo_match.start()] + " " + text[memo_match.end():]).strip()

    payment_account = None
    payment_match = PAYMENT_CLAUSE_RE.search(text)
    if payment_match:
        payment_account = resolve_payment_account(payment_match.group(1))
        text = (text[:payment_match.start()] + " " + text[payment_match.end():]).strip()

    tokens = text.split()
    if not tokens:
        raise ParseError("Empty command")

    # Local date, never UTC
    current = (today or date.today)()
    entry_date = current
    parsed_date = parse_date_token(tokens[0], current)
    if parsed_date is not None:
        entry_date = parsed_date
        tokens = tokens[1:]

    amount, currency, used = _find_amount(tokens)
    words = [token for i, token in enumerate(tokens) if i not in used]
    description, payee, payee_confidence = _split_payee(words)

    receipt = ReceiptShape(
        items=[ReceiptItem(description=description, price=amount)],
        subtotal=amount,
        tax=None,
        total=amount,
    )
    return ParsedCommand(
        date=entry_date,
        payee=payee,
        currency=currency or default_currency.upper(),
        receipt=receipt,
        memo=memo,
        payment_account=payment_account,
        payee_confidence=payee_confidence,
    )
