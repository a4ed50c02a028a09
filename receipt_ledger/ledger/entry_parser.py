"""
Ledger-entry text parser.

Reads a rendered or hand-written entry back into semantic fields. The
first positive posting is the expense side and the first negative one
the asset (payment) side; the canonical amount is the sum of the
positive postings. One posting may omit its amount, in which case it
takes whatever balances the entry.
"""

import re
from datetime import date
from decimal import Decimal
from typing import Optional

import structlog

from receipt_ledger.ledger.currency import normalize_currency, round2
from receipt_ledger.ledger.errors import ParseError
from receipt_ledger.models.ledger import ParsedLedgerEntry, ParsedLedgerLine

logger = structlog.get_logger(__name__)

DEFAULT_CURRENCY = "THB"
DEFAULT_BUSINESS = "Personal"

HEADER_RE = re.compile(r"^(\d{4})[/-](\d{2})[/-](\d{2})\s+(.+?)\s*$")

_SYMBOLS = "$฿€£"
POSTING_RE = re.compile(
    r"^(?P<account>[A-Za-z][\w:\-]*(?: [\w:\-]+)*?)"
    rf"(?:\s+|(?=-)|(?=[{_SYMBOLS}]))"
    r"(?P<sign>-)?"
    rf"(?P<pre>[{_SYMBOLS}]|[A-Z]{{3}})?\s*"
    r"(?P<number>\d[\d,]*(?:\.\d+)?)"
    rf"\s*(?P<post>[{_SYMBOLS}]|[A-Z]{{3}})?$"
)
BARE_ACCOUNT_RE = re.compile(r"^[A-Za-z][\w:\-]*(?: [\w:\-]+)*$")


def _parse_header(line: str) -> tuple[date, str]:
    match = HEADER_RE.match(line.strip())
    if not match:
        raise ParseError("Invalid header line (expected 'YYYY/MM/DD Payee')")
    year, month, day, payee = match.groups()
    try:
        entry_date = date(int(year), int(month), int(day))
    except ValueError:
        raise ParseError(f"Invalid date in header: {year}/{month}/{day}")
    return entry_date, payee


def parse_posting_line(line: str) -> Optional[ParsedLedgerLine]:
    """Parse one posting line; None for lines that are not postings."""
    text = line.replace("\u00a0", " ").strip()
    if not text or text.startswith((";", "#")):
        return None

    match = POSTING_RE.match(text)
    if match:
        amount = Decimal(match.group("number").replace(",", ""))
        if match.group("sign"):
            amount = -amount
        currency = normalize_currency(match.group("pre") or match.group("post"))
        return ParsedLedgerLine(
            account=match.group("account").strip(),
            amount=round2(amount),
            currency=currency,
        )

    if BARE_ACCOUNT_RE.match(text):
        return ParsedLedgerLine(account=text)

    return None


def _fill_elided_amount(lines: list[ParsedLedgerLine]) -> list[ParsedLedgerLine]:
    elided = [i for i, line in enumerate(lines) if line.amount is None]
    if not elided:
        return lines
    if len(elided) > 1:
        raise ParseError("Only one posting may omit its amount")
    balance = sum((line.amount for line in lines if line.amount is not None), Decimal("0"))
    filled = list(lines)
    index = elided[0]
    filled[index] = filled[index].model_copy(update={"amount": round2(-balance)})
    return filled


def business_from_account(account: Optional[str]) -> str:
    """Expenses:MyBrick:Supplies -> MyBrick; anything else -> Personal."""
    if not account:
        return DEFAULT_BUSINESS
    segments = account.split(":")
    if len(segments) > 1 and segments[0].lower() == "expenses" and segments[1]:
        return segments[1]
    return DEFAULT_BUSINESS


def parse_ledger_entry(text: str) -> ParsedLedgerEntry:
    """
    Parse a ledger entry into date, payee, accounts, amount and currency.

    Raises ParseError for a malformed header or when no expense account,
    asset account or non-zero amount can be found.
    """
    raw_lines = [line.rstrip() for line in (text or "").strip().splitlines()]
    raw_lines = [line for line in raw_lines if line.strip()]
    if not raw_lines:
        raise ParseError("Empty ledger entry")

    entry_date, payee = _parse_header(raw_lines[0])

    lines = []
    for raw in raw_lines[1:]:
        parsed = parse_posting_line(raw)
        if parsed is None:
            logger.debug("ledger_line_skipped", line=raw)
            continue
        lines.append(parsed)
    lines = _fill_elided_amount(lines)

    currency = DEFAULT_CURRENCY
    for line in lines:
        if line.currency:
            currency = line.currency

    positives = [line for line in lines if line.amount > 0]
    negatives = [line for line in lines if line.amount < 0]
    if not positives:
        raise ParseError("No expense posting found")
    if not negatives:
        raise ParseError("No asset/payment posting found")

    amount = round2(sum((line.amount for line in positives), Decimal("0")))
    if amount == 0:
        raise ParseError("Entry amount is zero")

    expense_account = positives[0].account
    return ParsedLedgerEntry(
        date=entry_date,
        payee=payee,
        expense_account=expense_account,
        asset_account=negatives[0].account,
        amount=amount,
        currency=currency,
        business_name=business_from_account(expense_account),
        lines=lines,
    )
