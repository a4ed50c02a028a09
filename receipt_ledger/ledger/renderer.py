"""
Ledger text renderer.

Canonical format:

    YYYY/MM/DD <payee>
        <account padded to 30><sign><symbol/amount>

Negative postings on Income:, Liabilities: and Equity: accounts are
written without an amount; plain-text ledger tools infer it from balance.
"""

from datetime import date
from decimal import Decimal
from typing import Sequence, Union

from receipt_ledger.ledger.currency import format_with_symbol
from receipt_ledger.models.ledger import Posting

INDENT = "    "
ACCOUNT_COLUMN_WIDTH = 30
ELIDED_NEGATIVE_ROOTS = ("Income:", "Liabilities:", "Equity:")


def format_ledger_date(entry_date: Union[date, str]) -> str:
    if isinstance(entry_date, date):
        return entry_date.strftime("%Y/%m/%d")
    return entry_date.strip().replace("-", "/")


def format_signed_amount(amount: Decimal, currency: str) -> str:
    """' 150.00฿' for positive amounts, '-150.00฿' for negative ones."""
    if amount >= 0:
        return " " + format_with_symbol(amount, currency)
    return "-" + format_with_symbol(-amount, currency)


def amount_is_elided(posting: Posting) -> bool:
    return posting.amount < 0 and posting.account.startswith(ELIDED_NEGATIVE_ROOTS)


def render_posting(posting: Posting, currency: str = "THB") -> str:
    if amount_is_elided(posting):
        return f"{INDENT}{posting.account}"
    amount = format_signed_amount(posting.amount, posting.currency or currency)
    return f"{INDENT}{posting.account.ljust(ACCOUNT_COLUMN_WIDTH)}{amount}"


def render_ledger(
    entry_date: Union[date, str],
    payee: str,
    postings: Sequence[Posting],
    currency: str = "THB",
) -> str:
    """Serialize a header and postings into ledger text (no trailing newline)."""
    lines = [f"{format_ledger_date(entry_date)} {payee}"]
    lines.extend(render_posting(posting, currency) for posting in postings)
    return "\n".join(lines)
