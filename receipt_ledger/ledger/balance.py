"""
Balance checks for postings.

`assert_balanced` is the general double-entry check over any set of
postings. `auto_balance` is narrower: it assumes one designated cash
(payment) line and absorbs a small rounding difference into the least
material of the other lines.
"""

from decimal import Decimal
from typing import Iterable, Sequence

import structlog

from receipt_ledger.ledger.currency import Number, format_amount, round2, to_decimal
from receipt_ledger.ledger.errors import BalanceError
from receipt_ledger.models.ledger import Posting

logger = structlog.get_logger(__name__)

BALANCE_TOLERANCE = Decimal("0.005")
AUTO_BALANCE_THRESHOLD = Decimal("0.02")
CASH_ANCHOR = "Assets:Cash"


def sum_amounts(postings: Iterable[Posting]) -> Decimal:
    """Sum of posting amounts, rounded to cents."""
    return round2(sum((p.amount for p in postings), Decimal("0")))


def assert_balanced(
    postings: Sequence[Posting],
    tolerance: Number = BALANCE_TOLERANCE,
) -> None:
    """Raise BalanceError unless the postings sum to zero within tolerance."""
    total = sum_amounts(postings)
    if abs(total) > to_decimal(tolerance):
        raise BalanceError(f"Postings not balanced (sum={total:.2f})", total)


def auto_balance(
    lines: Sequence[Posting],
    threshold: Number = AUTO_BALANCE_THRESHOLD,
    anchor: str = CASH_ANCHOR,
) -> list[Posting]:
    """
    Absorb a rounding difference of at most `threshold`.

    The anchor line (first account containing `anchor`, case-insensitive)
    is never changed. The difference between the other lines and the
    anchor's absolute amount is subtracted from the other line with the
    smallest absolute amount, and the anchor is moved to the end.

    Returns the input unchanged (as a new list) when already balanced.
    Raises BalanceError when there is no anchor line or the difference
    exceeds the threshold.
    """
    anchor_key = anchor.lower()
    cash_index = next(
        (i for i, line in enumerate(lines) if anchor_key in line.account.lower()),
        None,
    )
    if cash_index is None:
        raise BalanceError(f"No {anchor} line found to balance against", Decimal("0"))

    cash = lines[cash_index]
    others = [line for i, line in enumerate(lines) if i != cash_index]
    if not others:
        raise BalanceError(f"Only the {anchor} line is present", abs(cash.amount))

    difference = round2(sum_amounts(others) - abs(cash.amount))
    if difference == 0:
        return list(lines)

    limit = to_decimal(threshold)
    if abs(difference) > limit:
        raise BalanceError(
            f"Entry out of balance by {format_amount(abs(difference))} "
            f"(exceeds threshold {format_amount(limit)})",
            difference,
        )

    smallest = min(range(len(others)), key=lambda i: abs(others[i].amount))
    adjusted = others[smallest]
    others[smallest] = adjusted.model_copy(
        update={"amount": round2(adjusted.amount - difference)}
    )
    logger.info(
        "auto_balance_adjusted",
        account=adjusted.account,
        difference=str(difference),
    )
    return [*others, cash]
