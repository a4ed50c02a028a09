"""
Receipt Arithmetic Repairs

Two kinds of repair live here and they are deliberately kept apart:

- `reconcile_receipt_summary` runs automatically on OCR output only. OCR
  regularly drops or joins digits in summary rows, so the most plausible
  subtotal/tax/total relationship is restored before validation.
- Quick fixes (`fix_items_sum`, `fix_total`, `remove_tax`) are applied
  only when the user asks for them after seeing a validation error.

Manual and structured input is never repaired implicitly.
"""

from decimal import Decimal
from typing import Optional

from receipt_ledger.ledger.currency import ZERO, round2
from receipt_ledger.models.receipt import ReceiptShape
from receipt_ledger.models.validation import IssueSeverity, ValidationIssue


OCR_MATH_TOLERANCE = Decimal("0.05")

# A subtotal this many times the item sum is almost always joined digits
JOINED_DIGITS_RATIO = Decimal("4")
SUBTOTAL_DRIFT = Decimal("0.50")


# =============================================================================
# OCR RECONCILIATION
# =============================================================================

def reconcile_receipt_summary(receipt: ReceiptShape) -> ReceiptShape:
    """
    Restore a plausible subtotal/tax/total triple from OCR values.

    Rules, in order:
    1. TOTAL and TAX present: SUBTOTAL := TOTAL - TAX when missing or off by > 0.50
    2. TOTAL within 0.05 of the item sum: SUBTOTAL := item sum, TAX := TOTAL - SUBTOTAL
    3. only TOTAL: SUBTOTAL := item sum, TAX := TOTAL - item sum (never negative)
    4. SUBTOTAL and TAX without TOTAL: TOTAL := SUBTOTAL + TAX
    5. SUBTOTAL more than 4x the item sum: treat as joined digits, use the item sum
    6. clamp negatives
    """
    items_sum = round2(receipt.items_sum)
    subtotal = receipt.subtotal
    tax = receipt.tax
    total = receipt.total

    if total is not None and tax is not None:
        from_total = round2(total - tax)
        if subtotal is None or abs(subtotal - from_total) > SUBTOTAL_DRIFT:
            subtotal = max(ZERO, from_total)

    if total is not None and abs(total - items_sum) <= OCR_MATH_TOLERANCE:
        subtotal = items_sum
        tax = max(ZERO, round2(total - subtotal))

    if total is not None and subtotal is None and tax is None:
        subtotal = items_sum
        tax = max(ZERO, round2(total - items_sum))

    if total is None and subtotal is not None and tax is not None:
        total = round2(subtotal + tax)

    if subtotal is not None and items_sum > 0 and subtotal / items_sum > JOINED_DIGITS_RATIO:
        if total is not None and abs(total - items_sum) <= OCR_MATH_TOLERANCE:
            subtotal = items_sum
            tax = max(ZERO, round2(total - subtotal))
        elif abs(subtotal - items_sum) > SUBTOTAL_DRIFT:
            subtotal = items_sum

    if tax is not None and -OCR_MATH_TOLERANCE < tax < 0:
        tax = ZERO
    if subtotal is not None and subtotal < 0:
        subtotal = ZERO
    if total is not None and total < 0:
        total = ZERO

    return receipt.model_copy(update={
        "subtotal": _round_or_none(subtotal),
        "tax": _round_or_none(tax),
        "total": _round_or_none(total),
    })


def _round_or_none(value: Optional[Decimal]) -> Optional[Decimal]:
    return None if value is None else round2(value)


def validate_receipt_math(
    receipt: ReceiptShape,
    threshold: Decimal = OCR_MATH_TOLERANCE,
) -> list[ValidationIssue]:
    """
    Looser arithmetic check used on OCR receipts.

    Returns warnings rather than errors: OCR math problems are shown to
    the user next to the parsed receipt, the strict validator decides
    whether the entry may be created.
    """
    issues = []
    items_sum = round2(receipt.items_sum)
    tax = receipt.tax or ZERO

    if receipt.subtotal is not None and abs(items_sum - receipt.subtotal) > threshold:
        issues.append(ValidationIssue(
            field="receipt.subtotal",
            issue_type="mismatch",
            message=f"Item sum {items_sum} ≠ subtotal {receipt.subtotal}",
            severity=IssueSeverity.WARNING,
            suggested_fix="Check for missed or misread item lines",
        ))

    if receipt.subtotal is not None and receipt.total is not None:
        expected = round2(receipt.subtotal + tax)
        if abs(expected - receipt.total) > threshold:
            issues.append(ValidationIssue(
                field="receipt.total",
                issue_type="mismatch",
                message=f"Subtotal + tax {expected} ≠ total {receipt.total}",
                severity=IssueSeverity.WARNING,
                suggested_fix="Check the tax and total lines",
            ))

    return issues


# =============================================================================
# QUICK FIXES
# =============================================================================

def fix_items_sum(receipt: ReceiptShape) -> ReceiptShape:
    """Subtotal := item sum; total := subtotal + tax."""
    subtotal = round2(receipt.items_sum)
    return receipt.model_copy(update={
        "subtotal": subtotal,
        "total": round2(subtotal + (receipt.tax or ZERO)),
    })


def fix_total(receipt: ReceiptShape) -> ReceiptShape:
    """Total := (subtotal or item sum) + tax."""
    subtotal = receipt.subtotal if receipt.subtotal is not None else round2(receipt.items_sum)
    return receipt.model_copy(update={
        "total": round2(subtotal + (receipt.tax or ZERO)),
    })


def remove_tax(receipt: ReceiptShape) -> ReceiptShape:
    """Drop the tax and make the total equal the subtotal (or item sum)."""
    subtotal = receipt.subtotal if receipt.subtotal is not None else round2(receipt.items_sum)
    return receipt.model_copy(update={
        "tax": None,
        "total": subtotal,
    })


QUICK_FIXES = {
    "fix_items_sum": fix_items_sum,
    "fix_total": fix_total,
    "remove_tax": remove_tax,
}


def apply_quick_fix(receipt: ReceiptShape, name: str) -> ReceiptShape:
    """Apply a quick fix by name; unknown names raise KeyError."""
    try:
        fix = QUICK_FIXES[name]
    except KeyError:
        raise KeyError(f"Unknown quick fix: {name!r}. Choose from {sorted(QUICK_FIXES)}")
    return fix(receipt)
