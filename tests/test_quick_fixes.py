"""Tests for OCR summary reconciliation and user quick fixes."""

from decimal import Decimal

import pytest

from receipt_ledger.models.receipt import ReceiptItem, ReceiptShape
from receipt_ledger.models.validation import IssueSeverity
from receipt_ledger.validation import (
    apply_quick_fix,
    fix_items_sum,
    fix_total,
    reconcile_receipt_summary,
    remove_tax,
    validate_receipt_math,
)


def apple(subtotal=None, tax=None, total=None) -> ReceiptShape:
    def money(value):
        return None if value is None else Decimal(value)

    return ReceiptShape(
        items=[ReceiptItem(description="APPLE 1234", price=Decimal("1.23"))],
        subtotal=money(subtotal),
        tax=money(tax),
        total=money(total),
    )


def summary(receipt: ReceiptShape) -> tuple:
    return receipt.subtotal, receipt.tax, receipt.total


class TestReconcile:
    """Tests for reconcile_receipt_summary."""

    def test_consistent_receipt_is_unchanged(self):
        """Test nothing moves when the numbers agree."""
        receipt = apple("1.23", "0.10", "1.33")
        assert summary(reconcile_receipt_summary(receipt)) == summary(receipt)

    def test_subtotal_from_total_and_tax(self):
        """Test a missing subtotal is total minus tax."""
        fixed = reconcile_receipt_summary(apple(tax="0.10", total="1.33"))
        assert summary(fixed) == (Decimal("1.23"), Decimal("0.10"), Decimal("1.33"))

    def test_only_total(self):
        """Test the tax is inferred from total and item sum."""
        fixed = reconcile_receipt_summary(apple(total="1.33"))
        assert summary(fixed) == (Decimal("1.23"), Decimal("0.10"), Decimal("1.33"))

    def test_total_close_to_item_sum(self):
        """Test a total within 0.05 of the items takes the remainder as tax."""
        fixed = reconcile_receipt_summary(apple(total="1.25"))
        assert summary(fixed) == (Decimal("1.23"), Decimal("0.02"), Decimal("1.25"))

    def test_total_from_subtotal_and_tax(self):
        """Test a missing total is subtotal plus tax."""
        fixed = reconcile_receipt_summary(apple("1.23", "0.10"))
        assert fixed.total == Decimal("1.33")

    def test_joined_digits_subtotal(self):
        """Test a subtotal many times the item sum is replaced."""
        fixed = reconcile_receipt_summary(apple(subtotal="123.00"))
        assert fixed.subtotal == Decimal("1.23")

    def test_items_are_kept(self):
        """Test reconciliation only touches the summary."""
        receipt = apple(total="1.33")
        assert reconcile_receipt_summary(receipt).items == receipt.items


class TestReceiptMath:
    """Tests for the loose OCR arithmetic check."""

    def test_consistent(self):
        """Test no warnings for matching numbers."""
        assert validate_receipt_math(apple("1.23", "0.10", "1.33")) == []

    def test_warnings(self):
        """Test mismatches are warnings, not errors."""
        issues = validate_receipt_math(apple("2.00", "0.10", "1.33"))
        assert [issue.field for issue in issues] == ["receipt.subtotal", "receipt.total"]
        assert {issue.severity for issue in issues} == {IssueSeverity.WARNING}

    def test_threshold(self):
        """Test differences up to the threshold are accepted."""
        assert validate_receipt_math(apple("1.27"), threshold=Decimal("0.05")) == []


class TestQuickFixes:
    """Tests for the explicit repairs."""

    def test_fix_items_sum(self):
        """Test subtotal and total follow the items."""
        fixed = fix_items_sum(apple("2.00", "0.10", "2.10"))
        assert summary(fixed) == (Decimal("1.23"), Decimal("0.10"), Decimal("1.33"))

    def test_fix_total(self):
        """Test the total follows subtotal and tax."""
        assert fix_total(apple("1.23", "0.10", "9.99")).total == Decimal("1.33")

    def test_fix_total_without_subtotal(self):
        """Test the item sum stands in for a missing subtotal."""
        assert fix_total(apple(tax="0.10")).total == Decimal("1.33")

    def test_remove_tax(self):
        """Test the tax is dropped and the total equals the subtotal."""
        fixed = remove_tax(apple("1.23", "0.10", "1.30"))
        assert summary(fixed) == (Decimal("1.23"), None, Decimal("1.23"))

    def test_apply_by_name(self):
        """Test fixes are looked up by name."""
        assert apply_quick_fix(apple("1.23", "0.10", "9.99"), "fix_total").total == Decimal("1.33")

    def test_unknown_fix(self):
        """Test an unknown name lists the available fixes."""
        with pytest.raises(KeyError, match="fix_items_sum"):
            apply_quick_fix(apple(), "guess")
