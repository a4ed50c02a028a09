"""Tests for balance checks and the auto-balancer."""

from decimal import Decimal

import pytest

from receipt_ledger.ledger.balance import assert_balanced, auto_balance, sum_amounts
from receipt_ledger.ledger.errors import BalanceError
from receipt_ledger.models.ledger import Posting


def line(account: str, amount: str) -> Posting:
    return Posting(account=account, amount=Decimal(amount))


class TestAssertBalanced:
    """Tests for assert_balanced."""

    def test_balanced(self):
        """Test postings summing to zero pass."""
        assert_balanced([line("Expenses:Food", "10.00"), line("Assets:Cash", "-10.00")])

    def test_within_tolerance(self):
        """Test a sub-cent difference is accepted."""
        assert_balanced([line("Expenses:Food", "10.004"), line("Assets:Cash", "-10.00")])

    def test_unbalanced(self):
        """Test the error reports the sum."""
        with pytest.raises(BalanceError, match=r"sum=0\.01") as excinfo:
            assert_balanced([line("Expenses:Food", "10.01"), line("Assets:Cash", "-10.00")])
        assert excinfo.value.difference == Decimal("0.01")

    def test_sum_amounts(self):
        """Test the sum is rounded to cents."""
        assert sum_amounts([line("Expenses:Food", "1.005"), line("Expenses:Tea", "1")]) == Decimal("2.01")


class TestAutoBalance:
    """Tests for auto_balance."""

    def test_difference_over_threshold(self):
        """Test 0.03 over a 0.02 threshold is rejected."""
        lines = [line("Expenses:Food", "10.03"), line("Assets:Cash", "-10")]
        with pytest.raises(BalanceError, match="out of balance by 0.03") as excinfo:
            auto_balance(lines, threshold=0.02)
        assert excinfo.value.difference == Decimal("0.03")

    def test_small_difference_is_absorbed(self):
        """Test 0.01 is subtracted from the smallest line and cash is untouched."""
        lines = [line("Expenses:Food", "10.01"), line("Assets:Cash", "-10")]
        balanced = auto_balance(lines, threshold=0.02)
        assert balanced[0].amount == Decimal("10.00")
        assert balanced[-1] == lines[1]
        assert sum_amounts(balanced) == Decimal("0")

    def test_smallest_line_takes_the_difference(self):
        """Test the least material line is adjusted and cash is moved last."""
        lines = [
            line("Assets:Cash", "-8.50"),
            line("Expenses:Food", "5.00"),
            line("Expenses:Tea", "3.00"),
            line("Expenses:Taxes:Sales", "0.52"),
        ]
        balanced = auto_balance(lines)
        assert [(p.account, p.amount) for p in balanced] == [
            ("Expenses:Food", Decimal("5.00")),
            ("Expenses:Tea", Decimal("3.00")),
            ("Expenses:Taxes:Sales", Decimal("0.50")),
            ("Assets:Cash", Decimal("-8.50")),
        ]

    def test_already_balanced_is_unchanged(self):
        """Test a balanced set is returned as is."""
        lines = [line("Expenses:Food", "10"), line("Assets:Cash", "-10")]
        assert auto_balance(lines) == lines

    def test_idempotent(self):
        """Test balancing twice changes nothing the second time."""
        once = auto_balance([line("Expenses:Food", "10.01"), line("Assets:Cash", "-10")])
        assert auto_balance(once) == once

    def test_anchor_is_case_insensitive(self):
        """Test the cash anchor is found by substring, ignoring case."""
        lines = [line("Expenses:Food", "5.01"), line("Assets:Cash:Wallet", "-5")]
        assert auto_balance(lines, anchor="assets:cash")[0].amount == Decimal("5.00")

    def test_custom_anchor(self):
        """Test a card purchase is balanced against the card liability."""
        lines = [
            line("Expenses:Food", "5.01"),
            line("Liabilities:Personal:Debt:CreditCard", "-5"),
        ]
        balanced = auto_balance(lines, anchor="Liabilities:Personal:Debt:CreditCard")
        assert balanced[0].amount == Decimal("5.00")

    def test_no_anchor(self):
        """Test entries without the anchor line are rejected."""
        with pytest.raises(BalanceError, match="No Assets:Cash line"):
            auto_balance([line("Expenses:Food", "5"), line("Assets:Bank", "-5")])

    def test_only_anchor(self):
        """Test a lone cash line cannot be balanced."""
        with pytest.raises(BalanceError, match="Only the Assets:Cash line"):
            auto_balance([line("Assets:Cash", "-5")])
