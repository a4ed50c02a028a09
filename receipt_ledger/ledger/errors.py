"""
Ledger Errors

User-facing failures of the ledger pipeline. Soft failures (AI mapping,
LLM segmentation) are never raised past their stage; they are logged
and the previous result is kept.
"""

from decimal import Decimal
from typing import Optional

from receipt_ledger.models.validation import ValidationIssue


class LedgerError(Exception):
    """Base exception for ledger pipeline errors."""
    pass


class ParseError(LedgerError):
    """Input could not be parsed (empty input, missing amount, bad header)."""
    pass


class LedgerValidationError(LedgerError):
    """
    Input parsed but violates receipt or posting invariants.

    Carries the field-level issues so callers can show every problem at once.
    """

    def __init__(self, issues: list[ValidationIssue], message: Optional[str] = None):
        self.issues = issues
        errors = [issue.message for issue in issues if issue.blocking]
        super().__init__(message or "; ".join(errors) or "Validation failed")


class BalanceError(LedgerError):
    """Postings do not sum to zero within tolerance."""

    def __init__(self, message: str, difference: Decimal):
        self.difference = difference
        super().__init__(message)
