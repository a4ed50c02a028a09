"""
Validation findings for receipts and structured payloads.

Issues are data, not exceptions: the validator collects every problem
with a receipt so they can be shown together, and LedgerValidationError
carries the same list when an entry is rejected.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class IssueSeverity(str, Enum):
    """Only errors block an entry; warnings and info are shown alongside it."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationIssue(BaseModel):
    """One problem with one value of a receipt or payload."""

    field: str = Field(
        ...,
        description="Dotted path of the offending value, e.g. 'receipt.items.0.price'"
    )
    issue_type: str = Field(
        ...,
        description="missing, mismatch, invalid_value, invalid_format, zero_value, "
                    "or the pydantic error type for payload fields"
    )
    message: str = Field(
        ...,
        description="Message shown next to the rejected entry"
    )
    severity: IssueSeverity = IssueSeverity.ERROR
    suggested_fix: Optional[str] = Field(
        default=None,
        description="What the user can do about it, naming a quick fix where one applies"
    )

    @property
    def blocking(self) -> bool:
        return self.severity == IssueSeverity.ERROR


class ValidationResult(BaseModel):
    """
    Outcome of checking one receipt.

    The structure is checked first (items, prices, payment account,
    currency); the arithmetic (items vs subtotal, subtotal + tax vs total)
    only runs on a structurally valid receipt.
    """

    checked_at: datetime = Field(default_factory=datetime.utcnow)

    schema_valid: bool
    semantic_valid: bool = Field(
        ...,
        description="False when the arithmetic failed or was skipped"
    )
    is_valid: bool

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(
        default_factory=list,
        description="Messages of the non-blocking issues"
    )

    @property
    def has_errors(self) -> bool:
        return any(issue.blocking for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.blocking)
