"""
Two-Stage Receipt Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- At least one item
- Non-empty descriptions, non-negative prices
- ISO-3 currency code
- Payment account is a valid account path

STAGE 2 - SEMANTIC VALIDATION:
- Subtotal equals the item sum (within tolerance)
- Total equals subtotal (or item sum) + tax (within tolerance)

Stage 2 only runs when stage 1 passes; arithmetic over a malformed
receipt produces noise, not help.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; quick fixes are applied only on explicit request.
"""

import json
from typing import Any, Optional, Union

from pydantic import ValidationError

from receipt_ledger.config import LedgerSettings, get_settings
from receipt_ledger.ledger.currency import ZERO, round2, to_decimal
from receipt_ledger.ledger.errors import LedgerValidationError, ParseError
from receipt_ledger.models.ledger import is_account_path
from receipt_ledger.models.receipt import NewCommandPayload, ReceiptShape
from receipt_ledger.models.validation import IssueSeverity, ValidationIssue, ValidationResult


class ReceiptValidator:
    """
    Validates a receipt (and the entry around it) before postings are built.

    Stage 1: Schema validation
    Stage 2: Semantic validation (receipt arithmetic)
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger
        self._tolerance = to_decimal(self._settings.receipt_tolerance)

    def _validate_schema(
        self,
        receipt: ReceiptShape,
        currency: str,
        payment_account: Optional[str],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if not receipt.items:
            issues.append(ValidationIssue(
                field="receipt.items",
                issue_type="missing",
                message="At least one item is required",
                severity=IssueSeverity.ERROR,
                suggested_fix="Add the purchased items or re-scan the receipt",
            ))

        for index, item in enumerate(receipt.items):
            if not item.description.strip():
                issues.append(ValidationIssue(
                    field=f"receipt.items.{index}.description",
                    issue_type="missing",
                    message=f"Item #{index + 1} description is empty",
                    severity=IssueSeverity.ERROR,
                ))
            if item.price < 0:
                issues.append(ValidationIssue(
                    field=f"receipt.items.{index}.price",
                    issue_type="invalid_value",
                    message=f"Item #{index + 1} price cannot be negative",
                    severity=IssueSeverity.ERROR,
                ))

        code = (currency or "").strip()
        if len(code) != 3 or not code.isalpha() or not code.isascii():
            issues.append(ValidationIssue(
                field="currency",
                issue_type="invalid_format",
                message=f"ISO currency code must be 3 letters (got {currency!r})",
                severity=IssueSeverity.ERROR,
            ))

        if payment_account is not None and not is_account_path(payment_account):
            issues.append(ValidationIssue(
                field="paymentAccount",
                issue_type="invalid_format",
                message=f"Invalid account path: {payment_account!r}",
                severity=IssueSeverity.ERROR,
                suggested_fix="Use a path like Assets:Cash or Liabilities:CreditCard",
            ))

        for name in ("subtotal", "tax", "total"):
            value = getattr(receipt, name)
            if value is not None and value < 0:
                issues.append(ValidationIssue(
                    field=f"receipt.{name}",
                    issue_type="invalid_value",
                    message=f"{name.capitalize()} cannot be negative",
                    severity=IssueSeverity.ERROR,
                ))

        is_valid = not any(issue.blocking for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        receipt: ReceiptShape,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        items_sum = round2(receipt.items_sum)

        if receipt.subtotal is not None and abs(items_sum - receipt.subtotal) > self._tolerance:
            issues.append(ValidationIssue(
                field="receipt.subtotal",
                issue_type="mismatch",
                message=f"Subtotal {receipt.subtotal} does not equal items sum {items_sum}",
                severity=IssueSeverity.ERROR,
                suggested_fix="Apply 'fix_items_sum' or correct the item prices",
            ))

        if receipt.total is not None:
            base = receipt.subtotal if receipt.subtotal is not None else items_sum
            expected = round2(base + (receipt.tax or ZERO))
            if abs(expected - receipt.total) > self._tolerance:
                issues.append(ValidationIssue(
                    field="receipt.total",
                    issue_type="mismatch",
                    message=f"Total {receipt.total} does not equal subtotal+tax ({expected})",
                    severity=IssueSeverity.ERROR,
                    suggested_fix="Apply 'fix_total' or 'remove_tax'",
                ))

        if receipt.tax is not None and receipt.tax == 0:
            issues.append(ValidationIssue(
                field="receipt.tax",
                issue_type="zero_value",
                message="Tax is zero; no tax posting will be created",
                severity=IssueSeverity.INFO,
            ))

        is_valid = not any(issue.blocking for issue in issues)
        return is_valid, issues

    def validate(
        self,
        receipt: ReceiptShape,
        currency: str = "THB",
        payment_account: Optional[str] = None,
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            receipt: The receipt to validate
            currency: Entry currency (ISO-3)
            payment_account: Account the payment is taken from, if given

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        # Stage 1: Schema validation
        schema_valid, schema_issues = self._validate_schema(receipt, currency, payment_account)
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(receipt)
            all_issues.extend(semantic_issues)

        warnings = [issue.message for issue in all_issues if issue.severity == IssueSeverity.WARNING]

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=warnings,
        )

    def validate_or_raise(
        self,
        receipt: ReceiptShape,
        currency: str = "THB",
        payment_account: Optional[str] = None,
    ) -> ValidationResult:
        """Like `validate`, but raises LedgerValidationError on any error."""
        result = self.validate(receipt, currency, payment_account)
        if not result.is_valid:
            raise LedgerValidationError(result.issues)
        return result

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what the terminal shows next to a rejected entry.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed!"

        lines = []

        if result.has_errors:
            noun = "problem" if result.error_count == 1 else "problems"
            lines.append(f"❌ The receipt does not add up ({result.error_count} {noun}):")
            for issue in result.issues:
                if issue.blocking:
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        if result.is_valid:
            lines.append("")
            lines.append("You can still proceed, but please review carefully.")
        else:
            lines.append("")
            lines.append("Please fix the issues above before continuing.")

        return "\n".join(lines)


# =============================================================================
# STRUCTURED PAYLOAD
# =============================================================================

def _issue_from_pydantic(error: dict) -> ValidationIssue:
    loc = tuple(error.get("loc", ()))
    field = ".".join(str(part) for part in loc) or "payload"
    message = str(error.get("msg", "Invalid value"))
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]

    if len(loc) >= 3 and loc[0] == "receipt" and loc[1] == "items" and isinstance(loc[2], int):
        attribute = str(loc[3]) if len(loc) > 3 else "item"
        if message.startswith(attribute):
            message = f"Item #{loc[2] + 1} {message}"
        else:
            message = f"Item #{loc[2] + 1} {attribute}: {message}"
    else:
        message = f"{field}: {message}"

    return ValidationIssue(
        field=field,
        issue_type=str(error.get("type", "invalid_value")),
        message=message,
        severity=IssueSeverity.ERROR,
    )


def parse_new_command_payload(
    data: Union[str, bytes, dict[str, Any]],
    validator: Optional[ReceiptValidator] = None,
) -> NewCommandPayload:
    """
    Parse and validate the structured JSON payload of the 'new' command.

    Raises:
        ParseError: the text is not a JSON object
        LedgerValidationError: the payload has field errors or the
            receipt arithmetic does not hold
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ParseError(f"Malformed JSON payload: {e.msg}") from e
        except UnicodeDecodeError as e:
            raise ParseError(f"Malformed JSON payload: {e.reason}") from e
    if not isinstance(data, dict):
        raise ParseError("Structured payload must be a JSON object")

    try:
        payload = NewCommandPayload.model_validate(data)
    except ValidationError as e:
        raise LedgerValidationError([_issue_from_pydantic(err) for err in e.errors()]) from e

    validator = validator or ReceiptValidator()
    validator.validate_or_raise(payload.receipt, payload.currency, payload.payment_account)
    return payload
