"""
Validation Package

Two-stage receipt validation, structured payload parsing, OCR summary
reconciliation and the user-triggered quick fixes.
"""

from receipt_ledger.validation.quick_fixes import (
    QUICK_FIXES,
    apply_quick_fix,
    fix_items_sum,
    fix_total,
    reconcile_receipt_summary,
    remove_tax,
    validate_receipt_math,
)
from receipt_ledger.validation.validator import (
    ReceiptValidator,
    parse_new_command_payload,
)

__all__ = [
    "QUICK_FIXES",
    "ReceiptValidator",
    "apply_quick_fix",
    "fix_items_sum",
    "fix_total",
    "parse_new_command_payload",
    "reconcile_receipt_summary",
    "remove_tax",
    "validate_receipt_math",
]
