"""Ledger entry pipeline: parsing, segmentation, mapping, postings and rendering."""

from receipt_ledger.ledger.account_mapper import HybridAccountMapper, MappingStrategy
from receipt_ledger.ledger.account_rules import StaticMappingTables, account_from_category
from receipt_ledger.ledger.balance import assert_balanced, auto_balance, sum_amounts
from receipt_ledger.ledger.command_parser import parse_manual_command
from receipt_ledger.ledger.currency import (
    format_amount,
    format_with_symbol,
    normalize_currency,
    parse_money2,
    round2,
)
from receipt_ledger.ledger.entry_parser import parse_ledger_entry
from receipt_ledger.ledger.errors import (
    BalanceError,
    LedgerError,
    LedgerValidationError,
    ParseError,
)
from receipt_ledger.ledger.postings import (
    build_postings,
    build_postings_detailed,
    default_payment_account,
    resolve_payment_account,
)
from receipt_ledger.ledger.renderer import render_ledger
from receipt_ledger.ledger.segmenter import (
    ReceiptSegmenter,
    fallback_segment,
    parse_receipt_ocr_invoice,
    segment_receipt_ocr,
)

__all__ = [
    "BalanceError",
    "HybridAccountMapper",
    "LedgerError",
    "LedgerValidationError",
    "MappingStrategy",
    "ParseError",
    "ReceiptSegmenter",
    "StaticMappingTables",
    "account_from_category",
    "assert_balanced",
    "auto_balance",
    "build_postings",
    "build_postings_detailed",
    "default_payment_account",
    "fallback_segment",
    "format_amount",
    "format_with_symbol",
    "normalize_currency",
    "parse_ledger_entry",
    "parse_manual_command",
    "parse_money2",
    "parse_receipt_ocr_invoice",
    "render_ledger",
    "resolve_payment_account",
    "round2",
    "segment_receipt_ocr",
    "sum_amounts",
]
