"""
Data Models Package

This package contains all Pydantic models used in the Receipt Ledger system.
All data flowing through the pipeline must conform to these schemas.
"""

from receipt_ledger.models.validation import IssueSeverity, ValidationIssue, ValidationResult
from receipt_ledger.models.ledger import (
    AccountPath,
    AccountPattern,
    AccountType,
    AccountTypeDetection,
    AccountTypePattern,
    BusinessContext,
    EntryType,
    LedgerEntryRecord,
    MappingRequest,
    MappingResult,
    MappingSource,
    MatchType,
    ParsedLedgerEntry,
    ParsedLedgerLine,
    Posting,
    PostingRecord,
    UserMapping,
    VendorMapping,
    is_account_path,
    normalize_business_name,
    normalize_vendor,
)
from receipt_ledger.models.receipt import (
    NewCommandPayload,
    OcrReceiptExtraction,
    ParsedCommand,
    ReceiptItem,
    ReceiptShape,
    SectionBounds,
    SegmentResult,
)
from receipt_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Validation models
    "IssueSeverity",
    "ValidationIssue",
    "ValidationResult",
    # Ledger models
    "AccountPath",
    "AccountPattern",
    "AccountType",
    "AccountTypeDetection",
    "AccountTypePattern",
    "BusinessContext",
    "EntryType",
    "LedgerEntryRecord",
    "MappingRequest",
    "MappingResult",
    "MappingSource",
    "MatchType",
    "ParsedLedgerEntry",
    "ParsedLedgerLine",
    "Posting",
    "PostingRecord",
    "UserMapping",
    "VendorMapping",
    "is_account_path",
    "normalize_business_name",
    "normalize_vendor",
    # Receipt models
    "NewCommandPayload",
    "OcrReceiptExtraction",
    "ParsedCommand",
    "ReceiptItem",
    "ReceiptShape",
    "SectionBounds",
    "SegmentResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
