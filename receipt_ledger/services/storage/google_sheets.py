"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the storage backend because:
1. Entries and postings stay readable (and pivotable) without tooling
2. No database setup required
3. Mapping tables can be edited by hand

TRADEOFFS:
- No transactions: an entry is header row first, then posting rows; the
  header is deleted again if the postings cannot be written
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so a relational
store can replace it without touching the pipeline.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from receipt_ledger.config import GoogleSheetsSettings, get_settings
from receipt_ledger.models.audit import (
    AUDIT_SHEET_COLUMNS,
    AuditEvent,
    AuditEventType,
    AuditSeverity,
)
from receipt_ledger.models.ledger import (
    AccountPattern,
    AccountType,
    AccountTypePattern,
    BusinessContext,
    LedgerEntryRecord,
    MatchType,
    PostingRecord,
    UserMapping,
    VendorMapping,
)
from receipt_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    MappingTableInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)


ENTRY_COLUMNS = [
    "id",
    "created_at",
    "entry_date",
    "payee",
    "amount",
    "currency",
    "business_name",
    "memo",
    "image_url",
    "entry_text",
    "entry_raw_json",
]

POSTING_COLUMNS = [
    "entry_id",
    "sort_order",
    "account",
    "amount",
    "currency",
]

AUDIT_COLUMNS = list(AUDIT_SHEET_COLUMNS)

USER_MAPPING_COLUMNS = ["pattern", "account_path", "match_type", "user_id", "business_context", "priority"]
VENDOR_MAPPING_COLUMNS = ["vendor_name", "account_path", "vendor_pattern", "business_context"]
ACCOUNT_PATTERN_COLUMNS = ["pattern", "account_path", "match_type", "business_context", "priority"]
BUSINESS_CONTEXT_COLUMNS = ["business_name", "default_account_type", "description"]
ACCOUNT_TYPE_PATTERN_COLUMNS = ["pattern", "account_type", "confidence", "priority"]


def _safe_get(row: list, index: int, default: str = "") -> str:
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


def _cell(record: dict[str, Any], key: str) -> Optional[str]:
    """Sheet cells come back as str/int/float; blank cells become None."""
    value = record.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_sheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get a worksheet, creating it with a header row if missing."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_entries_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.entries_sheet_name, ENTRY_COLUMNS)

    def get_postings_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.postings_sheet_name, POSTING_COLUMNS, rows=5000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    Headers go to one worksheet, postings to another, keyed by entry id.
    The structured payload is JSON-serialized into the header row.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _entry_to_row(self, record: LedgerEntryRecord) -> list:
        return [
            str(record.id),
            record.created_at.isoformat(),
            record.entry_date.isoformat(),
            record.payee,
            str(record.amount),
            record.currency,
            record.business_name,
            record.memo or "",
            record.image_url or "",
            record.entry_text,
            json.dumps(record.entry_raw, default=str) if record.entry_raw else "",
        ]

    def _row_to_entry(self, row: list) -> LedgerEntryRecord:
        raw_json = _safe_get(row, 10)
        return LedgerEntryRecord(
            id=UUID(_safe_get(row, 0)),
            created_at=datetime.fromisoformat(_safe_get(row, 1)),
            entry_date=date.fromisoformat(_safe_get(row, 2)),
            payee=_safe_get(row, 3),
            amount=Decimal(_safe_get(row, 4, "0")),
            currency=_safe_get(row, 5, "THB"),
            business_name=_safe_get(row, 6, "Personal"),
            memo=_safe_get(row, 7) or None,
            image_url=_safe_get(row, 8) or None,
            entry_text=_safe_get(row, 9),
            entry_raw=json.loads(raw_json) if raw_json else {},
        )

    def _posting_to_row(self, posting: PostingRecord) -> list:
        return [
            str(posting.entry_id),
            posting.sort_order,
            posting.account,
            str(posting.amount),
            posting.currency,
        ]

    def _row_to_posting(self, row: list) -> PostingRecord:
        return PostingRecord(
            entry_id=UUID(_safe_get(row, 0)),
            sort_order=int(_safe_get(row, 1, "0")),
            account=_safe_get(row, 2),
            amount=Decimal(_safe_get(row, 3, "0")),
            currency=_safe_get(row, 4, "THB"),
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def insert_entry(self, record: LedgerEntryRecord) -> UUID:
        """Append the header row."""
        try:
            sheet = self._client.get_entries_sheet()
            ids = sheet.col_values(1)[1:]
            if str(record.id) in ids:
                raise DuplicateError(f"Entry already exists: {record.id}")
            sheet.append_row(self._entry_to_row(record), value_input_option="RAW")
            return record.id
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save entry: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def insert_postings(self, postings: list[PostingRecord]) -> int:
        """Append all posting rows in one call."""
        if not postings:
            return 0
        try:
            sheet = self._client.get_postings_sheet()
            rows = [self._posting_to_row(p) for p in sorted(postings, key=lambda p: p.sort_order)]
            sheet.append_rows(rows, value_input_option="RAW")
            return len(rows)
        except Exception as e:
            raise StorageError(f"Failed to save postings: {e}")

    async def delete_entry(self, entry_id: UUID) -> bool:
        """Delete the header row and any posting rows of an entry."""
        try:
            deleted = False
            key = str(entry_id)

            postings_sheet = self._client.get_postings_sheet()
            posting_rows = postings_sheet.get_all_values()
            # Delete bottom-up so row indexes stay valid
            for idx in range(len(posting_rows), 1, -1):
                row = posting_rows[idx - 1]
                if row and row[0] == key:
                    postings_sheet.delete_rows(idx)
                    deleted = True

            entries_sheet = self._client.get_entries_sheet()
            for idx, row in enumerate(entries_sheet.get_all_values()[1:], start=2):
                if row and row[0] == key:
                    entries_sheet.delete_rows(idx)
                    deleted = True
                    break

            return deleted
        except Exception as e:
            raise StorageError(f"Failed to delete entry: {e}")

    async def get_entry(
        self,
        entry_id: UUID,
    ) -> Optional[tuple[LedgerEntryRecord, list[PostingRecord]]]:
        """Retrieve an entry and its postings."""
        try:
            key = str(entry_id)
            header = None
            for row in self._client.get_entries_sheet().get_all_values()[1:]:
                if row and row[0] == key:
                    header = self._row_to_entry(row)
                    break
            if header is None:
                return None

            postings = [
                self._row_to_posting(row)
                for row in self._client.get_postings_sheet().get_all_values()[1:]
                if row and row[0] == key
            ]
            postings.sort(key=lambda p: p.sort_order)
            return header, postings
        except Exception as e:
            raise StorageError(f"Failed to get entry: {e}")

    async def list_entries(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        business_name: Optional[str] = None,
        limit: int = 100,
    ) -> list[LedgerEntryRecord]:
        """List entry headers with optional filters."""
        try:
            all_rows = self._client.get_entries_sheet().get_all_values()[1:]

            entries = []
            for row in all_rows:
                if not row or not row[0]:
                    continue
                try:
                    entry = self._row_to_entry(row)
                except (ValueError, TypeError, json.JSONDecodeError) as e:
                    logger.warning("malformed_entry_row", entry_id=row[0], error=str(e))
                    continue

                if date_from and entry.entry_date < date_from:
                    continue
                if date_to and entry.entry_date > date_to:
                    continue
                if business_name and entry.business_name != business_name:
                    continue

                entries.append(entry)

            entries.sort(key=lambda e: (e.entry_date, e.created_at), reverse=True)
            return entries[:limit]
        except Exception as e:
            raise StorageError(f"Failed to list entries: {e}")


# =============================================================================
# AUDIT
# =============================================================================

class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        return AuditEvent(
            event_id=UUID(_safe_get(row, 0)),
            timestamp=datetime.fromisoformat(_safe_get(row, 1)),
            event_type=AuditEventType(_safe_get(row, 2)),
            severity=AuditSeverity(_safe_get(row, 3)),
            entity_type=_safe_get(row, 4) or None,
            entity_id=UUID(_safe_get(row, 5)) if _safe_get(row, 5) else None,
            correlation_id=UUID(_safe_get(row, 6)) if _safe_get(row, 6) else None,
            description=_safe_get(row, 7),
            details=json.loads(_safe_get(row, 8)) if _safe_get(row, 8) else {},
            error_message=_safe_get(row, 9) or None,
            is_user_action=_safe_get(row, 10).lower() == "true",
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event; failures are logged, never raised."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_write_failed", event_type=event.event_type.value, error=str(e))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            all_rows = self._client.get_audit_sheet().get_all_values()[1:]

            events = []
            for row in all_rows:
                if row and len(row) > 6 and row[6] == str(correlation_id):
                    try:
                        events.append(self._row_to_event(row))
                    except (ValueError, json.JSONDecodeError) as e:
                        logger.warning("malformed_audit_row", event_id=row[0], error=str(e))

            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")


# =============================================================================
# MAPPING TABLES
# =============================================================================

class GoogleSheetsMappingTables(MappingTableInterface):
    """
    Mapping tables kept as hand-editable worksheets.

    Each worksheet has a header row; rows are read with get_all_records().
    Missing worksheets are created empty.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _records(self, title: str, columns: list[str]) -> list[dict[str, Any]]:
        try:
            return self._client.get_sheet(title, columns).get_all_records()
        except Exception as e:
            raise StorageError(f"Failed to read mapping table {title}: {e}")

    async def get_user_mappings(self, user_id: Optional[str] = None) -> list[UserMapping]:
        rows = self._records(self._client.settings.user_mappings_sheet_name, USER_MAPPING_COLUMNS)
        mappings = []
        for record in rows:
            if not _cell(record, "pattern") or not _cell(record, "account_path"):
                continue
            row_user = _cell(record, "user_id")
            if user_id and row_user and row_user != user_id:
                continue
            mappings.append(UserMapping(
                pattern=_cell(record, "pattern"),
                account_path=_cell(record, "account_path"),
                match_type=MatchType(_cell(record, "match_type") or MatchType.EXACT.value),
                user_id=row_user,
                business_context=_cell(record, "business_context"),
                priority=int(_cell(record, "priority") or 0),
            ))
        return mappings

    async def get_vendor_mappings(self) -> list[VendorMapping]:
        rows = self._records(self._client.settings.vendor_mappings_sheet_name, VENDOR_MAPPING_COLUMNS)
        return [
            VendorMapping(
                vendor_name=_cell(record, "vendor_name"),
                account_path=_cell(record, "account_path"),
                vendor_pattern=_cell(record, "vendor_pattern"),
                business_context=_cell(record, "business_context"),
            )
            for record in rows
            if _cell(record, "vendor_name") and _cell(record, "account_path")
        ]

    async def get_account_patterns(
        self,
        business: Optional[str] = None,
    ) -> list[AccountPattern]:
        rows = self._records(self._client.settings.account_patterns_sheet_name, ACCOUNT_PATTERN_COLUMNS)
        patterns = []
        for record in rows:
            if not _cell(record, "pattern") or not _cell(record, "account_path"):
                continue
            context = _cell(record, "business_context")
            if business and context and context != business:
                continue
            patterns.append(AccountPattern(
                pattern=_cell(record, "pattern"),
                account_path=_cell(record, "account_path"),
                match_type=MatchType(_cell(record, "match_type") or MatchType.REGEX.value),
                business_context=context,
                priority=int(_cell(record, "priority") or 0),
            ))
        return patterns

    async def get_business_context(self, business: str) -> Optional[BusinessContext]:
        rows = self._records(self._client.settings.business_contexts_sheet_name, BUSINESS_CONTEXT_COLUMNS)
        for record in rows:
            if _cell(record, "business_name") == business:
                return BusinessContext(
                    business_name=business,
                    default_account_type=AccountType(
                        _cell(record, "default_account_type") or AccountType.EXPENSE.value
                    ),
                    description=_cell(record, "description"),
                )
        return None

    async def get_account_type_patterns(self) -> list[AccountTypePattern]:
        rows = self._records(
            self._client.settings.account_type_patterns_sheet_name,
            ACCOUNT_TYPE_PATTERN_COLUMNS,
        )
        return [
            AccountTypePattern(
                pattern=_cell(record, "pattern"),
                account_type=AccountType(_cell(record, "account_type")),
                confidence=float(_cell(record, "confidence") or 0.5),
                priority=int(_cell(record, "priority") or 0),
            )
            for record in rows
            if _cell(record, "pattern") and _cell(record, "account_type")
        ]
