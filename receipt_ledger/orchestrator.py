"""
Main Orchestrator for Receipt Ledger

This module ties together all the components and defines the
end-to-end flow of the 'new' command:

    text / JSON / OCR text → parse or segment → validate → map accounts
    → build postings → balance → render → persist → audit

DESIGN DECISION: The orchestrator enforces the boundaries:
- No entry is built from a receipt that fails validation
- No entry is rendered or persisted unless its postings balance
- Every step is audited

Classification and segmentation degrade quietly (a lower-confidence guess
beats no entry); parsing, validation, balance and storage errors propagate
to the caller.
"""

import re
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from receipt_ledger.agents import (
    CategoryEnhancementAgent,
    GeminiLlmClient,
    LlmClient,
    ReceiptSegmentationAgent,
)
from receipt_ledger.audit import AuditLogger, create_correlation_id
from receipt_ledger.config import LedgerSettings, get_settings
from receipt_ledger.ledger import (
    BalanceError,
    HybridAccountMapper,
    LedgerValidationError,
    ParseError,
    StaticMappingTables,
    assert_balanced,
    auto_balance,
    build_postings_detailed,
    default_payment_account,
    parse_manual_command,
    render_ledger,
    segment_receipt_ocr,
)
from receipt_ledger.ledger.currency import to_decimal
from receipt_ledger.ledger.receipt_metadata import (
    DEFAULT_VENDOR_HINTS,
    VendorHints,
    load_vendor_hints,
)
from receipt_ledger.ledger.segmenter import BlockSegmenter
from receipt_ledger.models.ledger import (
    EntryType,
    LedgerEntryRecord,
    MappingResult,
    Posting,
    PostingRecord,
    normalize_business_name,
)
from receipt_ledger.models.receipt import (
    NewCommandPayload,
    OcrReceiptExtraction,
    ReceiptShape,
    SegmentResult,
)
from receipt_ledger.models.validation import ValidationIssue, ValidationResult
from receipt_ledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsMappingTables,
    LedgerStorageInterface,
    MappingTableInterface,
    StorageError,
)
from receipt_ledger.validation import (
    ReceiptValidator,
    parse_new_command_payload,
    reconcile_receipt_summary,
    validate_receipt_math,
)

logger = structlog.get_logger(__name__)

NEW_COMMAND_RE = re.compile(r"^\s*new\b", re.IGNORECASE)
OCR_PAYEE_FALLBACK = "Receipt"


class LedgerEntryResult(BaseModel):
    """A balanced, rendered ledger entry and how it was produced."""

    entry_id: UUID
    entry_date: date
    payee: str
    currency: str
    text: str = Field(..., description="Rendered ledger entry")
    postings: list[Posting]
    mappings: list[MappingResult] = Field(default_factory=list)
    validation: ValidationResult
    auto_balanced: bool = Field(
        default=False,
        description="Was a rounding difference absorbed by one posting?"
    )
    saved: bool = False
    payee_confidence: Optional[float] = None
    segment: Optional[SegmentResult] = None
    math_issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="OCR receipt math warnings shown next to the entry"
    )


async def extract_receipt_from_ocr(
    raw: str,
    agent: Optional[BlockSegmenter] = None,
    reconcile: bool = True,
    tolerance: Decimal = Decimal("0.05"),
    hints: VendorHints = DEFAULT_VENDOR_HINTS,
) -> OcrReceiptExtraction:
    """
    Segment OCR text into a receipt and check its arithmetic.

    Missing summary values are inferred when `reconcile` is set; math
    problems are returned as warnings, never raised.
    """
    segment = await segment_receipt_ocr(raw, agent, hints)
    receipt = segment.to_receipt()
    reconciled = reconcile_receipt_summary(receipt) if reconcile else receipt
    return OcrReceiptExtraction(
        receipt=reconciled,
        segment=segment,
        reconciled=reconciled != receipt,
        math_issues=validate_receipt_math(reconciled, tolerance),
    )


class LedgerEntryFlow:
    """
    Orchestrates creation of one ledger entry.

    Flow:
    1. Parse  → manual command, JSON payload, or OCR segmentation
    2. Validate → two-stage receipt validation (rejects, never fixes)
    3. Map → one account per item (and tax), concurrently
    4. Balance → assert_balanced, else absorb rounding via auto_balance
    5. Render → canonical ledger text
    6. Save → header + posting rows, when storage is configured
    """

    def __init__(
        self,
        mapper: HybridAccountMapper,
        validator: Optional[ReceiptValidator] = None,
        segmentation_agent: Optional[BlockSegmenter] = None,
        ledger_storage: Optional[LedgerStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self._settings = settings or get_settings().ledger
        self._mapper = mapper
        self._validator = validator or ReceiptValidator(self._settings)
        self._segmentation_agent = segmentation_agent
        self._ledger_storage = ledger_storage
        self._audit_logger = audit_logger
        self._today = today or date.today
        self._vendor_hints = load_vendor_hints(self._settings.vendor_hints_path)

    async def handle_new_command(
        self,
        text: str,
        business: Optional[str] = None,
        entry_type: EntryType = EntryType.EXPENSE,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEntryResult:
        """
        Handle a 'new' message.

        A body starting with '{' is the structured JSON payload; anything
        else is a manual command such as 'new coffee 75 @Starbucks'.

        Raises:
            ParseError, LedgerValidationError, BalanceError, StorageError
        """
        correlation_id = correlation_id or create_correlation_id()
        if self._audit_logger:
            await self._audit_logger.log_command_received(text, correlation_id)

        body = NEW_COMMAND_RE.sub("", text or "", count=1).strip()
        if body.startswith("{"):
            return await self.create_from_payload(
                body,
                user_id=user_id,
                correlation_id=correlation_id,
            )

        try:
            parsed = parse_manual_command(
                body,
                default_currency=self._settings.default_currency,
                today=self._today,
            )
        except ParseError as e:
            if self._audit_logger:
                await self._audit_logger.log_parse_failed("command", str(e), correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_command_parsed(
                payee=parsed.payee,
                amount=str(parsed.receipt.total),
                currency=parsed.currency,
                payee_confidence=parsed.payee_confidence,
                correlation_id=correlation_id,
            )

        result = await self._create_entry(
            entry_date=parsed.date,
            payee=parsed.payee,
            receipt=parsed.receipt,
            currency=parsed.currency,
            payment_account=parsed.payment_account,
            vendor=parsed.payee,
            business=business,
            memo=parsed.memo,
            entry_raw={"command": body},
            entry_type=entry_type,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        return result.model_copy(update={"payee_confidence": parsed.payee_confidence})

    async def create_from_payload(
        self,
        payload: Union[NewCommandPayload, str, bytes, dict[str, Any]],
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEntryResult:
        """Create an entry from the structured payload (object or raw JSON)."""
        correlation_id = correlation_id or create_correlation_id()
        if not isinstance(payload, NewCommandPayload):
            try:
                payload = parse_new_command_payload(payload, self._validator)
            except ParseError as e:
                if self._audit_logger:
                    await self._audit_logger.log_parse_failed("payload", str(e), correlation_id)
                raise
            except LedgerValidationError as e:
                await self._audit_validation_failed("payload", e.issues, correlation_id)
                raise

        return await self._create_entry(
            entry_date=payload.date,
            payee=payload.payee,
            receipt=payload.receipt,
            currency=payload.currency,
            payment_account=payload.payment_account,
            vendor=payload.vendor or payload.payee,
            business=payload.business,
            memo=payload.memo,
            image_url=payload.image_url,
            entry_raw=payload.to_wire(),
            user_id=user_id,
            entry_type=payload.entry_type,
            correlation_id=correlation_id,
        )

    async def create_from_ocr(
        self,
        raw_text: str,
        entry_date: Optional[date] = None,
        payee: Optional[str] = None,
        currency: Optional[str] = None,
        payment_account: Optional[str] = None,
        business: Optional[str] = None,
        image_url: Optional[str] = None,
        entry_type: EntryType = EntryType.EXPENSE,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEntryResult:
        """
        Create an entry from raw OCR receipt text.

        Date and payee default to what the receipt itself shows, then to
        today and a generic payee.
        """
        correlation_id = correlation_id or create_correlation_id()
        agent = self._segmentation_agent if self._settings.use_llm_segmentation else None

        extraction = await extract_receipt_from_ocr(
            raw_text,
            agent=agent,
            tolerance=to_decimal(self._settings.ocr_math_tolerance),
            hints=self._vendor_hints,
        )
        segment = extraction.segment

        if self._audit_logger:
            await self._audit_logger.log_ocr_segmented(
                source=segment.source,
                item_count=len(segment.items),
                confidence=segment.confidence,
                correlation_id=correlation_id,
            )
            if agent is not None and segment.source != "llm":
                await self._audit_logger.log_segmentation_fallback(
                    reason=segment.rationale or "llm segmentation unavailable",
                    correlation_id=correlation_id,
                )

        result = await self._create_entry(
            entry_date=entry_date or segment.receipt_date or self._today(),
            payee=payee or segment.vendor or OCR_PAYEE_FALLBACK,
            receipt=extraction.receipt,
            currency=currency or self._settings.default_currency,
            payment_account=payment_account,
            vendor=segment.vendor or payee,
            business=business,
            image_url=image_url,
            entry_raw={
                "block": segment.block,
                "source": segment.source,
                "confidence": segment.confidence,
            },
            entry_type=entry_type,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        return result.model_copy(update={
            "segment": segment,
            "math_issues": extraction.math_issues,
        })

    async def _audit_validation_failed(
        self,
        stage: str,
        issues: list,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_validation_failed(
                stage=stage,
                issues=[
                    {"field": i.field, "type": i.issue_type, "message": i.message}
                    for i in issues
                ],
                correlation_id=correlation_id,
            )

    async def _balance(
        self,
        postings: list[Posting],
        payment_account: str,
        correlation_id: UUID,
    ) -> tuple[list[Posting], bool]:
        try:
            assert_balanced(postings, self._settings.balance_tolerance)
            return postings, False
        except BalanceError as unbalanced:
            try:
                balanced = auto_balance(
                    postings,
                    threshold=self._settings.auto_balance_threshold,
                    anchor=payment_account,
                )
            except BalanceError as e:
                if self._audit_logger:
                    await self._audit_logger.log_balance_failed(str(e.difference), correlation_id)
                raise
            if self._audit_logger:
                await self._audit_logger.log_entry_auto_balanced(
                    difference=str(unbalanced.difference),
                    adjusted_account=_adjusted_account(postings, balanced),
                    correlation_id=correlation_id,
                )
            return balanced, True

    async def _create_entry(
        self,
        entry_date: date,
        payee: str,
        receipt: ReceiptShape,
        currency: str,
        payment_account: Optional[str],
        vendor: Optional[str],
        business: Optional[str],
        correlation_id: UUID,
        memo: Optional[str] = None,
        image_url: Optional[str] = None,
        entry_raw: Optional[dict[str, Any]] = None,
        entry_type: EntryType = EntryType.EXPENSE,
        user_id: Optional[str] = None,
    ) -> LedgerEntryResult:
        payment_account = (
            payment_account
            or default_payment_account(entry_type, receipt, self._settings.default_payment_account)
        )
        business = normalize_business_name(business, self._settings.default_business)

        validation = self._validator.validate(receipt, currency, payment_account)
        if not validation.is_valid:
            stage = "schema" if not validation.schema_valid else "semantic"
            await self._audit_validation_failed(stage, validation.issues, correlation_id)
            raise LedgerValidationError(validation.issues)

        postings, mappings = await build_postings_detailed(
            receipt,
            self._mapper.map_account,
            currency=currency,
            payment_account=payment_account,
            include_tax_line=self._settings.include_tax_line,
            vendor=vendor,
            business=business,
            entry_type=entry_type,
            user_id=user_id,
        )
        postings, auto_balanced = await self._balance(postings, payment_account, correlation_id)

        text = render_ledger(entry_date, payee, postings, currency)
        payment = postings[-1]
        record = LedgerEntryRecord(
            entry_date=entry_date,
            payee=payee,
            amount=abs(payment.amount),
            currency=currency,
            business_name=business,
            entry_text=text,
            entry_raw=entry_raw or {},
            memo=memo,
            image_url=image_url,
        )

        saved = False
        if self._ledger_storage:
            rows = [
                PostingRecord(
                    entry_id=record.id,
                    account=posting.account,
                    amount=posting.amount,
                    currency=posting.currency or currency,
                    sort_order=index,
                )
                for index, posting in enumerate(postings)
            ]
            try:
                await self._ledger_storage.save_entry(record, rows)
            except StorageError as e:
                if self._audit_logger:
                    await self._audit_logger.log_save_failed(record.id, str(e), correlation_id)
                raise
            except Exception as e:
                if self._audit_logger:
                    await self._audit_logger.log_external_service_error(
                        service="ledger_storage",
                        error_message=str(e),
                        correlation_id=correlation_id,
                    )
                raise
            saved = True
            if self._audit_logger:
                await self._audit_logger.log_entry_saved(
                    entry_id=record.id,
                    payee=payee,
                    amount=str(record.amount),
                    currency=currency,
                    correlation_id=correlation_id,
                )

        return LedgerEntryResult(
            entry_id=record.id,
            entry_date=entry_date,
            payee=payee,
            currency=currency,
            text=text,
            postings=postings,
            mappings=mappings,
            validation=validation,
            auto_balanced=auto_balanced,
            saved=saved,
        )


def _adjusted_account(before: list[Posting], after: list[Posting]) -> str:
    """Account whose amount auto_balance changed."""
    amounts = {(p.account, p.amount) for p in before}
    changed = next((p for p in after if (p.account, p.amount) not in amounts), None)
    return changed.account if changed else ""


def create_app_components(
    use_storage: bool = True,
    use_llm: bool = True,
) -> tuple[LedgerEntryFlow, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for testing without storage.
        use_llm: Whether to initialize the Gemini client for segmentation
                    and category enhancement.

    Returns:
        (ledger_entry_flow, sheets_client)
    """
    settings = get_settings().ledger
    sheets_client = None
    ledger_storage = None
    tables: MappingTableInterface = StaticMappingTables()
    audit_logger = AuditLogger()  # Local-only logging

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            ledger_storage = GoogleSheetsLedgerStorage(sheets_client)
            tables = GoogleSheetsMappingTables(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            ledger_storage = None
            tables = StaticMappingTables()

    client: Optional[LlmClient] = None
    if use_llm:
        try:
            client = GeminiLlmClient()
        except Exception as e:
            logger.warning("llm_not_configured", error=str(e))

    mapper = HybridAccountMapper(
        tables,
        enhancer=CategoryEnhancementAgent(client) if client else None,
        settings=settings,
        audit_logger=audit_logger,
    )
    flow = LedgerEntryFlow(
        mapper=mapper,
        segmentation_agent=ReceiptSegmentationAgent(client) if client else None,
        ledger_storage=ledger_storage,
        audit_logger=audit_logger,
        settings=settings,
    )
    return flow, sheets_client
