"""
Receipt Models for Receipt Ledger

These models define the shapes that flow from the parsers and the OCR
segmenter into the postings builder.

DESIGN DECISION: Money is Decimal, quantized to cents on the way in.
Receipt arithmetic (subtotal, total) is NOT checked here; mismatches are
reported by the validator so that the user can fix them explicitly.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from receipt_ledger.models.ledger import (
    BUSINESS_WORD_RE,
    EntryType,
    normalize_business_name,
    validate_account_path,
)
from receipt_ledger.models.validation import ValidationIssue


CENT = Decimal("0.01")


def _to_cents(value: Optional[Decimal]) -> Optional[Decimal]:
    if value is None:
        return None
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# =============================================================================
# RECEIPT
# =============================================================================

class ReceiptItem(BaseModel):
    """A single purchased line. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    description: str = Field(
        ...,
        min_length=1,
        description="What was bought"
    )
    price: Decimal = Field(
        ...,
        description="Line price, two decimals, never negative"
    )

    @field_validator('description')
    @classmethod
    def strip_description(cls, v: str) -> str:
        v = " ".join(v.split())
        if not v:
            raise ValueError("description cannot be empty")
        return v

    @field_validator('price')
    @classmethod
    def price_in_cents(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("price cannot be negative")
        return _to_cents(v)


class ReceiptShape(BaseModel):
    """
    Normalized receipt: items plus optional summary amounts.

    An empty item list is representable so that segmentation can return
    "nothing found"; the validator rejects it before postings are built.
    """

    model_config = ConfigDict(frozen=True)

    items: list[ReceiptItem] = Field(default_factory=list)
    subtotal: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    total: Optional[Decimal] = None

    @field_validator('subtotal', 'tax', 'total')
    @classmethod
    def amounts_in_cents(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _to_cents(v)

    @property
    def items_sum(self) -> Decimal:
        return sum((item.price for item in self.items), Decimal("0.00"))


# =============================================================================
# COMMAND / PAYLOAD
# =============================================================================

class ParsedCommand(BaseModel):
    """Result of parsing a free-text 'new' command."""

    date: date
    payee: str
    currency: str
    receipt: ReceiptShape
    memo: Optional[str] = None
    payment_account: Optional[str] = None
    payee_confidence: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="How sure the parser is about the payee/description split"
    )


class NewCommandPayload(BaseModel):
    """
    Structured payload accepted by the 'new' command.

    Field names on the wire are camelCase (paymentAccount, imageUrl, entryType);
    snake_case is accepted as well.
    """

    model_config = ConfigDict(populate_by_name=True)

    date: date
    payee: str = Field(..., min_length=1)
    currency: str = Field(default="THB")
    receipt: ReceiptShape
    payment_account: Optional[str] = Field(default=None, alias="paymentAccount")
    memo: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    business: Optional[str] = Field(
        default=None,
        description="Business the entry belongs to, normalized to one account segment ('my brick' -> 'MyBrick')"
    )
    vendor: Optional[str] = None
    entry_type: EntryType = Field(default=EntryType.EXPENSE, alias="entryType")

    @field_validator('payee')
    @classmethod
    def strip_payee(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("payee cannot be empty")
        return v

    @field_validator('currency')
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError(f"Invalid currency code: {v!r}")
        return v

    @field_validator('business')
    @classmethod
    def normalize_business(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        if not BUSINESS_WORD_RE.search(v):
            raise ValueError(f"Business name must contain letters: {v!r}")
        return normalize_business_name(v)

    @field_validator('payment_account')
    @classmethod
    def check_payment_account(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return validate_account_path(v)

    def to_wire(self) -> dict:
        """JSON-compatible dict using the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# SEGMENTATION
# =============================================================================

class SectionBounds(BaseModel):
    """Line indexes (into raw_lines) of the item and summary regions."""

    items_start: int
    items_end: int
    summary_start: int
    summary_end: int


class SegmentResult(BaseModel):
    """Items and summary values isolated from raw OCR text."""

    items: list[ReceiptItem] = Field(default_factory=list)
    subtotal: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    total: Optional[Decimal] = None
    raw_lines: list[str] = Field(default_factory=list)
    section: Optional[SectionBounds] = None
    block: str = Field(
        default="",
        description="Item and summary lines kept by the segmenter"
    )
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: str = Field(
        default="heuristic",
        description="Which segmenter produced this result: llm or heuristic"
    )
    rationale: Optional[str] = None
    vendor: Optional[str] = None
    receipt_date: Optional[date] = None

    def to_receipt(self) -> ReceiptShape:
        return ReceiptShape(
            items=self.items,
            subtotal=self.subtotal,
            tax=self.tax,
            total=self.total,
        )


class OcrReceiptExtraction(BaseModel):
    """Receipt built from OCR text, with the segmentation behind it."""

    receipt: ReceiptShape
    segment: SegmentResult
    reconciled: bool = Field(
        default=False,
        description="Did summary reconciliation change subtotal, tax or total?"
    )
    math_issues: list[ValidationIssue] = Field(default_factory=list)
