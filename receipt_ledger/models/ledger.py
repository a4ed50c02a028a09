"""
Ledger Models for Receipt Ledger

Postings, account paths, mapping results and the rows persisted for a
ledger entry.

DESIGN DECISION: An account path is not an entity, only a validated
string. It is expressed as an Annotated str so that every model field
holding one is checked the same way.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    field_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Top-level account classes of double-entry bookkeeping."""
    EXPENSE = "expense"
    ASSET = "asset"
    LIABILITY = "liability"
    INCOME = "income"
    EQUITY = "equity"

    @property
    def root(self) -> str:
        """Name of the top-level account segment for this type."""
        return ACCOUNT_TYPE_ROOTS[self]


ACCOUNT_TYPE_ROOTS = {
    AccountType.EXPENSE: "Expenses",
    AccountType.ASSET: "Assets",
    AccountType.LIABILITY: "Liabilities",
    AccountType.INCOME: "Income",
    AccountType.EQUITY: "Equity",
}


class EntryType(str, Enum):
    """Kind of transaction a receipt is booked as."""
    EXPENSE = "expense"
    INCOME = "income"
    ASSET = "asset"
    LIABILITY = "liability"
    TRANSFER = "transfer"

    @property
    def account_type(self) -> AccountType:
        """Root the items are mapped under; transfers are mapped like expenses."""
        if self == EntryType.TRANSFER:
            return AccountType.EXPENSE
        return AccountType(self.value)


class MappingSource(str, Enum):
    """Which mapping stage produced an account."""
    PATTERN = "pattern"
    VENDOR = "vendor"
    USER = "user"
    BUSINESS_DEFAULT = "business_default"
    AI = "ai"
    STATIC_FALLBACK = "static_fallback"


class MatchType(str, Enum):
    """How a mapping-table pattern is compared with a description."""
    EXACT = "exact"
    CONTAINS = "contains"
    REGEX = "regex"


# =============================================================================
# ACCOUNT PATH
# =============================================================================

ACCOUNT_PATH_RE = re.compile(r"^[A-Z][A-Za-z]*(?::[A-Z][A-Za-z]*)*$")
BUSINESS_WORD_RE = re.compile(r"[A-Za-z]+")


def is_account_path(value: str) -> bool:
    """True when value is a colon-delimited PascalCase account path."""
    return bool(ACCOUNT_PATH_RE.match(value or ""))


def validate_account_path(value: str) -> str:
    value = value.strip()
    if not is_account_path(value):
        raise ValueError(f"Invalid account path: {value!r}")
    return value


def normalize_business_name(name: Optional[str], default: str = "Personal") -> str:
    """
    Turn a business name into a single account path segment.

    Letters are kept and each word is capitalized: 'my brick' -> 'MyBrick',
    'MyBrick' -> 'MyBrick'. A name without letters gives the default.
    """
    words = BUSINESS_WORD_RE.findall(name or "")
    if not words:
        return default
    return "".join(word[0].upper() + word[1:] for word in words)


AccountPath = Annotated[str, AfterValidator(validate_account_path)]

Currency = Annotated[str, StringConstraints(pattern=r"^[A-Z]{3}$")]


# =============================================================================
# POSTINGS
# =============================================================================

class Posting(BaseModel):
    """
    One signed account/amount line of a ledger entry.

    Positive amounts debit the account, negative amounts credit it.
    """

    model_config = ConfigDict(frozen=True)

    account: AccountPath
    amount: Decimal
    currency: Optional[Currency] = None


class ParsedLedgerLine(BaseModel):
    """A posting line read back from ledger text (amount may be elided)."""

    account: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None


class ParsedLedgerEntry(BaseModel):
    """Semantic fields recovered from a written ledger entry."""

    date: date
    payee: str
    expense_account: str
    asset_account: str
    amount: Decimal
    currency: str = "THB"
    business_name: str = "Personal"
    lines: list[ParsedLedgerLine] = Field(default_factory=list)


# =============================================================================
# ACCOUNT MAPPING
# =============================================================================

class MappingResult(BaseModel):
    """
    Outcome of classifying one line item.

    Only `account` ever flows into a Posting; the rest explains how the
    account was chosen.
    """

    account: AccountPath
    account_type: AccountType = AccountType.EXPENSE
    confidence: float = Field(ge=0.0, le=1.0)
    source: MappingSource
    category: Optional[str] = Field(
        default=None,
        description="Business-relative category, e.g. Food:Coffee"
    )
    matched_rule: Optional[str] = Field(
        default=None,
        description="Pattern, vendor or rule that produced the match"
    )


class AccountTypeDetection(BaseModel):
    """Result of the keyword account-type classifier."""

    account_type: AccountType
    confidence: float = Field(ge=0.0, le=1.0)
    matched_pattern: Optional[str] = None


class MappingRequest(BaseModel):
    """Input to one run of the mapping chain."""

    description: str
    vendor: Optional[str] = None
    business: Optional[str] = None
    user_id: Optional[str] = None
    account_type: AccountType = AccountType.EXPENSE


# Mapping table rows. `account_path` is either an absolute path
# (Expenses:Personal:Food) or a business-relative category (Food:Coffee)
# that the mapper places under the account type root and business.

class UserMapping(BaseModel):
    """A user-saved override for a description."""

    pattern: str
    account_path: str
    match_type: MatchType = MatchType.EXACT
    user_id: Optional[str] = None
    business_context: Optional[str] = None
    priority: int = 0


class VendorMapping(BaseModel):
    """Maps a vendor name (or regex) to an account."""

    vendor_name: str
    account_path: str
    vendor_pattern: Optional[str] = None
    business_context: Optional[str] = None

    @field_validator('vendor_name')
    @classmethod
    def normalize_vendor_name(cls, v: str) -> str:
        return normalize_vendor(v)


class AccountPattern(BaseModel):
    """A general description pattern."""

    pattern: str
    account_path: str
    match_type: MatchType = MatchType.REGEX
    business_context: Optional[str] = None
    priority: int = 0


class BusinessContext(BaseModel):
    """Defaults for a named business."""

    business_name: str
    default_account_type: AccountType = AccountType.EXPENSE
    description: Optional[str] = None


class AccountTypePattern(BaseModel):
    """Keyword regex used by account-type detection."""

    pattern: str
    account_type: AccountType
    confidence: float = Field(ge=0.0, le=1.0)
    priority: int = 0


def normalize_vendor(value: Optional[str]) -> str:
    """Lowercase and drop all whitespace, so 'Star Bucks' == 'starbucks'."""
    return re.sub(r"\s+", "", (value or "").lower())


# =============================================================================
# PERSISTED ROWS
# =============================================================================

class LedgerEntryRecord(BaseModel):
    """Header row of a persisted ledger entry."""

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    entry_date: date
    payee: str
    amount: Decimal
    currency: Currency
    business_name: str = "Personal"
    entry_text: str
    entry_raw: dict[str, Any] = Field(
        default_factory=dict,
        description="Structured payload the entry was built from"
    )
    memo: Optional[str] = None
    image_url: Optional[str] = None


class PostingRecord(BaseModel):
    """One posting row belonging to a ledger entry, kept in entry order."""

    entry_id: UUID
    account: str
    amount: Decimal
    currency: str
    sort_order: int = Field(ge=0)
