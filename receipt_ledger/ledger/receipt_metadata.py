"""
Receipt metadata: vendor name and purchase date guessed from OCR lines.

Vendor hints (known chain names and slogans) are plain data and can be
replaced with a JSON file of the same shape:

    {"known_names": ["STARBUCKS", ...],
     "slogans": [{"pattern": "Every little helps", "vendor": "Tesco"}]}
"""

import json
import re
from datetime import date
from pathlib import Path
from typing import Optional, Sequence, Union

from pydantic import BaseModel, Field


class SloganHint(BaseModel):
    pattern: str
    vendor: str


class VendorHints(BaseModel):
    """Known vendor names (matched as upper-case substrings) and slogans."""

    known_names: list[str] = Field(default_factory=list)
    slogans: list[SloganHint] = Field(default_factory=list)

    def known_words(self) -> list[str]:
        return [name.strip().upper() for name in self.known_names if name.strip()]

    def slogan_patterns(self) -> list[tuple[re.Pattern, str]]:
        # Slogans are literal text, not regex syntax
        return [
            (re.compile(rf"(?<!\w){re.escape(hint.pattern)}(?!\w)", re.IGNORECASE), hint.vendor)
            for hint in self.slogans
        ]


DEFAULT_VENDOR_HINTS = VendorHints(
    known_names=[
        "STARBUCKS", "7-ELEVEN", "FAMILYMART", "LAWSON", "TESCO LOTUS", "LOTUS'S",
        "BIG C", "TOPS", "MAKRO", "VILLA MARKET", "GOURMET MARKET", "HOMEPRO",
        "IKEA", "WALMART", "TARGET", "COSTCO", "SAFEWAY", "KROGER",
        "WHOLE FOODS", "TRADER JOE'S", "MCDONALD'S", "KFC", "BURGER KING",
        "WATSONS", "BOOTS", "UNIQLO", "GRAB", "AMAZON",
    ],
    slogans=[
        SloganHint(pattern="Save money. Live better.", vendor="Walmart"),
        SloganHint(pattern="Expect more. Pay less.", vendor="Target"),
        SloganHint(pattern="Every little helps", vendor="Tesco Lotus"),
        SloganHint(pattern="I'm lovin' it", vendor="McDonald's"),
        SloganHint(pattern="Finger lickin' good", vendor="KFC"),
    ],
)


def load_vendor_hints(path: Optional[Union[str, Path]] = None) -> VendorHints:
    """Load hints from a JSON file, or return the built-in ones."""
    if path is None:
        return DEFAULT_VENDOR_HINTS
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return VendorHints.model_validate(data)


# =============================================================================
# VENDOR
# =============================================================================

PHONE_RE = re.compile(
    r"(?:\+?\d{1,3}[\s.-]?)?(?:\(\d{2,4}\)|\d{2,4})[\s.-]?\d{2,4}[\s.-]?\d{3,4}"
)
STORE_META_RE = re.compile(r"(?:\bST#|\bSTORE\b|\bOP#|\bTE#|\bTR#|\bTILL\b|\bREG\b)", re.IGNORECASE)
ADDRESS_LIKE_RE = re.compile(
    r"\b(?:AVE|AVENUE|ST|STREET|RD|ROAD|BLVD|DR|DRIVE|FL|FLOOR|SUITE|ZIP|CITY|STATE|SOI|MOO)\b",
    re.IGNORECASE,
)
NOT_VENDOR_META_RE = re.compile(
    r"\b(ISSUED\s+TO|INVOICE\s*NO|INVOICE\s*#|BILL\s+TO|SHIP\s+TO|PAY\s+TO|PO\s*#|P\.?O\.?"
    r"|RECEIPT\s*(?:NO|#)|DATE|DUE\s+DATE|ACCOUNT\s+NO|ACCOUNT\s+NAME"
    r"|DESCRIPTION\s+UNIT\s+PRICE|DESCRIPTION\s+PRICE|UNIT\s+PRICE|QTY|QUANTITY|AMOUNT"
    r"|TOTAL\s+DUE|BALANCE\s+DUE|AMOUNT\s+DUE|TERMS|CONDITIONS|PAYMENT\s+DUE|TAX\s+INVOICE)\b",
    re.IGNORECASE,
)
STAFF_LINE_RE = re.compile(
    r"\b(MANAGER|ASSISTANT|CASHIER|CUSTOMER COPY|MERCHANT COPY)\b", re.IGNORECASE
)
HEADER_SCAN_LIMIT = 25


def _title_case(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split())


def pick_likely_vendor(
    lines: Sequence[str],
    items_start: int = -1,
    hints: VendorHints = DEFAULT_VENDOR_HINTS,
) -> Optional[str]:
    """
    Guess the vendor from the header lines (before the first item).

    Tries slogans, then known names, then the first short, mostly
    alphabetic line that is not a phone, address or metadata row.
    """
    header_end = HEADER_SCAN_LIMIT if items_start < 0 else min(items_start, HEADER_SCAN_LIMIT)
    header = list(lines[:header_end])

    for line in header:
        for pattern, vendor in hints.slogan_patterns():
            if pattern.search(line):
                return vendor

    known = hints.known_words()
    for line in header:
        canon = re.sub(r"[^A-Za-z0-9\s'-]", " ", line)
        canon = " ".join(canon.split()).upper()
        for word in known:
            if word in canon:
                return _title_case(word)

    for raw in header:
        line = raw.strip()
        if not line:
            continue
        if (
            PHONE_RE.search(line)
            or STORE_META_RE.search(line)
            or ADDRESS_LIKE_RE.search(line)
            or NOT_VENDOR_META_RE.search(line)
            or STAFF_LINE_RE.search(line)
        ):
            continue
        cleaned = " ".join(re.sub(r"[_<>*#|]", " ", line).split())
        letters = len(re.sub(r"[^A-Za-z]", "", cleaned))
        if len(cleaned.split()) <= 5 and letters / max(len(cleaned), 1) > 0.6:
            return _title_case(cleaned)

    return None


# =============================================================================
# DATE
# =============================================================================

SLASH_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4}|\d{2})\b")
ISO_DATE_RE = re.compile(r"\b(\d{4})[-/](\d{1,2})[-/](\d{1,2})\b")
DOT_DATE_RE = re.compile(r"\b(\d{1,2})\.(\d{1,2})\.(\d{4})\b")
MONTH_NAME_DATE_RE = re.compile(
    r"\b(JAN|FEB|MAR|APR|MAY|JUN|JUL|AUG|SEP|OCT|NOV|DEC)[A-Z]*\.?\s+(\d{1,2}),?\s+(\d{4})\b",
    re.IGNORECASE,
)
MONTHS = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    if year < 100:
        year += 2000
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _slash_date(a: int, b: int, year: int) -> Optional[date]:
    # Day-first only when the first number cannot be a month
    if a > 12 >= b:
        return _safe_date(year, b, a)
    return _safe_date(year, a, b)


def extract_date(lines: Sequence[str]) -> Optional[date]:
    """First date found in the lines, or None."""
    for line in lines:
        match = ISO_DATE_RE.search(line)
        if match:
            found = _safe_date(*(int(part) for part in match.groups()))
            if found:
                return found
        match = SLASH_DATE_RE.search(line)
        if match:
            a, b, year = (int(part) for part in match.groups())
            found = _slash_date(a, b, year)
            if found:
                return found
        match = DOT_DATE_RE.search(line)
        if match:
            day, month, year = (int(part) for part in match.groups())
            found = _safe_date(year, month, day)
            if found:
                return found
        match = MONTH_NAME_DATE_RE.search(line)
        if match:
            month = MONTHS.index(match.group(1).upper()) + 1
            found = _safe_date(int(match.group(3)), month, int(match.group(2)))
            if found:
                return found
    return None
