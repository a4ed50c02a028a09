"""
Receipt OCR / invoice segmenter.

OCR text mixes item rows, metadata rows (invoice numbers, dates, "bill
to") and summary rows. Segmentation:

1. classify each line with `price_near_end` (trailing money token, not a
   header label, not a date row)
2. collect item lines from the first item-like line up to SUBTOTAL
3. read SUBTOTAL, TAX/VAT/GST and the first genuine sale TOTAL after it
4. without a SUBTOTAL, collect items until the first TOTAL-like line

An LLM may be asked to isolate the item/summary block first. Any failure
there falls back to the heuristics; the heuristics never raise and
return no items with confidence 0 when nothing looks like an item.
"""

import re
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional, Protocol, Sequence

import structlog

from receipt_ledger.ledger.currency import parse_money2
from receipt_ledger.ledger.errors import ParseError
from receipt_ledger.ledger.receipt_metadata import (
    DEFAULT_VENDOR_HINTS,
    VendorHints,
    extract_date,
    pick_likely_vendor,
)
from receipt_ledger.models.receipt import ReceiptItem, SectionBounds, SegmentResult

logger = structlog.get_logger(__name__)


# =============================================================================
# LINE CLASSIFICATION
# =============================================================================

MONEY_PATTERN = r"[$฿€£]?\s*(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{2,3})?[$฿€£]?"
MONEY_RE = re.compile(MONEY_PATTERN)

TRAILING_FLAGS_RE = re.compile(
    r"^(?:\s+(?:USD|THB|EUR|GBP|[A-Za-z0-9%§]{1,4})){0,2}\s*[)\]>»】）]*\s*$",
    re.IGNORECASE,
)
DATE_CONTINUATION_RE = re.compile(r"^\s*\.\d{2,4}\b")
CLOSING_PUNCT_RE = re.compile(r"[\s)\]>»】）]+$")
# Tax codes, short SKUs and sizes left at the end of a description
TRAILING_TAG_RE = re.compile(r"\s+[A-Z0-9§%]{1,4}$")

NOT_ITEM_HEADERS_RE = re.compile(
    r"\b(ISSUED\s+TO|BILL\s+TO|SHIP\s+TO|PAY\s+TO|INVOICE\s*NO\.?|INVOICE\s+#|PO\.?|P\.O\."
    r"|RECEIPT\s*(?:NO|#)?|DATE|DUE\s+DATE|ACCOUNT|BANK|DESCRIPTION\s*UNIT\s*PRICE"
    r"|DESCRIPTION|UNIT\s*PRICE|QTY|AMOUNT|TERMS|CONDITIONS)\b",
    re.IGNORECASE,
)
DMY_DOT_RE = re.compile(r"\b\d{1,2}\.\d{1,2}\.\d{2,4}\b")
DMY_SLASH_RE = re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b")

SUMMARY_WORD_RE = re.compile(r"\b(SUBTOTAL|TOTAL|TAX|VAT|GST)\b", re.IGNORECASE)
SUBTOTAL_RE = re.compile(r"\bSUB\s*-?\s*TOTAL\b", re.IGNORECASE)
SUBTOTAL_AMOUNT_RE = re.compile(
    rf"\bSUB\s*-?\s*TOTAL\b\s*:?\s*({MONEY_PATTERN})", re.IGNORECASE
)
TAX_RE = re.compile(r"\b(TAX|VAT|GST|SALES\s+TAX)\b", re.IGNORECASE)
SALE_TOTAL_LONG_RE = re.compile(
    r"(GRAND\s+TOTAL|INVOICE\s+TOTAL|TOTAL\s+DUE|AMOUNT\s+DUE|BALANCE\s+DUE|PAY\s+THIS\s+AMOUNT)",
    re.IGNORECASE,
)
SALE_TOTAL_RE = re.compile(r"\bTOTAL\b(?!\s*TAX|\s*PURCHASE)", re.IGNORECASE)


def split_ocr_lines(raw: str) -> list[str]:
    """Non-empty, stripped lines with en/em dashes turned into '-'."""
    lines = []
    for line in (raw or "").splitlines():
        line = line.replace("—", "-").replace("–", "-").strip()
        if line:
            lines.append(line)
    return lines


def _last_money(line: str) -> Optional[re.Match]:
    last = None
    for last in MONEY_RE.finditer(line):
        pass
    return last


def price_near_end(line: str) -> bool:
    """
    True when the line ends with a money token, optionally followed by up
    to two short flags (tax codes, currency) and closing punctuation, and
    is neither a header/label row nor a row dominated by a date.
    """
    if NOT_ITEM_HEADERS_RE.search(line):
        return False
    if DMY_DOT_RE.search(line) or DMY_SLASH_RE.search(line):
        return False

    last = _last_money(line)
    if last is None:
        return False
    after = line[last.end():]
    if DATE_CONTINUATION_RE.match(after):
        return False
    return bool(TRAILING_FLAGS_RE.match(after))


def is_item_line(line: str) -> bool:
    return price_near_end(line) and not SUMMARY_WORD_RE.search(line)


def is_sale_total(line: str) -> bool:
    """A TOTAL that is the sale total (not TOTAL TAX / TOTAL PURCHASE / SUBTOTAL)."""
    if SUBTOTAL_RE.search(line):
        return False
    if SALE_TOTAL_LONG_RE.search(line):
        return True
    return bool(SALE_TOTAL_RE.search(line))


def item_from_line(line: str) -> Optional[ReceiptItem]:
    """
    Split an item line into description and price.

    The trailing money token is cut out, then one trailing short tag is
    dropped from what remains ("APPLE 1234 1.23 N" -> "APPLE 1234",
    "MILK 2L 3.50" -> "MILK").
    """
    last = _last_money(line)
    if last is None:
        return None
    flags = CLOSING_PUNCT_RE.sub("", line[last.end():])
    description = " ".join(f"{line[:last.start()]} {flags}".split())
    description = TRAILING_TAG_RE.sub("", description, count=1)
    if not description:
        return None
    try:
        price = parse_money2(last.group(0))
    except ParseError:
        return None
    return ReceiptItem(description=description, price=price)


def _money_or_none(token: Optional[str]) -> Optional[Decimal]:
    if not token:
        return None
    try:
        return parse_money2(token)
    except ParseError:
        return None


def _last_money_value(line: str) -> Optional[Decimal]:
    last = _last_money(line)
    return _money_or_none(last.group(0) if last else None)


# =============================================================================
# INVOICE PARSER
# =============================================================================

def parse_receipt_ocr_invoice(raw: str) -> SegmentResult:
    """
    Heuristic segmentation of raw OCR text into items and summary values.

    Never raises; returns an empty item list when nothing looks like an item.
    """
    lines = split_ocr_lines(raw)
    items: list[ReceiptItem] = []
    subtotal = tax = total = None

    items_start = next((i for i, line in enumerate(lines) if is_item_line(line)), -1)
    items_end = summary_start = summary_end = -1

    if items_start != -1:
        for i in range(items_start, len(lines)):
            line = lines[i]
            if SUBTOTAL_RE.search(line):
                items_end = i - 1
                summary_start = i
                break
            if is_item_line(line):
                item = item_from_line(line)
                if item:
                    items.append(item)

    if summary_start != -1:
        for i in range(summary_start, len(lines)):
            line = lines[i]
            match = SUBTOTAL_AMOUNT_RE.search(line)
            if match:
                subtotal = _money_or_none(match.group(1))
                continue
            if is_sale_total(line):
                value = _last_money_value(line)
                if value is not None:
                    total = value
                    summary_end = i
                    break
            if TAX_RE.search(line):
                value = _last_money_value(line)
                if value is not None:
                    tax = value
    else:
        # No SUBTOTAL boundary: items run until the first TOTAL-like line
        items = []
        started = False
        for i, line in enumerate(lines):
            if SUBTOTAL_RE.search(line):
                match = SUBTOTAL_AMOUNT_RE.search(line)
                if match:
                    subtotal = _money_or_none(match.group(1))
                continue
            if is_sale_total(line):
                value = _last_money_value(line)
                if value is not None:
                    total = value
                    summary_end = i
                    break
                continue
            if TAX_RE.search(line):
                value = _last_money_value(line)
                if value is not None:
                    tax = value
                continue
            if not started and is_item_line(line):
                started = True
            if started and is_item_line(line):
                item = item_from_line(line)
                if item:
                    items.append(item)
                    items_end = i

    section = None
    if items_start != -1:
        section = SectionBounds(
            items_start=items_start,
            items_end=items_end if items_end != -1 else items_start,
            summary_start=summary_start if summary_start != -1 else items_start,
            summary_end=summary_end if summary_end != -1 else (
                summary_start if summary_start != -1 else items_start
            ),
        )

    return SegmentResult(
        items=items,
        subtotal=subtotal,
        tax=tax,
        total=total,
        raw_lines=lines,
        section=section,
        confidence=0.0 if not items else 0.75,
        source="heuristic",
    )


# =============================================================================
# HEURISTIC BLOCK SEGMENTATION
# =============================================================================

def fallback_segment(raw: str) -> SegmentResult:
    """
    Keep only the item lines and the SUBTOTAL / TAX / first TOTAL lines.

    Confidence: 0.75 with a full summary, 0.55 when TOTAL is missing after
    SUBTOTAL, 0.45 without SUBTOTAL, 0 when no item line exists.
    """
    lines = split_ocr_lines(raw)
    first = next((i for i, line in enumerate(lines) if is_item_line(line)), -1)
    if first == -1:
        return SegmentResult(
            raw_lines=lines,
            confidence=0.0,
            rationale="no item-like line",
        )

    kept: list[str] = []
    index = first
    while index < len(lines) and not SUBTOTAL_RE.search(lines[index]):
        if is_item_line(lines[index]):
            kept.append(lines[index])
        index += 1

    if index >= len(lines):
        return SegmentResult(
            raw_lines=lines,
            block="\n".join(kept),
            confidence=0.45,
            rationale="subtotal not found",
        )

    summary = [lines[index]]
    found_total = False
    for line in lines[index + 1:]:
        if is_sale_total(line):
            summary.append(line)
            found_total = True
            break
        if TAX_RE.search(line):
            summary.append(line)

    return SegmentResult(
        raw_lines=lines,
        block="\n".join(kept + summary),
        confidence=0.75 if found_total else 0.55,
        rationale="regex fallback" if found_total else "total not found after subtotal",
    )


# =============================================================================
# SEGMENTATION CHAIN
# =============================================================================

class BlockSegment(Protocol):
    block: str
    confidence: float
    rationale: Optional[str]


class BlockSegmenter(Protocol):
    async def segment(self, raw: str) -> Optional[BlockSegment]:
        ...


class SegmentationStrategy(ABC):
    """One way of segmenting OCR text; None means 'try the next one'."""

    name: str = "strategy"

    @abstractmethod
    async def try_segment(self, raw: str) -> Optional[SegmentResult]:
        pass


class LlmSegmentationStrategy(SegmentationStrategy):
    """Ask an LLM for the item/summary block, then parse that block."""

    name = "llm"

    def __init__(self, agent: BlockSegmenter):
        self._agent = agent

    async def try_segment(self, raw: str) -> Optional[SegmentResult]:
        try:
            answer = await self._agent.segment(raw)
        except Exception as e:
            logger.warning("segmentation_degraded", stage=self.name, error=str(e))
            return None
        if answer is None or not answer.block.strip():
            logger.warning("segmentation_degraded", stage=self.name, error="no block in response")
            return None

        parsed = parse_receipt_ocr_invoice(answer.block)
        if not parsed.items:
            logger.warning("segmentation_degraded", stage=self.name, error="block has no items")
            return None
        return parsed.model_copy(update={
            "raw_lines": split_ocr_lines(raw),
            "block": answer.block.strip(),
            "confidence": answer.confidence,
            "rationale": answer.rationale,
            "source": self.name,
        })


class HeuristicSegmentationStrategy(SegmentationStrategy):
    """Regex segmentation; always returns a result."""

    name = "heuristic"

    async def try_segment(self, raw: str) -> SegmentResult:
        parsed = parse_receipt_ocr_invoice(raw)
        block = fallback_segment(raw)
        confidence = block.confidence if parsed.items else 0.0
        return parsed.model_copy(update={
            "block": block.block,
            "confidence": confidence,
            "rationale": block.rationale,
            "source": self.name,
        })


class ReceiptSegmenter:
    """
    Runs segmentation strategies in order and stops at the first result.

    The heuristic strategy always closes the chain, so `segment` never
    raises and never returns None.
    """

    def __init__(
        self,
        strategies: Sequence[SegmentationStrategy] = (),
        hints: VendorHints = DEFAULT_VENDOR_HINTS,
    ):
        self._strategies = [s for s in strategies if not isinstance(s, HeuristicSegmentationStrategy)]
        self._strategies.append(HeuristicSegmentationStrategy())
        self._hints = hints

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self._strategies]

    async def segment(self, raw: str) -> SegmentResult:
        lines = split_ocr_lines(raw)
        first_item = next((i for i, line in enumerate(lines) if is_item_line(line)), -1)
        vendor = pick_likely_vendor(lines, first_item, self._hints)
        receipt_date = extract_date(lines)

        for strategy in self._strategies:
            result = await strategy.try_segment(raw)
            if result is not None:
                return result.model_copy(update={
                    "vendor": vendor,
                    "receipt_date": receipt_date,
                })
        # Unreachable: the heuristic strategy always returns a result
        raise RuntimeError("no segmentation strategy produced a result")


async def segment_receipt_ocr(
    raw: str,
    agent: Optional[BlockSegmenter] = None,
    hints: VendorHints = DEFAULT_VENDOR_HINTS,
) -> SegmentResult:
    """Segment OCR text, trying the LLM agent first when one is given."""
    strategies = [LlmSegmentationStrategy(agent)] if agent is not None else []
    return await ReceiptSegmenter(strategies, hints).segment(raw)
