"""
AI Agents for Receipt Ledger

Two narrow agents sit behind one small LLM interface:

1. RECEIPT SEGMENTATION AGENT:
   - CAN: Pick the item and summary lines out of raw OCR text
   - CANNOT: Invent lines, change amounts, or compute totals
   - Output is parsed by the same heuristics as OCR text

2. CATEGORY ENHANCEMENT AGENT:
   - CAN: Add exactly ONE level to an already assigned category
   - CANNOT: Replace the category or choose the account type
   - Output is checked against the account path format

The LLM is a TRANSLATOR, not an ORACLE.
Every answer is optional: a malformed response yields None and the
caller keeps its non-AI result. Transport errors propagate so the caller
can log them as a degradation.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import google.generativeai as genai
import structlog
from pydantic import BaseModel, Field

from receipt_ledger.config import GeminiSettings, get_settings

logger = structlog.get_logger(__name__)


# =============================================================================
# LLM CLIENT
# =============================================================================

class LlmClient(ABC):
    """Plain request/response completion. No streaming, no retries."""

    @abstractmethod
    async def complete(
        self,
        system: str,
        user: str,
        temperature: float = 0.0,
        max_tokens: int = 600,
    ) -> str:
        """Return the raw model text for a system + user prompt."""
        pass


class GeminiLlmClient(LlmClient):
    """LlmClient backed by Google Generative AI."""

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        genai.configure(api_key=self._settings.api_key)

    async def complete(
        self,
        system: str,
        user: str,
        temperature: float = 0.0,
        max_tokens: int = 600,
    ) -> str:
        model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            system_instruction=system,
            generation_config={
                "temperature": temperature,
                "max_output_tokens": max_tokens,
            },
        )
        response = await model.generate_content_async(user)
        return response.text or ""


_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")


def extract_json_object(text: str) -> Optional[dict[str, Any]]:
    """
    Pull the first JSON object out of a model response.

    Handles bare JSON, JSON in a markdown code fence, and JSON with
    surrounding prose. Returns None when nothing parses to a dict.
    """
    if not text:
        return None
    candidates = []
    fenced = _CODE_FENCE_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    start = text.find("{")
    end = text.rfind("}") + 1
    if start >= 0 and end > start:
        candidates.append(text[start:end])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def _clamped_confidence(value: Any, default: float = 0.5) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return max(0.0, min(1.0, float(value)))


# =============================================================================
# RECEIPT SEGMENTATION
# =============================================================================

SEGMENTATION_SYSTEM_PROMPT = " ".join([
    "You extract the core purchase section from raw OCR receipts.",
    "Return STRICT JSON with keys: block, confidence, rationale.",
    "The block must contain only: item lines (description + price) and the summary lines",
    "in order: items then SUBTOTAL, TAX (if present), then the FIRST TOTAL after SUBTOTAL.",
    "Exclude payment authorizations, card details, dates, rates, tax breakdowns (like 'S TAX 9.75% 89.99'),",
    "and any line where the word TOTAL is not the sale total (e.g., 'TOTAL TAX' or 'TOTAL PURCHASE').",
    "Preserve the original text for the kept lines.",
    "If nothing valid is found, return an empty block and confidence 0.",
])


def build_segmentation_prompt(raw: str) -> str:
    return (
        f"RAW OCR RECEIPT:\n{raw}\n\n"
        "Return JSON only, e.g.:\n{\n"
        '  "block": "ITEM 1234 1.23 N\\nSUBTOTAL 1.23\\nTAX 0.10\\nTOTAL 1.33",\n'
        '  "confidence": 0.92,\n'
        '  "rationale": "Kept items; first TOTAL after SUBTOTAL; excluded payment block and TOTAL TAX."\n'
        "}"
    )


class LlmSegment(BaseModel):
    """The item/summary block an LLM isolated from OCR text."""

    block: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    rationale: Optional[str] = None


class ReceiptSegmentationAgent:
    """
    Asks the LLM for the item and summary lines of a receipt.

    RESPONSIBILITIES:
    - Send the raw OCR text with a strict JSON contract
    - Parse {block, confidence, rationale}; clamp confidence to 0..1

    BOUNDARIES:
    - NEVER returns amounts, only lines of the original text
    - Returns None for any response without a usable block
    """

    def __init__(self, client: LlmClient, temperature: float = 0.0, max_tokens: int = 600):
        self._client = client
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def segment(self, raw: str) -> Optional[LlmSegment]:
        text = await self._client.complete(
            system=SEGMENTATION_SYSTEM_PROMPT,
            user=build_segmentation_prompt(raw),
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        data = extract_json_object(text)
        if data is None:
            logger.warning("llm_segmentation_malformed", reason="no JSON object in response")
            return None

        block = data.get("block")
        if not isinstance(block, str) or not block.strip():
            logger.warning("llm_segmentation_malformed", reason="missing block")
            return None

        rationale = data.get("rationale")
        return LlmSegment(
            block=block.strip(),
            confidence=_clamped_confidence(data.get("confidence")),
            rationale=rationale if isinstance(rationale, str) else None,
        )


# =============================================================================
# CATEGORY ENHANCEMENT
# =============================================================================

def build_enhancement_prompt(
    description: str,
    current_category: str,
    vendor: Optional[str],
    business: Optional[str],
) -> str:
    return f"""You are enhancing account categorization to be more specific.

Current category: "{current_category}"
Item description: "{description}"
Vendor: {vendor or "Unknown"}
Business context: {business or "Personal"}

Make the category more specific by adding exactly ONE more level of detail.

Examples of good enhancements:
- "Food:Fruit" -> "Food:Fruit:Apples" (for apples)
- "Food:Vegetables" -> "Food:Vegetables:Leafy" (for spinach, lettuce)
- "Food:Vegetables" -> "Food:Vegetables:Root" (for carrots, potatoes)
- "Food:Meat" -> "Food:Meat:Poultry" (for chicken)
- "Electronics:Audio" -> "Electronics:Audio:Headphones" (for headphones)
- "Clothing" -> "Clothing:Footwear" (for shoes, boots)

Guidelines:
- Add only ONE more level (don't go from 2 to 4 levels)
- Use PascalCase with no spaces
- Be specific but not overly narrow

Respond with JSON: {{"enhanced_category": "Food:Fruit:Apples", "confidence": 0.95}}"""


class CategoryEnhancement(BaseModel):
    """AI's proposal for a more specific category."""

    enhanced_category: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class CategoryEnhancementAgent:
    """
    Asks the LLM to add one level to a broad category (Food:Fruit -> Food:Fruit:Apples).

    Whether the answer is acceptable (confidence, one extra valid segment)
    is decided by the account mapper, not here.
    """

    def __init__(self, client: LlmClient, temperature: float = 0.1, max_tokens: int = 150):
        self._client = client
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def enhance(
        self,
        description: str,
        current_category: str,
        vendor: Optional[str] = None,
        business: Optional[str] = None,
    ) -> Optional[CategoryEnhancement]:
        text = await self._client.complete(
            system="You are an expert accountant. Answer with JSON only.",
            user=build_enhancement_prompt(description, current_category, vendor, business),
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        data = extract_json_object(text)
        if data is None:
            logger.warning("ai_enhancement_malformed", reason="no JSON object in response")
            return None

        category = data.get("enhanced_category")
        if not isinstance(category, str) or not category.strip():
            logger.warning("ai_enhancement_malformed", reason="missing enhanced_category")
            return None

        return CategoryEnhancement(
            enhanced_category=category.strip(),
            confidence=_clamped_confidence(data.get("confidence")),
        )
