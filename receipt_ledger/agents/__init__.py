"""AI Agents package."""

from receipt_ledger.agents.ai_agents import (
    CategoryEnhancement,
    CategoryEnhancementAgent,
    GeminiLlmClient,
    LlmClient,
    LlmSegment,
    ReceiptSegmentationAgent,
    extract_json_object,
)

__all__ = [
    "CategoryEnhancement",
    "CategoryEnhancementAgent",
    "GeminiLlmClient",
    "LlmClient",
    "LlmSegment",
    "ReceiptSegmentationAgent",
    "extract_json_object",
]
