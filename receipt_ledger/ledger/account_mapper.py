"""
Hybrid account mapper.

Classifies a line item into an account path by running an ordered chain
of mapping strategies over data-driven tables:

1. User override      (0.95)
2. Vendor mapping     (0.85 exact name, 0.70 vendor pattern)
3. Description pattern (0.80)
4. Business default   (0.50)

The first strategy whose result reaches the minimum confidence wins.
When none does, a static fallback account is returned with confidence 0.
A winning broad category may then be made one level more specific by
the AI enhancement agent.

DESIGN DECISION: Classification never blocks entry creation. A failing
table lookup or AI call is logged as a degradation and the chain moves
on with what it has.
"""

import re
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Protocol, Sequence

import structlog

from receipt_ledger.audit.logger import AuditLogger
from receipt_ledger.config import LedgerSettings, get_settings
from receipt_ledger.ledger.account_rules import (
    account_from_category,
    account_type_of,
    category_of,
    compile_rule,
)
from receipt_ledger.models.ledger import (
    AccountType,
    AccountTypeDetection,
    MappingRequest,
    MappingResult,
    MappingSource,
    MatchType,
    normalize_business_name,
    normalize_vendor,
)
from receipt_ledger.services.storage.interface import MappingTableInterface

logger = structlog.get_logger(__name__)


USER_OVERRIDE_CONFIDENCE = 0.95
VENDOR_EXACT_CONFIDENCE = 0.85
PATTERN_CONFIDENCE = 0.8
VENDOR_PATTERN_CONFIDENCE = 0.7
BUSINESS_DEFAULT_CONFIDENCE = 0.5
DEFAULT_TYPE_CONFIDENCE = 0.3

# Leaf categories worth asking the AI to refine
BROAD_CATEGORIES = frozenset({
    "Fruit",
    "Vegetables",
    "Meat",
    "Electronics",
    "Clothing",
    "Supplies",
    "Software",
    "Entertainment",
})

_SEGMENT_RE = re.compile(r"^[A-Z][A-Za-z]*$")


def matches(text: str, pattern: str, match_type: MatchType) -> bool:
    """Compare a lowercased description or vendor with one table pattern."""
    if match_type == MatchType.EXACT:
        return text == pattern.strip().lower()
    if match_type == MatchType.CONTAINS:
        return pattern.strip().lower() in text
    try:
        return compile_rule(pattern).search(text) is not None
    except re.error as e:
        logger.warning("invalid_mapping_pattern", pattern=pattern, error=str(e))
        return False


def _applies_to(context: Optional[str], business: str) -> bool:
    return context is None or context == business


# =============================================================================
# STRATEGIES
# =============================================================================

class MappingStrategy(ABC):
    """One stage of the mapping chain; None means 'no opinion'."""

    name: str = "strategy"

    def __init__(self, tables: MappingTableInterface):
        self._tables = tables

    @abstractmethod
    async def try_resolve(self, request: MappingRequest) -> Optional[MappingResult]:
        pass

    @staticmethod
    def _result(
        request: MappingRequest,
        path: str,
        confidence: float,
        source: MappingSource,
        matched_rule: Optional[str] = None,
    ) -> MappingResult:
        account = account_from_category(path, request.business, request.account_type)
        return MappingResult(
            account=account,
            account_type=account_type_of(account, request.account_type),
            confidence=confidence,
            source=source,
            category=category_of(account),
            matched_rule=matched_rule,
        )


class UserOverrideStrategy(MappingStrategy):
    """Mappings a user saved for a description."""

    name = "user"

    async def try_resolve(self, request: MappingRequest) -> Optional[MappingResult]:
        description = request.description.strip().lower()
        mappings = await self._tables.get_user_mappings(request.user_id)
        candidates = [
            m for m in mappings
            if m.user_id in (None, request.user_id)
            and _applies_to(m.business_context, request.business)
        ]
        candidates.sort(key=lambda m: m.priority, reverse=True)
        for mapping in candidates:
            if matches(description, mapping.pattern, mapping.match_type):
                return self._result(
                    request,
                    mapping.account_path,
                    USER_OVERRIDE_CONFIDENCE,
                    MappingSource.USER,
                    mapping.pattern,
                )
        return None


class VendorStrategy(MappingStrategy):
    """Vendor name table; exact names beat vendor patterns."""

    name = "vendor"

    async def try_resolve(self, request: MappingRequest) -> Optional[MappingResult]:
        if not request.vendor or not request.vendor.strip():
            return None
        normalized = normalize_vendor(request.vendor)
        lowered = request.vendor.strip().lower()
        mappings = [
            m for m in await self._tables.get_vendor_mappings()
            if _applies_to(m.business_context, request.business)
        ]

        for mapping in mappings:
            if mapping.vendor_name == normalized:
                return self._result(
                    request,
                    mapping.account_path,
                    VENDOR_EXACT_CONFIDENCE,
                    MappingSource.VENDOR,
                    mapping.vendor_name,
                )
        for mapping in mappings:
            if mapping.vendor_pattern and matches(lowered, mapping.vendor_pattern, MatchType.REGEX):
                return self._result(
                    request,
                    mapping.account_path,
                    VENDOR_PATTERN_CONFIDENCE,
                    MappingSource.VENDOR,
                    mapping.vendor_pattern,
                )
        return None


class PatternStrategy(MappingStrategy):
    """General description patterns, highest priority first."""

    name = "pattern"

    async def try_resolve(self, request: MappingRequest) -> Optional[MappingResult]:
        description = request.description.strip().lower()
        if not description:
            return None
        patterns = [
            p for p in await self._tables.get_account_patterns(request.business)
            if _applies_to(p.business_context, request.business)
        ]
        patterns.sort(key=lambda p: p.priority, reverse=True)
        for pattern in patterns:
            if matches(description, pattern.pattern, pattern.match_type):
                return self._result(
                    request,
                    pattern.account_path,
                    PATTERN_CONFIDENCE,
                    MappingSource.PATTERN,
                    pattern.pattern,
                )
        return None


class BusinessDefaultStrategy(MappingStrategy):
    """`{Root}:{Business}:Misc` for a known business."""

    name = "business_default"

    async def try_resolve(self, request: MappingRequest) -> Optional[MappingResult]:
        context = await self._tables.get_business_context(request.business)
        if context is None:
            return None
        account_type = request.account_type
        if account_type == AccountType.EXPENSE:
            account_type = context.default_account_type
        account = f"{account_type.root}:{request.business}:Misc"
        return MappingResult(
            account=account,
            account_type=account_type,
            confidence=BUSINESS_DEFAULT_CONFIDENCE,
            source=MappingSource.BUSINESS_DEFAULT,
            category="Misc",
            matched_rule=context.business_name,
        )


DEFAULT_STRATEGIES: tuple[type[MappingStrategy], ...] = (
    UserOverrideStrategy,
    VendorStrategy,
    PatternStrategy,
    BusinessDefaultStrategy,
)


# =============================================================================
# AI ENHANCEMENT
# =============================================================================

class CategoryEnhancer(Protocol):
    async def enhance(
        self,
        description: str,
        current_category: str,
        vendor: Optional[str] = None,
        business: Optional[str] = None,
    ):
        ...


def is_one_level_deeper(current: str, enhanced: str) -> bool:
    """True when enhanced is current plus exactly one PascalCase segment."""
    prefix = current + ":"
    if not enhanced.startswith(prefix):
        return False
    return bool(_SEGMENT_RE.match(enhanced[len(prefix):]))


# =============================================================================
# MAPPER
# =============================================================================

class HybridAccountMapper:
    """
    Maps descriptions to accounts through the strategy chain.

    The mapper holds no per-request state apart from a TTL cache of AI
    answers, so map_account can be awaited concurrently.
    """

    def __init__(
        self,
        tables: MappingTableInterface,
        enhancer: Optional[CategoryEnhancer] = None,
        settings: Optional[LedgerSettings] = None,
        strategies: Optional[Sequence[MappingStrategy]] = None,
        clock: Callable[[], float] = time.monotonic,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._tables = tables
        self._enhancer = enhancer
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().ledger
        self._strategies = list(strategies) if strategies is not None else [
            strategy(tables) for strategy in DEFAULT_STRATEGIES
        ]
        self._clock = clock
        self._ai_cache: dict[tuple[str, str, str], tuple[float, Optional[str], float]] = {}

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self._strategies]

    @property
    def ai_cache_size(self) -> int:
        return len(self._ai_cache)

    def fallback_result(self) -> MappingResult:
        return MappingResult(
            account=self._settings.fallback_account,
            account_type=account_type_of(self._settings.fallback_account),
            confidence=0.0,
            source=MappingSource.STATIC_FALLBACK,
            category=category_of(self._settings.fallback_account),
        )

    async def map_account(
        self,
        description: str,
        vendor: Optional[str] = None,
        business: Optional[str] = None,
        account_type: AccountType = AccountType.EXPENSE,
        user_id: Optional[str] = None,
    ) -> MappingResult:
        """
        Classify one line item. Never raises for lookup or AI failures.

        Args:
            description: Item description as printed or typed
            vendor: Payee or store name, if known
            business: Business context, normalized to one account segment
                (defaults to the configured one)
            account_type: Root to place relative categories under
            user_id: Owner of user overrides to consult
        """
        request = MappingRequest(
            description=description,
            vendor=vendor,
            business=normalize_business_name(business, self._settings.default_business),
            user_id=user_id,
            account_type=account_type,
        )
        result = await self._resolve(request)
        if result.source == MappingSource.STATIC_FALLBACK:
            logger.info("mapping_fallback", description=description, vendor=vendor)
            return result
        return await self._enhance(request, result)

    async def _resolve(self, request: MappingRequest) -> MappingResult:
        for strategy in self._strategies:
            try:
                result = await strategy.try_resolve(request)
            except Exception as e:
                await self._degraded(strategy.name, request.description, e)
                continue
            if result is not None and result.confidence >= self._settings.min_mapping_confidence:
                logger.debug(
                    "account_mapped",
                    stage=strategy.name,
                    description=request.description,
                    account=result.account,
                    confidence=result.confidence,
                )
                return result
        return self.fallback_result()

    async def _degraded(self, stage: str, description: str, error: Exception) -> None:
        logger.warning(
            "mapping_degraded",
            stage=stage,
            description=description,
            error=str(error),
        )
        if self._audit_logger:
            await self._audit_logger.log_mapping_degraded(
                stage=stage,
                description=description,
                error_message=str(error),
            )

    def _should_enhance(self, result: MappingResult) -> bool:
        if self._enhancer is None or not self._settings.use_ai_enhancement:
            return False
        if not result.category:
            return False
        return result.category.split(":")[-1] in BROAD_CATEGORIES

    def _remember(self, key: tuple[str, str, str], now: float, enhanced: Optional[str], confidence: float) -> None:
        # Expired answers are dropped on every write
        for stale in [k for k, (expires, _, _) in self._ai_cache.items() if expires <= now]:
            del self._ai_cache[stale]
        self._ai_cache[key] = (now + self._settings.ai_cache_ttl_seconds, enhanced, confidence)

    async def _enhance(self, request: MappingRequest, result: MappingResult) -> MappingResult:
        if not self._should_enhance(result):
            return result

        key = (
            request.description.strip().lower(),
            (request.vendor or "").strip().lower(),
            request.business,
        )
        now = self._clock()
        cached = self._ai_cache.get(key)
        if cached is not None and cached[0] > now:
            _, enhanced, confidence = cached
        else:
            try:
                answer = await self._enhancer.enhance(
                    request.description,
                    result.category,
                    vendor=request.vendor,
                    business=request.business,
                )
            except Exception as e:
                await self._degraded("ai", request.description, e)
                return result
            enhanced = answer.enhanced_category if answer is not None else None
            confidence = answer.confidence if answer is not None else 0.0
            self._remember(key, now, enhanced, confidence)

        if enhanced is None or confidence < self._settings.ai_min_confidence:
            return result
        if not is_one_level_deeper(result.category, enhanced):
            logger.warning(
                "ai_enhancement_rejected",
                category=result.category,
                enhanced=enhanced,
            )
            return result

        segment = enhanced.split(":")[-1]
        return result.model_copy(update={
            "account": f"{result.account}:{segment}",
            "category": enhanced,
            "confidence": confidence,
            "source": MappingSource.AI,
        })

    async def detect_account_type(self, description: str) -> AccountTypeDetection:
        """Keyword classification of a description into an account type."""
        text = description.strip().lower()
        try:
            patterns = await self._tables.get_account_type_patterns()
        except Exception as e:
            logger.warning("mapping_degraded", stage="account_type", error=str(e))
            patterns = []

        for pattern in sorted(patterns, key=lambda p: p.priority, reverse=True):
            try:
                hit = re.search(pattern.pattern, text, re.IGNORECASE)
            except re.error as e:
                logger.warning("invalid_mapping_pattern", pattern=pattern.pattern, error=str(e))
                continue
            if hit:
                return AccountTypeDetection(
                    account_type=pattern.account_type,
                    confidence=pattern.confidence,
                    matched_pattern=pattern.pattern,
                )
        return AccountTypeDetection(
            account_type=AccountType.EXPENSE,
            confidence=DEFAULT_TYPE_CONFIDENCE,
        )
