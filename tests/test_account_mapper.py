"""Tests for the hybrid account mapper and its built-in tables."""

import asyncio
import json

import pytest

from receipt_ledger.agents import CategoryEnhancementAgent
from receipt_ledger.audit import AuditLogger
from receipt_ledger.config import LedgerSettings
from receipt_ledger.ledger.account_mapper import (
    HybridAccountMapper,
    PatternStrategy,
    VendorStrategy,
    is_one_level_deeper,
    matches,
)
from receipt_ledger.ledger.account_rules import (
    StaticMappingTables,
    account_from_category,
    category_of,
)
from receipt_ledger.models.ledger import (
    AccountType,
    BusinessContext,
    MappingSource,
    MatchType,
    UserMapping,
)
from tests.conftest import FailingMappingTables, FakeLlmClient, InMemoryAuditStorage


def enhancement(category: str, confidence: float = 0.9) -> str:
    return json.dumps({"enhanced_category": category, "confidence": confidence})


def ai_mapper(client: FakeLlmClient, settings: LedgerSettings, **kwargs) -> HybridAccountMapper:
    return HybridAccountMapper(
        StaticMappingTables(),
        enhancer=CategoryEnhancementAgent(client),
        settings=settings,
        **kwargs,
    )


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestAccountPaths:
    """Tests for placing categories under roots and businesses."""

    def test_relative_category(self):
        """Test a category lands under root and business."""
        assert account_from_category("Food:Coffee", "MyBrick") == "Expenses:MyBrick:Food:Coffee"

    def test_income_root(self):
        """Test the account type chooses the root."""
        path = account_from_category("Freelance:Services", "Personal", AccountType.INCOME)
        assert path == "Income:Personal:Freelance:Services"

    def test_taxes_are_not_business_scoped(self):
        """Test tax categories always go under Expenses:Taxes."""
        assert account_from_category("Taxes:Sales", "MyBrick") == "Expenses:Taxes:Sales"

    def test_absolute_path_is_kept(self):
        """Test full paths are returned unchanged."""
        assert account_from_category("Assets:Cash", "Personal") == "Assets:Cash"

    def test_category_of(self):
        """Test the business-relative part of an account."""
        assert category_of("Expenses:Personal:Food:Fruit") == "Food:Fruit"
        assert category_of("Assets:Cash") is None


class TestMappingChain:
    """Tests for the rule-based stages."""

    def test_description_pattern(self, mapper):
        """Test a description pattern maps at 0.8."""
        result = asyncio.run(mapper.map_account("coffee"))
        assert result.account == "Expenses:Personal:Food:Coffee"
        assert result.confidence == 0.8
        assert result.source == MappingSource.PATTERN
        assert result.category == "Food:Coffee"

    def test_word_start_anchoring(self, mapper):
        """Test 'steak' is beef, not tea."""
        result = asyncio.run(mapper.map_account("Steak"))
        assert result.account == "Expenses:Personal:Food:Meat:Beef"

    def test_more_specific_rule_wins(self, mapper):
        """Test ordered rules put peanut butter in the pantry, not dairy."""
        result = asyncio.run(mapper.map_account("Peanut Butter"))
        assert result.account == "Expenses:Personal:Food:Pantry:NutButter"

    def test_exact_vendor(self, mapper):
        """Test an exact vendor name maps at 0.85."""
        result = asyncio.run(mapper.map_account("monthly plan", vendor="Netflix"))
        assert result.account == "Expenses:Personal:Subscription:Entertainment"
        assert result.confidence == 0.85
        assert result.source == MappingSource.VENDOR

    def test_vendor_pattern(self, mapper):
        """Test a vendor regex maps at 0.7."""
        result = asyncio.run(mapper.map_account("monthly plan", vendor="YouTube Premium Family"))
        assert result.account == "Expenses:Personal:Subscription:Entertainment"
        assert result.confidence == 0.7

    def test_vendor_beats_description(self, mapper):
        """Test the vendor stage runs before description patterns."""
        result = asyncio.run(mapper.map_account("milk", vendor="Villa Market"))
        assert result.account == "Expenses:Personal:Food:Groceries"

    def test_tax_line(self, mapper):
        """Test a bare TAX line maps to Expenses:Taxes:Sales."""
        result = asyncio.run(mapper.map_account("TAX"))
        assert result.account == "Expenses:Taxes:Sales"

    def test_business_context(self):
        """Test categories are placed under the requested business."""
        tables = StaticMappingTables(business_contexts=[
            BusinessContext(business_name="Personal"),
            BusinessContext(business_name="MyBrick"),
        ])
        mapper = HybridAccountMapper(tables, settings=LedgerSettings())
        result = asyncio.run(mapper.map_account("packaging", business="MyBrick"))
        assert result.account == "Expenses:MyBrick:Supplies:Packaging"

    @pytest.mark.parametrize("business", ["my brick", "my-brick", "MyBrick"])
    def test_business_name_is_normalized(self, mapper, business):
        """Test free-form business names still give a valid account path."""
        result = asyncio.run(mapper.map_account("coffee", business=business))
        assert result.account == "Expenses:MyBrick:Food:Coffee"
        assert result.source == MappingSource.PATTERN

    def test_business_default(self, mapper):
        """Test unknown items in a known business go to Misc at 0.5."""
        result = asyncio.run(mapper.map_account("zzz widget"))
        assert result.account == "Expenses:Personal:Misc"
        assert result.confidence == 0.5
        assert result.source == MappingSource.BUSINESS_DEFAULT

    def test_static_fallback(self, mapper):
        """Test an unknown business with an unknown item falls back at 0."""
        result = asyncio.run(mapper.map_account("zzz widget", business="Acme"))
        assert result.account == "Expenses:Uncategorized"
        assert result.confidence == 0.0
        assert result.source == MappingSource.STATIC_FALLBACK

    def test_minimum_confidence(self):
        """Test stages below the minimum confidence are skipped."""
        settings = LedgerSettings(min_mapping_confidence=0.6)
        mapper = HybridAccountMapper(StaticMappingTables(), settings=settings)
        result = asyncio.run(mapper.map_account("zzz widget"))
        assert result.source == MappingSource.STATIC_FALLBACK


class TestUserOverrides:
    """Tests for user mappings."""

    @pytest.fixture
    def override_mapper(self, ledger_settings):
        tables = StaticMappingTables(user_mappings=[
            UserMapping(pattern="flat white", account_path="Food:Coffee:Specialty", user_id="u1"),
            UserMapping(
                pattern="bricks",
                account_path="Supplies:Materials",
                match_type=MatchType.CONTAINS,
                priority=5,
            ),
        ])
        return HybridAccountMapper(tables, settings=ledger_settings)

    def test_user_override_wins(self, override_mapper):
        """Test a user's own mapping maps at 0.95."""
        result = asyncio.run(override_mapper.map_account("Flat White", user_id="u1"))
        assert result.account == "Expenses:Personal:Food:Coffee:Specialty"
        assert result.confidence == 0.95
        assert result.source == MappingSource.USER

    def test_other_users_mapping_is_ignored(self, override_mapper):
        """Test mappings owned by another user do not apply."""
        result = asyncio.run(override_mapper.map_account("Flat White", user_id="u2"))
        assert result.source != MappingSource.USER

    def test_shared_contains_mapping(self, override_mapper):
        """Test a mapping without owner applies to everyone."""
        result = asyncio.run(override_mapper.map_account("red bricks x100", user_id="u2"))
        assert result.account == "Expenses:Personal:Supplies:Materials"


class TestStrategyOrder:
    """Tests for the configurable chain."""

    def test_default_order(self, mapper):
        """Test the default chain order."""
        assert mapper.strategy_names == ["user", "vendor", "pattern", "business_default"]

    def test_custom_order(self, tables, ledger_settings):
        """Test patterns can be tried before vendors."""
        mapper = HybridAccountMapper(
            tables,
            settings=ledger_settings,
            strategies=[PatternStrategy(tables), VendorStrategy(tables)],
        )
        result = asyncio.run(mapper.map_account("coffee", vendor="Netflix"))
        assert result.account == "Expenses:Personal:Food:Coffee"


class TestDegradation:
    """Failing lookups never block classification."""

    def test_failing_table_is_skipped_and_audited(self, ledger_settings):
        """Test a user mapping outage is logged and the chain continues."""
        audit_storage = InMemoryAuditStorage()
        mapper = HybridAccountMapper(
            FailingMappingTables(),
            settings=ledger_settings,
            audit_logger=AuditLogger(audit_storage),
        )
        result = asyncio.run(mapper.map_account("coffee"))
        assert result.account == "Expenses:Personal:Food:Coffee"
        assert audit_storage.event_types() == ["mapping_degraded"]
        assert audit_storage.events[0].details["stage"] == "user"

    def test_invalid_pattern_does_not_match(self):
        """Test a broken regex is treated as no match."""
        assert not matches("coffee", "(coffee", MatchType.REGEX)

    @pytest.mark.parametrize("text,pattern,match_type,expected", [
        ("coffee", "Coffee", MatchType.EXACT, True),
        ("iced coffee", "coffee", MatchType.EXACT, False),
        ("iced coffee", "coffee", MatchType.CONTAINS, True),
        ("iced coffee", r"coff?ee", MatchType.REGEX, True),
    ])
    def test_match_types(self, text, pattern, match_type, expected):
        """Test exact, contains and regex matching."""
        assert matches(text, pattern, match_type) is expected


class TestAiEnhancement:
    """Tests for one-level category refinement."""

    def test_accepted(self, ledger_settings):
        """Test a confident one-level refinement is applied."""
        client = FakeLlmClient(enhancement("Food:Fruit:Apples", 0.9))
        result = asyncio.run(ai_mapper(client, ledger_settings).map_account("apples"))
        assert result.account == "Expenses:Personal:Food:Fruit:Apples"
        assert result.category == "Food:Fruit:Apples"
        assert result.source == MappingSource.AI
        assert result.confidence == 0.9

    def test_specific_category_is_not_sent(self, ledger_settings):
        """Test only broad categories are refined."""
        client = FakeLlmClient()
        result = asyncio.run(ai_mapper(client, ledger_settings).map_account("coffee"))
        assert result.source == MappingSource.PATTERN
        assert client.calls == []

    @pytest.mark.parametrize("response", [
        enhancement("Food:Fruit:Red:Apples"),
        enhancement("Produce:Apples"),
        enhancement("Food:Fruit:green apples"),
        enhancement("Food:Fruit:Apples", 0.5),
        "I think these are apples",
    ])
    def test_rejected(self, ledger_settings, response):
        """Test deep, unrelated, malformed or unsure answers are ignored."""
        client = FakeLlmClient(response)
        result = asyncio.run(ai_mapper(client, ledger_settings).map_account("apples"))
        assert result.account == "Expenses:Personal:Food:Fruit"
        assert result.source == MappingSource.PATTERN

    def test_disabled(self):
        """Test the switch turns enhancement off."""
        client = FakeLlmClient(enhancement("Food:Fruit:Apples"))
        settings = LedgerSettings(use_ai_enhancement=False)
        result = asyncio.run(ai_mapper(client, settings).map_account("apples"))
        assert result.source == MappingSource.PATTERN
        assert client.calls == []

    def test_answers_are_cached(self, ledger_settings):
        """Test the same item is only sent once within the TTL."""
        client = FakeLlmClient(enhancement("Food:Fruit:Apples"))
        mapper = ai_mapper(client, ledger_settings)
        first = asyncio.run(mapper.map_account("Apples"))
        second = asyncio.run(mapper.map_account("apples "))
        assert first.account == second.account == "Expenses:Personal:Food:Fruit:Apples"
        assert len(client.calls) == 1

    def test_cache_expires(self):
        """Test an expired answer is requested again."""
        clock = FakeClock()
        settings = LedgerSettings(ai_cache_ttl_seconds=10)
        client = FakeLlmClient(enhancement("Food:Fruit:Apples"), enhancement("Food:Fruit:Pears"))
        mapper = ai_mapper(client, settings, clock=clock)
        asyncio.run(mapper.map_account("apples"))
        clock.now += 11
        result = asyncio.run(mapper.map_account("apples"))
        assert result.category == "Food:Fruit:Pears"
        assert len(client.calls) == 2

    def test_expired_answers_are_dropped(self):
        """Test storing a new answer removes the ones past their TTL."""
        clock = FakeClock()
        settings = LedgerSettings(ai_cache_ttl_seconds=10)
        client = FakeLlmClient(
            enhancement("Food:Fruit:Apples"),
            enhancement("Food:Fruit:Pears"),
            enhancement("Food:Fruit:Kiwis"),
        )
        mapper = ai_mapper(client, settings, clock=clock)
        asyncio.run(mapper.map_account("apples"))
        asyncio.run(mapper.map_account("pears"))
        assert mapper.ai_cache_size == 2
        clock.now += 11
        asyncio.run(mapper.map_account("kiwis"))
        assert mapper.ai_cache_size == 1

    def test_error_keeps_result_and_is_not_cached(self, ledger_settings):
        """Test an AI failure is audited and retried on the next call."""
        audit_storage = InMemoryAuditStorage()
        client = FakeLlmClient(TimeoutError("llm timed out"), enhancement("Food:Fruit:Apples"))
        mapper = ai_mapper(client, ledger_settings, audit_logger=AuditLogger(audit_storage))

        first = asyncio.run(mapper.map_account("apples"))
        assert first.account == "Expenses:Personal:Food:Fruit"
        assert audit_storage.events[0].details["stage"] == "ai"
        assert audit_storage.events[0].error_message == "llm timed out"

        second = asyncio.run(mapper.map_account("apples"))
        assert second.source == MappingSource.AI

    def test_concurrent_mapping(self, ledger_settings):
        """Test several items can be mapped at once."""
        mapper = HybridAccountMapper(StaticMappingTables(), settings=ledger_settings)

        async def map_all():
            return await asyncio.gather(*(
                mapper.map_account(description) for description in ("coffee", "milk", "TAX")
            ))

        accounts = [r.account for r in asyncio.run(map_all())]
        assert accounts == [
            "Expenses:Personal:Food:Coffee",
            "Expenses:Personal:Food:Dairy:Milk",
            "Expenses:Taxes:Sales",
        ]

    @pytest.mark.parametrize("current,enhanced,expected", [
        ("Food:Fruit", "Food:Fruit:Apples", True),
        ("Food:Fruit", "Food:Fruit", False),
        ("Food:Fruit", "Food:Fruit:Apples:Red", False),
        ("Food:Fruit", "Food:FruitApples", False),
        ("Food:Fruit", "Food:Fruit:apples", False),
    ])
    def test_one_level_deeper(self, current, enhanced, expected):
        """Test the one-extra-segment check."""
        assert is_one_level_deeper(current, enhanced) is expected


class TestAccountTypeDetection:
    """Tests for detect_account_type."""

    @pytest.mark.parametrize("description,account_type,confidence", [
        ("student loan payment", AccountType.LIABILITY, 0.8),
        ("Monthly salary", AccountType.INCOME, 0.85),
        ("fixed deposit", AccountType.ASSET, 0.7),
        ("opening balance", AccountType.EQUITY, 0.7),
        ("coffee", AccountType.EXPENSE, 0.3),
    ])
    def test_keywords(self, mapper, description, account_type, confidence):
        """Test keyword rules and the expense default."""
        detection = asyncio.run(mapper.detect_account_type(description))
        assert detection.account_type == account_type
        assert detection.confidence == confidence

    def test_default_has_no_pattern(self, mapper):
        """Test the expense default reports no matched pattern."""
        detection = asyncio.run(mapper.detect_account_type("lunch"))
        assert detection.matched_pattern is None
