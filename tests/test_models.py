"""
Tests for Receipt Ledger models

Test strategy:
1. Unit tests for individual components (models, parsers, validators)
2. Integration tests for flows (with in-memory fakes)
3. No real API calls in tests
"""

import json
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from receipt_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from receipt_ledger.models.ledger import (
    AccountType,
    EntryType,
    MappingResult,
    MappingSource,
    Posting,
    VendorMapping,
    is_account_path,
    normalize_business_name,
    normalize_vendor,
)
from receipt_ledger.models.receipt import (
    NewCommandPayload,
    ReceiptItem,
    ReceiptShape,
)


class TestLedgerModels:
    """Tests for account paths, postings and mapping results."""

    @pytest.mark.parametrize("path", [
        "Expenses:Personal:Food:Coffee",
        "Assets:Cash",
        "Income",
    ])
    def test_valid_account_paths(self, path):
        """Test PascalCase colon paths are accepted."""
        assert is_account_path(path)

    @pytest.mark.parametrize("path", [
        "expenses:food",
        "Expenses::Food",
        "Expenses:Food Court",
        "Expenses:Food:",
        "Assets:Bank1",
        "",
    ])
    def test_invalid_account_paths(self, path):
        """Test lowercase, empty and non-letter segments are rejected."""
        assert not is_account_path(path)

    def test_posting_rejects_invalid_account(self):
        """Test Posting validates its account path."""
        with pytest.raises(ValueError, match="Invalid account path"):
            Posting(account="cash", amount=Decimal("1.00"))

    def test_posting_is_immutable(self):
        """Test postings cannot be changed in place."""
        posting = Posting(account="Assets:Cash", amount=Decimal("-5.00"))
        with pytest.raises(Exception):
            posting.amount = Decimal("0")

    def test_account_type_root(self):
        """Test each account type knows its top-level segment."""
        assert AccountType.EXPENSE.root == "Expenses"
        assert AccountType.LIABILITY.root == "Liabilities"
        assert AccountType.EQUITY.root == "Equity"

    def test_mapping_result_confidence_bounds(self):
        """Test confidence must be between 0 and 1."""
        with pytest.raises(ValueError):
            MappingResult(
                account="Expenses:Uncategorized",
                confidence=1.5,
                source=MappingSource.STATIC_FALLBACK,
            )

    def test_vendor_names_are_normalized(self):
        """Test vendor rows compare whitespace- and case-insensitively."""
        mapping = VendorMapping(vendor_name="  YouTube Premium ", account_path="Subscription:Entertainment")
        assert mapping.vendor_name == "youtubepremium"
        assert normalize_vendor("You Tube\tPremium") == "youtubepremium"

    @pytest.mark.parametrize("name,expected", [
        ("MyBrick", "MyBrick"),
        ("my brick", "MyBrick"),
        ("mybrick", "Mybrick"),
        ("my-brick 2", "MyBrick"),
        ("", "Personal"),
        (None, "Personal"),
    ])
    def test_normalize_business_name(self, name, expected):
        """Test business names become a single PascalCase path segment."""
        assert normalize_business_name(name) == expected

    def test_entry_type_account_roots(self):
        """Test transfers map like expenses and the rest map to their own root."""
        assert EntryType.TRANSFER.account_type == AccountType.EXPENSE
        assert EntryType.ASSET.account_type == AccountType.ASSET
        assert EntryType.INCOME.account_type == AccountType.INCOME


class TestReceiptModels:
    """Tests for receipt items, receipts and the structured payload."""

    def test_item_price_rounds_to_cents(self):
        """Test prices are quantized half-up to two decimals."""
        item = ReceiptItem(description="Apple", price=Decimal("1.005"))
        assert item.price == Decimal("1.01")

    def test_item_rejects_negative_price(self):
        """Test that negative prices are rejected."""
        with pytest.raises(ValueError, match="price cannot be negative"):
            ReceiptItem(description="Refund", price=Decimal("-1"))

    def test_item_collapses_whitespace(self):
        """Test descriptions are stripped and whitespace collapsed."""
        item = ReceiptItem(description="  Green   tea ", price=Decimal("2"))
        assert item.description == "Green tea"

    def test_item_rejects_blank_description(self):
        """Test a whitespace-only description is rejected."""
        with pytest.raises(ValueError):
            ReceiptItem(description="   ", price=Decimal("2"))

    def test_receipt_items_sum(self):
        """Test the item sum of a receipt."""
        receipt = ReceiptShape(items=[
            ReceiptItem(description="Apple", price=Decimal("5")),
            ReceiptItem(description="Milk", price=Decimal("3.25")),
        ])
        assert receipt.items_sum == Decimal("8.25")

    def test_payload_accepts_camel_case(self):
        """Test paymentAccount and imageUrl wire names."""
        payload = NewCommandPayload.model_validate({
            "date": "2025-08-09",
            "payee": "Villa Market",
            "currency": "usd",
            "receipt": {"items": [{"description": "Milk", "price": 3}], "total": 3},
            "paymentAccount": "Assets:Cash",
            "imageUrl": "https://example.com/r.jpg",
        })
        assert payload.currency == "USD"
        assert payload.payment_account == "Assets:Cash"
        assert payload.image_url == "https://example.com/r.jpg"
        assert payload.date == date(2025, 8, 9)

    def test_payload_to_wire_uses_aliases(self):
        """Test to_wire emits camelCase and drops empty fields."""
        payload = NewCommandPayload(
            date=date(2025, 8, 9),
            payee="Shop",
            receipt=ReceiptShape(items=[ReceiptItem(description="Milk", price=Decimal("3"))]),
            payment_account="Assets:Cash",
        )
        wire = payload.to_wire()
        assert wire["paymentAccount"] == "Assets:Cash"
        assert "imageUrl" not in wire
        assert "payment_account" not in wire

    def test_payload_rejects_bad_payment_account(self):
        """Test the payment account must be an account path."""
        with pytest.raises(ValueError):
            NewCommandPayload.model_validate({
                "date": "2025-08-09",
                "payee": "Shop",
                "receipt": {"items": [{"description": "Milk", "price": 3}]},
                "paymentAccount": "cash",
            })

    def test_payload_business_and_entry_type(self):
        """Test the business is normalized and entryType is read from the wire."""
        payload = NewCommandPayload.model_validate({
            "date": "2025-08-09",
            "payee": "Brick Supply",
            "receipt": {"items": [{"description": "Bricks", "price": 30}]},
            "business": "my brick",
            "entryType": "asset",
        })
        assert payload.business == "MyBrick"
        assert payload.entry_type == EntryType.ASSET
        assert payload.to_wire()["entryType"] == "asset"

    def test_payload_rejects_business_without_letters(self):
        """Test a business that cannot form an account segment is a field error."""
        with pytest.raises(ValueError, match="Business name must contain letters"):
            NewCommandPayload.model_validate({
                "date": "2025-08-09",
                "payee": "Shop",
                "receipt": {"items": [{"description": "Milk", "price": 3}]},
                "business": "123",
            })


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.COMMAND_RECEIVED,
            description="Ledger command received",
            details={"text": "new coffee 75"},
        )
        assert event.event_type == AuditEventType.COMMAND_RECEIVED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_log_dict(self):
        """Test conversion to structured log dict."""
        correlation_id = uuid4()
        event = AuditEventBuilder.balance_failed("0.03", correlation_id)
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "balance_failed"
        assert log_dict["severity"] == "warning"
        assert log_dict["correlation_id"] == str(correlation_id)

    def test_audit_event_to_sheets_row(self):
        """Test conversion to a Google Sheets row."""
        entry_id = uuid4()
        event = AuditEventBuilder.entry_saved(
            entry_id=entry_id,
            payee="Starbucks",
            amount="150.00",
            currency="THB",
            correlation_id=uuid4(),
        )
        row = event.to_sheets_row()
        assert len(row) == 11
        assert row[2] == "entry_saved"
        assert row[5] == str(entry_id)
        assert json.loads(row[8])["payee"] == "Starbucks"

    def test_builder_truncates_command_text(self):
        """Test long command text is truncated in details."""
        event = AuditEventBuilder.command_received("x" * 500, uuid4())
        assert len(event.details["text"]) == 200
        assert event.is_user_action

    def test_mapping_degraded_event(self):
        """Test mapping degradation events carry the stage and error."""
        event = AuditEventBuilder.mapping_degraded("ai", "apples", "timeout")
        assert event.severity == AuditSeverity.WARNING
        assert event.details["stage"] == "ai"
        assert event.error_message == "timeout"
