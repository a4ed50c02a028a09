"""Tests for the audit logger."""

import asyncio
from uuid import uuid4

from receipt_ledger.audit import AuditLogger, create_correlation_id
from receipt_ledger.models.audit import AuditEventBuilder, AuditSeverity
from tests.conftest import InMemoryAuditStorage


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_local_only(self):
        """Test logging without storage counts as success."""
        event = AuditEventBuilder.balance_failed("0.03", uuid4())
        assert asyncio.run(AuditLogger().log(event)) is True

    def test_events_are_persisted(self, audit_logger, audit_storage):
        """Test events reach the storage in order."""
        correlation_id = create_correlation_id()
        asyncio.run(audit_logger.log_command_received("new coffee 75", correlation_id))
        asyncio.run(audit_logger.log_balance_failed("0.50", correlation_id))
        assert audit_storage.event_types() == ["command_received", "balance_failed"]
        assert audit_storage.events[1].severity == AuditSeverity.WARNING
        events = asyncio.run(audit_storage.get_events_by_correlation_id(correlation_id))
        assert len(events) == 2

    def test_storage_failure_does_not_raise(self):
        """Test a failing audit sheet never breaks the pipeline."""
        storage = InMemoryAuditStorage(fail=True)
        logger = AuditLogger(storage)
        asyncio.run(logger.log_entry_saved(
            entry_id=uuid4(),
            payee="Starbucks",
            amount="150.00",
            currency="THB",
            correlation_id=uuid4(),
        ))
        assert storage.events == []

    def test_log_reports_storage_result(self):
        """Test log() returns False when the event could not be stored."""
        event = AuditEventBuilder.balance_failed("0.03", uuid4())
        assert asyncio.run(AuditLogger(InMemoryAuditStorage(fail=True)).log(event)) is False
        assert asyncio.run(AuditLogger(InMemoryAuditStorage()).log(event)) is True
