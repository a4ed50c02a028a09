"""
Shared fixtures and in-memory fakes.

No test talks to Gemini or Google Sheets; the collaborators below stand
in for them behind the same interfaces.
"""

from datetime import date
from typing import Optional, Union
from uuid import UUID

import pytest

from receipt_ledger.agents import LlmClient
from receipt_ledger.audit import AuditLogger
from receipt_ledger.config import LedgerSettings
from receipt_ledger.ledger import HybridAccountMapper, StaticMappingTables
from receipt_ledger.models.audit import AuditEvent
from receipt_ledger.models.ledger import LedgerEntryRecord, PostingRecord
from receipt_ledger.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    StorageError,
)


class FakeLlmClient(LlmClient):
    """Returns canned responses in order; an Exception response is raised."""

    def __init__(self, *responses: Union[str, Exception]):
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def complete(
        self,
        system: str,
        user: str,
        temperature: float = 0.0,
        max_tokens: int = 600,
    ) -> str:
        self.calls.append({
            "system": system,
            "user": user,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if not self.responses:
            raise RuntimeError("no canned response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dict-backed ledger storage; can be told to fail posting inserts."""

    def __init__(self, fail_postings: bool = False):
        self.entries: dict[UUID, LedgerEntryRecord] = {}
        self.postings: list[PostingRecord] = []
        self.fail_postings = fail_postings

    async def insert_entry(self, record: LedgerEntryRecord) -> UUID:
        if record.id in self.entries:
            raise DuplicateError(f"Entry {record.id} already exists")
        self.entries[record.id] = record
        return record.id

    async def insert_postings(self, postings: list[PostingRecord]) -> int:
        if self.fail_postings:
            raise StorageError("posting sheet unavailable")
        self.postings.extend(postings)
        return len(postings)

    async def delete_entry(self, entry_id: UUID) -> bool:
        self.postings = [p for p in self.postings if p.entry_id != entry_id]
        return self.entries.pop(entry_id, None) is not None

    async def get_entry(self, entry_id: UUID):
        record = self.entries.get(entry_id)
        if record is None:
            return None
        rows = sorted(
            (p for p in self.postings if p.entry_id == entry_id),
            key=lambda p: p.sort_order,
        )
        return record, rows

    async def list_entries(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        business_name: Optional[str] = None,
        limit: int = 100,
    ) -> list[LedgerEntryRecord]:
        records = [
            r for r in self.entries.values()
            if (date_from is None or r.entry_date >= date_from)
            and (date_to is None or r.entry_date <= date_to)
            and (business_name is None or r.business_name == business_name)
        ]
        records.sort(key=lambda r: r.entry_date, reverse=True)
        return records[:limit]


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of events."""

    def __init__(self, fail: bool = False):
        self.events: list[AuditEvent] = []
        self.fail = fail

    async def append_event(self, event: AuditEvent) -> bool:
        if self.fail:
            raise StorageError("audit sheet unavailable")
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        return [e for e in self.events if e.correlation_id == correlation_id]

    def event_types(self) -> list[str]:
        return [e.event_type.value for e in self.events]


class FailingMappingTables(StaticMappingTables):
    """Static tables whose user mapping lookup is down."""

    async def get_user_mappings(self, user_id: Optional[str] = None):
        raise StorageError("user mapping sheet unavailable")


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(use_ai_enhancement=True, use_llm_segmentation=True)


@pytest.fixture
def tables() -> StaticMappingTables:
    return StaticMappingTables()


@pytest.fixture
def mapper(tables, ledger_settings) -> HybridAccountMapper:
    return HybridAccountMapper(tables, settings=ledger_settings)


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def ledger_storage() -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage()
