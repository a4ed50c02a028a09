"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the ledger pipeline decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the ledger pipeline needs.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional
from uuid import UUID

import structlog

from receipt_ledger.models.audit import AuditEvent
from receipt_ledger.models.ledger import (
    AccountPattern,
    AccountTypePattern,
    BusinessContext,
    LedgerEntryRecord,
    PostingRecord,
    UserMapping,
    VendorMapping,
)

logger = structlog.get_logger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger entry storage.

    An entry is one header row plus its ordered posting rows.
    """

    @abstractmethod
    async def insert_entry(self, record: LedgerEntryRecord) -> UUID:
        """
        Insert the header row of an entry.

        Raises:
            DuplicateError: If an entry with the same id exists
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def insert_postings(self, postings: list[PostingRecord]) -> int:
        """
        Insert posting rows, preserving sort_order.

        Returns:
            Number of rows written

        Raises:
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def delete_entry(self, entry_id: UUID) -> bool:
        """
        Delete an entry header and any postings written for it.

        Returns:
            True if something was deleted
        """
        pass

    @abstractmethod
    async def get_entry(
        self,
        entry_id: UUID,
    ) -> Optional[tuple[LedgerEntryRecord, list[PostingRecord]]]:
        """
        Retrieve an entry with its postings (ordered by sort_order).

        Returns:
            (header, postings) if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_entries(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        business_name: Optional[str] = None,
        limit: int = 100,
    ) -> list[LedgerEntryRecord]:
        """
        List entry headers with optional filters, newest entry date first.

        Args:
            date_from: Entries on or after this date
            date_to: Entries on or before this date
            business_name: Exact business name
            limit: Maximum number of results
        """
        pass

    async def save_entry(
        self,
        record: LedgerEntryRecord,
        postings: list[PostingRecord],
    ) -> UUID:
        """
        Persist header then postings as one unit.

        When the posting insert fails the header is deleted again and the
        failure is re-raised as StorageError.
        """
        entry_id = await self.insert_entry(record)
        try:
            await self.insert_postings(postings)
        except Exception as e:
            logger.error(
                "posting_insert_failed",
                entry_id=str(entry_id),
                error=str(e),
            )
            try:
                await self.delete_entry(entry_id)
            except Exception as rollback_error:
                logger.error(
                    "entry_rollback_failed",
                    entry_id=str(entry_id),
                    error=str(rollback_error),
                )
            if isinstance(e, StorageError):
                raise
            raise StorageError(f"Failed to save postings for entry {entry_id}: {e}") from e
        return entry_id


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one 'new' command).

        Returns:
            List of related events in chronological order
        """
        pass


class MappingTableInterface(ABC):
    """
    Read-only lookup tables used by the account mapper.

    Implementations may filter by business context or user, but the
    mapper re-checks both, so returning extra rows is harmless.
    """

    @abstractmethod
    async def get_user_mappings(self, user_id: Optional[str] = None) -> list[UserMapping]:
        pass

    @abstractmethod
    async def get_vendor_mappings(self) -> list[VendorMapping]:
        pass

    @abstractmethod
    async def get_account_patterns(
        self,
        business: Optional[str] = None,
    ) -> list[AccountPattern]:
        pass

    @abstractmethod
    async def get_business_context(self, business: str) -> Optional[BusinessContext]:
        pass

    @abstractmethod
    async def get_account_type_patterns(self) -> list[AccountTypePattern]:
        pass
