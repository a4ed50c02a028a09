"""
Audit Logger

DESIGN DECISION: Every significant step of entry creation is logged.
This provides:
1. Traceability of each 'new' command from text to saved entry
2. An explanation for entries that were auto-balanced or rejected
3. Visibility into AI and storage degradations

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the pipeline if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from receipt_ledger.models.audit import AuditEvent, AuditEventBuilder
from receipt_ledger.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Records what happened to each ledger request.

    Every event goes to the structlog output; with an audit storage it is
    also appended to the audit worksheet. A failed append is logged and
    reported through the return value of `log`, never raised, so an
    unavailable audit sheet cannot block a ledger entry.
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Severity values double as structlog method names
        emit = getattr(self._logger, event.severity.value)
        emit("audit_event", **event.to_log_dict())

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_command_received(self, text: str, correlation_id: UUID) -> None:
        await self.log(AuditEventBuilder.command_received(text, correlation_id))

    async def log_command_parsed(
        self,
        payee: str,
        amount: str,
        currency: str,
        payee_confidence: float,
        correlation_id: UUID,
    ) -> None:
        """Log a successfully parsed manual command."""
        event = AuditEventBuilder.command_parsed(
            payee=payee,
            amount=amount,
            currency=currency,
            payee_confidence=payee_confidence,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_parse_failed(
        self,
        source: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.parse_failed(source, error_message, correlation_id))

    async def log_ocr_segmented(
        self,
        source: str,
        item_count: int,
        confidence: float,
        correlation_id: UUID,
    ) -> None:
        """Log which segmenter produced the receipt block."""
        event = AuditEventBuilder.ocr_segmented(
            source=source,
            item_count=item_count,
            confidence=confidence,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_segmentation_fallback(
        self,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.segmentation_fallback(reason, correlation_id))

    async def log_validation_failed(
        self,
        stage: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            stage=stage,
            issues=issues,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_mapping_degraded(
        self,
        stage: str,
        description: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a mapping stage that failed and was skipped."""
        event = AuditEventBuilder.mapping_degraded(
            stage=stage,
            description=description,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_entry_auto_balanced(
        self,
        difference: str,
        adjusted_account: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.entry_auto_balanced(
            difference=difference,
            adjusted_account=adjusted_account,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_balance_failed(self, difference: str, correlation_id: UUID) -> None:
        await self.log(AuditEventBuilder.balance_failed(difference, correlation_id))

    async def log_entry_saved(
        self,
        entry_id: UUID,
        payee: str,
        amount: str,
        currency: str,
        correlation_id: UUID,
    ) -> None:
        """Log entry save."""
        event = AuditEventBuilder.entry_saved(
            entry_id=entry_id,
            payee=payee,
            amount=amount,
            currency=currency,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_save_failed(
        self,
        entry_id: UUID,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.save_failed(entry_id, error_message, correlation_id))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.external_service_error(service, error_message, correlation_id))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new command (e.g., one 'new' message).
    Pass it through all subsequent operations.
    """
    return uuid4()
