"""
Audit Models for Receipt Ledger

Every significant step of ledger entry creation is logged for audit
purposes, so that a rejected or adjusted entry can be explained later.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step in the ledger pipeline has its own event type.
    """
    # Input
    COMMAND_RECEIVED = "command_received"
    COMMAND_PARSED = "command_parsed"
    PARSE_FAILED = "parse_failed"

    # OCR segmentation
    OCR_SEGMENTED = "ocr_segmented"
    SEGMENTATION_FALLBACK = "segmentation_fallback"

    # Validation
    VALIDATION_FAILED = "validation_failed"

    # Mapping and balancing
    MAPPING_DEGRADED = "mapping_degraded"
    ENTRY_AUTO_BALANCED = "entry_auto_balanced"
    BALANCE_FAILED = "balance_failed"

    # Persistence
    ENTRY_SAVED = "entry_saved"
    SAVE_FAILED = "save_failed"

    # External services
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# Header row of the audit worksheet; to_sheets_row() follows this order
AUDIT_SHEET_COLUMNS = (
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
)


class AuditEvent(BaseModel):
    """
    One step of one request through the ledger pipeline.

    Events of the same `new` command, payload or OCR receipt share a
    correlation id; `entity_id` points at the saved entry once there is one.
    """

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    entity_type: Optional[str] = Field(
        default=None,
        description="'command', 'receipt', 'account' or 'entry'"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="Ledger entry id, once the entry exists"
    )
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific data: amounts as strings, accounts, stages"
    )
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="True for events the user triggered directly (commands)"
    )

    def to_log_dict(self) -> dict:
        """JSON-safe dict for structlog."""
        return self.model_dump(mode="json")

    def to_sheets_row(self) -> list[str]:
        """Cells for the audit worksheet, in AUDIT_SHEET_COLUMNS order."""
        data = self.to_log_dict()
        data["details_json"] = json.dumps(self.details, default=str) if self.details else ""
        data["is_user_action"] = str(self.is_user_action)
        return ["" if data[column] is None else str(data[column]) for column in AUDIT_SHEET_COLUMNS]


class AuditEventBuilder:
    """
    One constructor per event type, so callers never assemble details by hand.

    Usage:
        event = AuditEventBuilder.command_received(text, correlation_id)
        event = AuditEventBuilder.balance_failed("0.03", correlation_id)
    """

    @staticmethod
    def command_received(
        text: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMAND_RECEIVED,
            entity_type="command",
            correlation_id=correlation_id,
            description="Ledger command received",
            details={"text": text[:200]},
            is_user_action=True,
        )

    @staticmethod
    def command_parsed(
        payee: str,
        amount: str,
        currency: str,
        payee_confidence: float,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMAND_PARSED,
            entity_type="command",
            correlation_id=correlation_id,
            description=f"Command parsed: {payee} {amount} {currency}",
            details={
                "payee": payee,
                "amount": amount,
                "currency": currency,
                "payee_confidence": payee_confidence,
            },
        )

    @staticmethod
    def parse_failed(
        source: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARSE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=source,
            correlation_id=correlation_id,
            description=f"Could not parse {source}",
            error_message=error_message,
        )

    @staticmethod
    def ocr_segmented(
        source: str,
        item_count: int,
        confidence: float,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCR_SEGMENTED,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=(
                f"OCR text segmented by {source}: {item_count} items, "
                f"{confidence:.0%} confidence"
            ),
            details={
                "source": source,
                "item_count": item_count,
                "confidence": confidence,
            },
        )

    @staticmethod
    def segmentation_fallback(
        reason: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SEGMENTATION_FALLBACK,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            correlation_id=correlation_id,
            description="LLM segmentation unavailable, used heuristic segmenter",
            details={"reason": reason},
        )

    @staticmethod
    def validation_failed(
        stage: str,
        issues: list[dict],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=f"{stage.capitalize()} validation failed with {len(issues)} issues",
            details={
                "stage": stage,
                "issues": issues,
            },
        )

    @staticmethod
    def mapping_degraded(
        stage: str,
        description: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MAPPING_DEGRADED,
            severity=AuditSeverity.WARNING,
            entity_type="mapping",
            correlation_id=correlation_id,
            description=f"Account mapping stage '{stage}' failed, kept previous result",
            error_message=error_message,
            details={"stage": stage, "item": description[:100]},
        )

    @staticmethod
    def entry_auto_balanced(
        difference: str,
        adjusted_account: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_AUTO_BALANCED,
            severity=AuditSeverity.WARNING,
            entity_type="entry",
            correlation_id=correlation_id,
            description=f"Rounding difference {difference} absorbed by {adjusted_account}",
            details={
                "difference": difference,
                "adjusted_account": adjusted_account,
            },
        )

    @staticmethod
    def balance_failed(
        difference: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="entry",
            correlation_id=correlation_id,
            description=f"Entry rejected: out of balance by {difference}",
            details={"difference": difference},
        )

    @staticmethod
    def entry_saved(
        entry_id: UUID,
        payee: str,
        amount: str,
        currency: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_SAVED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Ledger entry saved: {payee} - {amount} {currency}",
            details={
                "payee": payee,
                "amount": amount,
                "currency": currency,
            },
        )

    @staticmethod
    def save_failed(
        entry_id: UUID,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description="Ledger entry could not be saved",
            error_message=error_message,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
