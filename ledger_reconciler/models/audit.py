"""
Audit Models for the Ledger Reconciler

Every step that changes what the user sees or what the ledger holds is
recorded: extraction, validation failures, commits, rollbacks and
mass edits.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of the reconciliation pipeline has its own event type.
    """
    # Extraction
    EXTRACTION_COMPLETED = "extraction_completed"
    EXTRACTION_FAILED = "extraction_failed"
    RATE_LIMITED = "rate_limited"

    # Validation
    VALIDATION_FAILED = "validation_failed"
    CORRECTION_MERGED = "correction_merged"

    # Commit
    BATCH_COMMITTED = "batch_committed"
    COMMIT_FAILED = "commit_failed"
    ROLLBACK_COMPLETED = "rollback_completed"
    DUPLICATE_CONFIRM_IGNORED = "duplicate_confirm_ignored"

    # Mass edit
    MASS_EDIT_PROPOSED = "mass_edit_proposed"
    MASS_EDIT_REJECTED = "mass_edit_rejected"
    MASS_EDIT_APPLIED = "mass_edit_applied"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    user_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'batch', 'ledger_entry', 'mass_edit')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one message and its confirmation)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.batch_committed(user_id, session_id, ids, correlation_id)
    """

    @staticmethod
    def extraction_completed(
        user_id: str,
        batch_id: str,
        source: str,
        candidate_count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_COMPLETED,
            user_id=user_id,
            entity_type="batch",
            entity_id=batch_id,
            correlation_id=correlation_id,
            description=f"Extracted {candidate_count} candidate(s) from {source}",
            details={
                "source": source,
                "candidate_count": candidate_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def extraction_failed(
        user_id: str,
        batch_id: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="batch",
            entity_id=batch_id,
            correlation_id=correlation_id,
            description="Extraction returned nothing usable",
            error_message=error_message,
        )

    @staticmethod
    def rate_limited(
        user_id: str,
        retry_after_seconds: float,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATE_LIMITED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Extraction request throttled",
            details={
                "retry_after_seconds": round(retry_after_seconds, 2),
            },
        )

    @staticmethod
    def validation_failed(
        user_id: str,
        batch_id: str,
        failed_index: Optional[int],
        missing: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="batch",
            entity_id=batch_id,
            correlation_id=correlation_id,
            description=f"Batch blocked with {len(missing)} missing field(s)",
            details={
                "failed_index": failed_index,
                "missing": missing,
            },
        )

    @staticmethod
    def correction_merged(
        user_id: str,
        session_id: str,
        fields: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CORRECTION_MERGED,
            user_id=user_id,
            entity_type="draft_session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description="User correction merged into held draft",
            details={
                "fields": fields,
            },
            is_user_action=True,
        )

    @staticmethod
    def batch_committed(
        user_id: str,
        session_id: str,
        entry_ids: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_COMMITTED,
            user_id=user_id,
            entity_type="draft_session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description=f"Committed {len(entry_ids)} ledger entr{'y' if len(entry_ids) == 1 else 'ies'}",
            details={
                "entry_ids": entry_ids,
            },
            is_user_action=True,
        )

    @staticmethod
    def commit_failed(
        user_id: str,
        session_id: str,
        error_message: str,
        rolled_back: bool,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMIT_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="draft_session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description="Batch commit failed",
            error_message=error_message,
            details={
                "rolled_back": rolled_back,
            },
        )

    @staticmethod
    def rollback_completed(
        user_id: str,
        session_id: str,
        deleted_ids: list[str],
        failed_ids: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROLLBACK_COMPLETED,
            severity=AuditSeverity.WARNING if failed_ids else AuditSeverity.INFO,
            user_id=user_id,
            entity_type="draft_session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description=f"Rolled back {len(deleted_ids)} entr{'y' if len(deleted_ids) == 1 else 'ies'}",
            details={
                "deleted_ids": deleted_ids,
                "failed_ids": failed_ids,
            },
        )

    @staticmethod
    def duplicate_confirm_ignored(
        user_id: str,
        fingerprint: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_CONFIRM_IGNORED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Confirmation already in progress",
            details={
                "fingerprint": fingerprint[:16],
            },
            is_user_action=True,
        )

    @staticmethod
    def mass_edit_proposed(
        user_id: str,
        proposal_id: str,
        action: str,
        match_count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MASS_EDIT_PROPOSED,
            user_id=user_id,
            entity_type="mass_edit",
            entity_id=proposal_id,
            correlation_id=correlation_id,
            description=f"Mass {action} proposed for {match_count} entries",
            details={
                "action": action,
                "match_count": match_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def mass_edit_rejected(
        user_id: str,
        proposal_id: str,
        issue_kind: str,
        message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MASS_EDIT_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="mass_edit",
            entity_id=proposal_id,
            correlation_id=correlation_id,
            description=f"Mass edit rejected: {issue_kind}",
            error_code=issue_kind,
            error_message=message,
        )

    @staticmethod
    def mass_edit_applied(
        user_id: str,
        proposal_id: str,
        applied: int,
        failed: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MASS_EDIT_APPLIED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            user_id=user_id,
            entity_type="mass_edit",
            entity_id=proposal_id,
            correlation_id=correlation_id,
            description=f"Mass edit applied to {applied} entries ({failed} failed)",
            details={
                "applied": applied,
                "failed": failed,
            },
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: UUID
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
