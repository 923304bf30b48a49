"""
Audit Logger

DESIGN DECISION: Every significant action of the pipeline is logged.
This provides:
1. Complete traceability of what was committed and why
2. Debugging capability for heuristics that mis-ranked something
3. A history of rollbacks and rejected mass edits

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_reconciler.models.audit import AuditEvent, AuditEventBuilder
from ledger_reconciler.services.storage import AuditStorageInterface


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
        structlog.processors.JSONRenderer(ensure_ascii=False)
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("ledger_reconciler.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

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

    async def log_extraction_completed(
        self,
        user_id: str,
        batch_id: str,
        source: str,
        candidate_count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.extraction_completed(
            user_id=user_id,
            batch_id=batch_id,
            source=source,
            candidate_count=candidate_count,
            correlation_id=correlation_id,
        ))

    async def log_extraction_failed(
        self,
        user_id: str,
        batch_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.extraction_failed(
            user_id=user_id,
            batch_id=batch_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_rate_limited(
        self,
        user_id: str,
        retry_after_seconds: float,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.rate_limited(
            user_id=user_id,
            retry_after_seconds=retry_after_seconds,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        user_id: str,
        batch_id: str,
        failed_index: Optional[int],
        missing: list[str],
        correlation_id: UUID,
    ) -> None:
        """Log a batch blocked by the validator."""
        await self.log(AuditEventBuilder.validation_failed(
            user_id=user_id,
            batch_id=batch_id,
            failed_index=failed_index,
            missing=missing,
            correlation_id=correlation_id,
        ))

    async def log_correction_merged(
        self,
        user_id: str,
        session_id: str,
        fields: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.correction_merged(
            user_id=user_id,
            session_id=session_id,
            fields=fields,
            correlation_id=correlation_id,
        ))

    async def log_batch_committed(
        self,
        user_id: str,
        session_id: str,
        entry_ids: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.batch_committed(
            user_id=user_id,
            session_id=session_id,
            entry_ids=entry_ids,
            correlation_id=correlation_id,
        ))

    async def log_commit_failed(
        self,
        user_id: str,
        session_id: str,
        error_message: str,
        rolled_back: bool,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.commit_failed(
            user_id=user_id,
            session_id=session_id,
            error_message=error_message,
            rolled_back=rolled_back,
            correlation_id=correlation_id,
        ))

    async def log_rollback_completed(
        self,
        user_id: str,
        session_id: str,
        deleted_ids: list[str],
        failed_ids: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.rollback_completed(
            user_id=user_id,
            session_id=session_id,
            deleted_ids=deleted_ids,
            failed_ids=failed_ids,
            correlation_id=correlation_id,
        ))

    async def log_duplicate_confirm(
        self,
        user_id: str,
        fingerprint: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.duplicate_confirm_ignored(
            user_id=user_id,
            fingerprint=fingerprint,
            correlation_id=correlation_id,
        ))

    async def log_mass_edit_proposed(
        self,
        user_id: str,
        proposal_id: str,
        action: str,
        match_count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.mass_edit_proposed(
            user_id=user_id,
            proposal_id=proposal_id,
            action=action,
            match_count=match_count,
            correlation_id=correlation_id,
        ))

    async def log_mass_edit_rejected(
        self,
        user_id: str,
        proposal_id: str,
        issue_kind: str,
        message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.mass_edit_rejected(
            user_id=user_id,
            proposal_id=proposal_id,
            issue_kind=issue_kind,
            message=message,
            correlation_id=correlation_id,
        ))

    async def log_mass_edit_applied(
        self,
        user_id: str,
        proposal_id: str,
        applied: int,
        failed: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.mass_edit_applied(
            user_id=user_id,
            proposal_id=proposal_id,
            applied=applied,
            failed=failed,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (a message, a confirm tap).
    Pass it through all subsequent operations.
    """
    return uuid4()
