"""Audit logging package."""

from ledger_reconciler.audit.logger import AuditLogger, create_correlation_id

__all__ = ["AuditLogger", "create_correlation_id"]
