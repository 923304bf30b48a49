"""
Data Models Package

All data flowing through the reconciliation pipeline conforms to these
Pydantic schemas.
"""

from ledger_reconciler.models.candidate import (
    BatchContext,
    Candidate,
    CandidateSource,
    ConversionSource,
    Direction,
    IssueKind,
    ReconciliationIssue,
    ResolutionMeta,
)
from ledger_reconciler.models.ledger import (
    Account,
    AccountAsset,
    AccountBook,
    AccountUsageStats,
    BatchValidationResult,
    Category,
    CommitResult,
    DraftSession,
    LedgerEntry,
    LedgerEntryCreate,
    PipelineResult,
    ResolvedTag,
    ReviewState,
    Tag,
)
from ledger_reconciler.models.mass_edit import (
    MassEditAction,
    MassEditApplyResult,
    MassEditDraftRow,
    MassEditFilter,
    MassEditInstruction,
    MassEditMode,
    MassEditPatch,
    MassEditProposal,
)
from ledger_reconciler.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Candidate models
    "BatchContext",
    "Candidate",
    "CandidateSource",
    "ConversionSource",
    "Direction",
    "IssueKind",
    "ReconciliationIssue",
    "ResolutionMeta",
    # Ledger models
    "Account",
    "AccountAsset",
    "AccountBook",
    "AccountUsageStats",
    "BatchValidationResult",
    "Category",
    "CommitResult",
    "DraftSession",
    "LedgerEntry",
    "LedgerEntryCreate",
    "PipelineResult",
    "ResolvedTag",
    "ReviewState",
    "Tag",
    # Mass-edit models
    "MassEditAction",
    "MassEditApplyResult",
    "MassEditDraftRow",
    "MassEditFilter",
    "MassEditInstruction",
    "MassEditMode",
    "MassEditPatch",
    "MassEditProposal",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
