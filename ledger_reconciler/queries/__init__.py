"""Mass-edit query package."""

from ledger_reconciler.queries.mass_edit import MassEditMatchError, MassEditMatcher

__all__ = ["MassEditMatcher", "MassEditMatchError"]
