"""Batch validation package."""

from ledger_reconciler.validation.validator import CandidateValidator, missing_fields

__all__ = ["CandidateValidator", "missing_fields"]
