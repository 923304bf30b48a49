"""
Batch Merger

Merges candidates of one extraction call that describe the same
real-world event: same day, currency, account, category, merchant and
tag (or same day, currency and both sides for transfers). Amounts of a
group are summed; the first non-empty description wins.

The merge is order-independent in the summed amount: any permutation of
the input yields the same groups with the same totals.
"""

from decimal import Decimal
from typing import Iterable

import structlog

from ledger_reconciler.models.candidate import Candidate
from ledger_reconciler.text.dates import utc_day
from ledger_reconciler.text.normalize import fold


logger = structlog.get_logger(__name__)


def partition_batches(candidates: Iterable[Candidate]) -> list[list[Candidate]]:
    """Split candidates by batch key, keeping first-appearance order."""
    batches: dict[str, list[Candidate]] = {}
    for candidate in candidates:
        batches.setdefault(candidate.batch_key, []).append(candidate)
    return list(batches.values())


def batch_text(batch: Iterable[Candidate]) -> str:
    """Combined user text and descriptions of a batch (each once)."""
    parts: list[str] = []
    for candidate in batch:
        for piece in (candidate.user_text, candidate.description):
            if piece and piece not in parts:
                parts.append(piece)
    return "\n".join(parts)


def merchant_text(description: str) -> str:
    """Folded description without digits (receipt numbers, times)."""
    return "".join(ch for ch in fold(description) if not ch.isdigit())


def dedup_key(candidate: Candidate) -> tuple:
    day = utc_day(candidate.transaction_date).isoformat() if candidate.transaction_date else ""
    currency = (candidate.currency or "").upper()
    if candidate.is_transfer:
        return (
            "transfer",
            day,
            currency,
            fold(candidate.account),
            fold(candidate.to_account),
        )
    return (
        candidate.direction.value,
        day,
        currency,
        fold(candidate.account),
        fold(candidate.category),
        merchant_text(candidate.description),
        fold(candidate.normalized_tag or candidate.tag_text),
    )


def _merge_group(group: list[Candidate]) -> Candidate:
    if len(group) == 1:
        return group[0]
    merged = group[0].clone()
    amounts = [c.amount for c in group if c.amount is not None]
    merged.amount = sum(amounts, Decimal("0")) if amounts else None
    merged.description = next((c.description for c in group if c.description), None)
    return merged


def merge_batch(batch: list[Candidate]) -> list[Candidate]:
    """Merge duplicates inside one batch."""
    groups: dict[tuple, list[Candidate]] = {}
    for candidate in batch:
        groups.setdefault(dedup_key(candidate), []).append(candidate)
    return [_merge_group(group) for group in groups.values()]


def merge_candidates(candidates: list[Candidate]) -> list[Candidate]:
    """Merge duplicates batch by batch."""
    merged: list[Candidate] = []
    for batch in partition_batches(candidates):
        merged.extend(merge_batch(batch))
    if len(merged) != len(candidates):
        logger.info("batch_merged", before=len(candidates), after=len(merged))
    return merged
