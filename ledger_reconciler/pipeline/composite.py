"""
Composite-Trade Expander

A receipt of a swap or an exchange order often yields only the outflow
leg: the extractor sees "sold 100 USDT" but not "got 0.0015 BTC" as a
separate movement. When a batch has trade vocabulary and only expense
candidates, the acquired asset is recovered from the text and added as
an income candidate cloned from the largest expense.

Never adds an inflow when the batch already has one, and never reuses an
amount/currency pair already present in the batch.
"""

from typing import Optional

import structlog

from ledger_reconciler.models.candidate import Candidate, Direction
from ledger_reconciler.pipeline.merger import batch_text, partition_batches
from ledger_reconciler.text.exchange import fee_pairs, has_composite_vocabulary
from ledger_reconciler.text.money import AmountPair, extract_amount_pairs


logger = structlog.get_logger(__name__)


def _largest(candidates: list[Candidate]) -> Candidate:
    best = candidates[0]
    for candidate in candidates[1:]:
        if (candidate.amount or 0) > (best.amount or 0):
            best = candidate
    return best


def find_acquired_pair(
    batch: list[Candidate],
    supported: Optional[set[str]] = None,
) -> Optional[AmountPair]:
    """The highest-value amount+currency pair in the text not yet accounted for."""
    text = batch_text(batch)
    seen = {(c.currency, c.amount) for c in batch if c.currency and c.amount}
    fees = {(p.currency, p.amount) for p in fee_pairs(text, supported)}
    spent_currency = _largest(batch).currency

    unseen = [
        pair for pair in extract_amount_pairs(text, supported)
        if (pair.currency, pair.amount) not in seen
        and (pair.currency, pair.amount) not in fees
        and pair.currency != spent_currency
    ]
    if not unseen:
        return None
    best = unseen[0]
    for pair in unseen[1:]:
        if pair.amount > best.amount:
            best = pair
    return best


def expand_batch(
    batch: list[Candidate],
    supported: Optional[set[str]] = None,
) -> list[Candidate]:
    if not batch or any(c.direction != Direction.EXPENSE for c in batch):
        return batch
    if not has_composite_vocabulary(batch_text(batch)):
        return batch

    acquired = find_acquired_pair(batch, supported)
    if acquired is None:
        return batch

    source = _largest(batch)
    inflow = source.clone(
        direction=Direction.INCOME,
        amount=acquired.amount,
        currency=acquired.currency,
        convert_to_currency=None,
        converted_amount=None,
    )
    inflow.meta.synthesized = True
    logger.info(
        "composite_leg_synthesized",
        currency=acquired.currency,
        amount=str(acquired.amount),
        from_currency=source.currency,
    )
    return [*batch, inflow]


def expand_composite_trades(
    candidates: list[Candidate],
    supported: Optional[set[str]] = None,
) -> list[Candidate]:
    expanded: list[Candidate] = []
    for batch in partition_batches(candidates):
        expanded.extend(expand_batch(batch, supported))
    return expanded
