"""
Exchange Normalizer

Collapses a currency-exchange-shaped batch into ONE transfer with a
conversion (amount/currency out, converted_amount/convert_to_currency
in). Fee candidates are set aside and kept unchanged.

DESIGN DECISION: Without this step a swap is booked as an expense plus an
unrelated income, which double-counts it in spending and income reports.
One transfer-with-conversion record keeps net worth intact and lets the
currency resolver and the ledger do the bookkeeping.

A batch is exchange-shaped when:
(a) the text has exchange vocabulary or a "USDT/UAH" pair pattern, or
(b) non-fee candidates carry at least two currencies and either there is
    both an income and an expense, or (image batches only) at least two
    expenses in different currencies.
"""

from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel

from ledger_reconciler.models.candidate import (
    BatchContext,
    Candidate,
    ConversionSource,
    Direction,
)
from ledger_reconciler.pipeline.merger import batch_text, partition_batches
from ledger_reconciler.text.exchange import (
    ExchangeIntent,
    extract_exchange_intent,
    fee_pairs,
    has_currency_pair_pattern,
    has_exchange_vocabulary,
    is_fee_label,
)
from ledger_reconciler.text.money import extract_amount_pairs


logger = structlog.get_logger(__name__)


class ExchangeLegs(BaseModel):
    """Resolved source/target of an exchange with the legs they came from."""

    source_amount: Optional[Decimal] = None
    source_currency: str
    target_amount: Optional[Decimal] = None
    target_currency: str
    explicit: bool = False
    source_leg: Optional[Candidate] = None
    target_leg: Optional[Candidate] = None


def is_fee_candidate(
    candidate: Candidate,
    fee_amounts: set[tuple[str, Decimal]],
) -> bool:
    if is_fee_label(
        candidate.description,
        candidate.category,
        candidate.tag_text,
        candidate.normalized_tag,
    ):
        return True
    return (candidate.currency, candidate.amount) in fee_amounts


def is_exchange_shaped(
    legs: list[Candidate],
    text: str,
    is_image: bool,
    supported: Optional[set[str]] = None,
) -> bool:
    if has_exchange_vocabulary(text) or has_currency_pair_pattern(text, supported):
        return True
    currencies = {c.currency for c in legs if c.currency}
    if len(currencies) < 2:
        return False
    directions = {c.direction for c in legs}
    if Direction.INCOME in directions and Direction.EXPENSE in directions:
        return True
    if is_image:
        expense_currencies = {c.currency for c in legs if c.direction == Direction.EXPENSE and c.currency}
        return len(expense_currencies) >= 2
    return False


def _largest(candidates: list[Candidate]) -> Optional[Candidate]:
    best = None
    for candidate in candidates:
        if best is None or (candidate.amount or 0) > (best.amount or 0):
            best = candidate
    return best


def fallback_legs(legs: list[Candidate], is_image: bool) -> Optional[ExchangeLegs]:
    """
    Pair the largest outflow with the largest inflow in another currency.

    Image batches with no inflow pair the first expense with the largest
    expense in another currency (both legs printed on one receipt).
    """
    expenses = [c for c in legs if c.direction == Direction.EXPENSE and c.currency]
    incomes = [c for c in legs if c.direction == Direction.INCOME and c.currency]

    source = _largest(expenses)
    if source is not None:
        target = _largest([c for c in incomes if c.currency != source.currency])
        if target is None and is_image and not incomes:
            source = expenses[0]
            target = _largest([c for c in expenses if c.currency != source.currency])
        if target is not None:
            return ExchangeLegs(
                source_amount=source.amount,
                source_currency=source.currency,
                target_amount=target.amount,
                target_currency=target.currency,
                source_leg=source,
                target_leg=target,
            )
    return None


def _leg_in(legs: list[Candidate], currency: Optional[str], prefer: Direction) -> Optional[Candidate]:
    matching = [c for c in legs if c.currency == currency]
    preferred = [c for c in matching if c.direction == prefer]
    return _largest(preferred) or _largest(matching)


def resolve_legs(
    legs: list[Candidate],
    intent: Optional[ExchangeIntent],
    is_image: bool,
) -> Optional[ExchangeLegs]:
    """Text intent first, candidates second; None when no two currencies emerge."""
    if intent and intent.source_currency and intent.target_currency:
        source_leg = _leg_in(legs, intent.source_currency, Direction.EXPENSE)
        target_leg = _leg_in(legs, intent.target_currency, Direction.INCOME)
        return ExchangeLegs(
            source_amount=intent.source_amount or (source_leg.amount if source_leg else None),
            source_currency=intent.source_currency,
            target_amount=intent.target_amount or (target_leg.amount if target_leg else None),
            target_currency=intent.target_currency,
            explicit=intent.has_both_amounts,
            source_leg=source_leg,
            target_leg=target_leg,
        )
    return fallback_legs(legs, is_image)


def build_transfer(base: Candidate, exchange: ExchangeLegs) -> Candidate:
    transfer = base.clone(
        direction=Direction.TRANSFER,
        exchange_like=True,
        amount=exchange.source_amount,
        currency=exchange.source_currency,
        convert_to_currency=exchange.target_currency,
        converted_amount=exchange.target_amount,
        category=None,
        category_id=None,
    )
    source_leg = exchange.source_leg
    target_leg = exchange.target_leg
    if source_leg is not None and source_leg is not base:
        transfer.account = source_leg.account
        transfer.account_id = source_leg.account_id
    if target_leg is not None and not base.is_transfer:
        transfer.to_account = target_leg.account
        transfer.to_account_id = target_leg.account_id
    if not transfer.description:
        transfer.description = next(
            (leg.description for leg in (source_leg, target_leg) if leg and leg.description),
            None,
        )
    transfer.meta.conversion_source = (
        ConversionSource.EXPLICIT if exchange.explicit else ConversionSource.UNKNOWN
    )
    return transfer


def normalize_batch(
    batch: list[Candidate],
    is_image: bool = False,
    supported: Optional[set[str]] = None,
) -> list[Candidate]:
    text = batch_text(batch)
    fee_amounts = {(p.currency, p.amount) for p in fee_pairs(text, supported)}
    for candidate in batch:
        candidate.meta.is_fee = is_fee_candidate(candidate, fee_amounts)

    # Already a conversion: only flag it
    for candidate in batch:
        if (
            candidate.is_transfer
            and candidate.convert_to_currency
            and candidate.convert_to_currency != candidate.currency
        ):
            candidate.exchange_like = True

    legs = [c for c in batch if not c.meta.is_fee and not c.is_transfer]
    transfers = [c for c in batch if not c.meta.is_fee and c.is_transfer]
    if any(t.exchange_like for t in transfers):
        return batch
    if not is_exchange_shaped(legs, text, is_image, supported):
        return batch

    pairs = [
        p for p in extract_amount_pairs(text, supported)
        if (p.currency, p.amount) not in fee_amounts
    ]
    intent = extract_exchange_intent(text, pairs, supported)
    exchange = resolve_legs(legs, intent, is_image)
    if exchange is None or exchange.source_currency == exchange.target_currency:
        return batch

    base = (
        transfers[0] if transfers
        else exchange.source_leg or exchange.target_leg or (legs[0] if legs else None)
    )
    if base is None:
        return batch

    transfer = build_transfer(base, exchange)
    dropped = {
        id(c) for c in (exchange.source_leg, exchange.target_leg, base)
        if c is not None
    }

    result: list[Candidate] = []
    inserted = False
    for candidate in batch:
        if id(candidate) in dropped:
            if not inserted:
                result.append(transfer)
                inserted = True
            continue
        result.append(candidate)

    logger.info(
        "exchange_normalized",
        source_currency=exchange.source_currency,
        target_currency=exchange.target_currency,
        explicit=exchange.explicit,
        dropped=len(dropped),
        fees=sum(1 for c in batch if c.meta.is_fee),
    )
    return result


def normalize_exchanges(
    candidates: list[Candidate],
    context: Optional[BatchContext] = None,
    supported: Optional[set[str]] = None,
) -> list[Candidate]:
    is_image = bool(context and context.is_image)
    normalized: list[Candidate] = []
    for batch in partition_batches(candidates):
        normalized.extend(normalize_batch(batch, is_image, supported))
    return normalized
