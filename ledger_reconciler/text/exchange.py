"""
Exchange and fee heuristics over free text.

Detects exchange/swap vocabulary, "USDT/UAH" style pair patterns and fee
mentions, and parses an exchange intent ("обмен 500 usd на 460 eur")
into source/target legs.
"""

import re
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from ledger_reconciler.text.money import (
    AmountPair,
    extract_amount_pairs,
    normalize_currency_token,
    parse_amount,
)


_LETTER = r"A-Za-zА-Яа-яЁё"
_CCY_TOKEN = rf"[{_LETTER}$€₴₽]{{2,16}}"
_AMOUNT = r"\d+(?:[.,]\d+)?"
_CONNECTOR = r"(?:на|в|to|->|→)"

EXCHANGE_VOCABULARY_RE = re.compile(
    r"(валютообмен|обмен|конверт|swap|своп|свап|exchange)",
    re.IGNORECASE,
)

# Vocabulary of a receipt that shows one leg of a trade
COMPOSITE_VOCABULARY_RE = re.compile(
    r"(swap|своп|свап|order|ордер|exchange|обмен|trade|трейд|сделк|"
    r"buy|sell|покупк|продаж|filled|исполнен)",
    re.IGNORECASE,
)

FEE_WINDOW_BEFORE = 20
FEE_WINDOW_AFTER = 25

FEE_KEYWORD_RE = re.compile(
    r"(fee|commission|комисс\w*|сбор\w*)",
    re.IGNORECASE,
)

CURRENCY_PAIR_RE = re.compile(
    r"(?<![A-Za-z])([A-Za-z]{2,6})\s*/\s*([A-Za-z]{2,6})(?![A-Za-z])"
)

_CONNECTOR_RE = re.compile(
    rf"(?<![{_LETTER}]){_CONNECTOR}\s*(?:({_AMOUNT})\s*)?({_CCY_TOKEN})",
    re.IGNORECASE,
)

_EXPLICIT_RE = re.compile(
    r"(?:обмен(?:ял[аи]?|ять)?|конверт(?:аци[яию]|ир(?:овал|овать)?)?|swap|exchange)"
    rf"\s*(?:[:\-])?\s*({_AMOUNT})\s*({_CCY_TOKEN})"
    rf"\s*{_CONNECTOR}\s*(?:({_AMOUNT})\s*)?({_CCY_TOKEN})",
    re.IGNORECASE,
)


class ExchangeIntent(BaseModel):
    """Source and target legs of an exchange as stated in text."""

    source_amount: Optional[Decimal] = None
    source_currency: Optional[str] = None
    target_amount: Optional[Decimal] = None
    target_currency: Optional[str] = None
    explicit_pair: bool = False

    @property
    def has_both_amounts(self) -> bool:
        return bool(self.source_amount) and bool(self.target_amount)


def has_exchange_vocabulary(text: Optional[str]) -> bool:
    return bool(EXCHANGE_VOCABULARY_RE.search(text or ""))


def has_composite_vocabulary(text: Optional[str]) -> bool:
    return bool(COMPOSITE_VOCABULARY_RE.search(text or ""))


def has_currency_pair_pattern(
    text: Optional[str],
    supported: Optional[set[str]] = None,
) -> bool:
    """True for 'USDT/UAH'-style pairs of two different known currencies."""
    for match in CURRENCY_PAIR_RE.finditer(text or ""):
        base = normalize_currency_token(match.group(1), supported)
        quote = normalize_currency_token(match.group(2), supported)
        if base and quote and base != quote:
            return True
    return False


def is_fee_label(*labels: Optional[str]) -> bool:
    """Explicit fee label on a candidate's description/category/tag."""
    return any(label and FEE_KEYWORD_RE.search(label) for label in labels)


def fee_pairs(
    text: Optional[str],
    supported: Optional[set[str]] = None,
) -> list[AmountPair]:
    """Amount+currency pairs that sit next to a fee keyword."""
    source = text or ""
    keywords = [m.span() for m in FEE_KEYWORD_RE.finditer(source)]
    if not keywords:
        return []
    found = []
    for pair in extract_amount_pairs(source, supported):
        for start, end in keywords:
            if start - FEE_WINDOW_BEFORE <= pair.position <= end + FEE_WINDOW_AFTER:
                found.append(pair)
                break
    return found


def _connector_targets(
    source: str,
    supported: Optional[set[str]],
) -> list[tuple[Optional[Decimal], str]]:
    targets = []
    for match in _CONNECTOR_RE.finditer(source):
        currency = normalize_currency_token(match.group(2), supported)
        if not currency:
            continue
        targets.append((parse_amount(match.group(1)), currency))
    return targets


def extract_exchange_intent(
    text: Optional[str],
    pairs: Optional[list[AmountPair]] = None,
    supported: Optional[set[str]] = None,
) -> Optional[ExchangeIntent]:
    """
    Parse an exchange intent from text.

    First tries the direct "<verb> amount CCY на [amount] CCY" phrase
    (explicit_pair=True). Then, only when exchange vocabulary is present,
    falls back to the amount+currency pairs: the first pair is the
    source, the first pair in a different currency (or a bare
    "на CCY" connector) is the target.

    Returns None when neither applies.
    """
    source = text or ""
    if not source.strip():
        return None

    connectors = _connector_targets(source, supported)

    explicit = _EXPLICIT_RE.search(source)
    if explicit:
        src_amount = parse_amount(explicit.group(1))
        src_currency = normalize_currency_token(explicit.group(2), supported)
        dst_amount = parse_amount(explicit.group(3))
        dst_currency = normalize_currency_token(explicit.group(4), supported)
        if not dst_currency or dst_currency == src_currency:
            inferred = next(
                ((amount, ccy) for amount, ccy in connectors if ccy != src_currency),
                None,
            )
            if inferred:
                dst_currency = inferred[1]
                if dst_amount is None:
                    dst_amount = inferred[0]
        if src_currency and dst_currency and src_currency != dst_currency:
            return ExchangeIntent(
                source_amount=src_amount,
                source_currency=src_currency,
                target_amount=dst_amount,
                target_currency=dst_currency,
                explicit_pair=True,
            )

    if not has_exchange_vocabulary(source):
        return None

    if pairs is None:
        pairs = extract_amount_pairs(source, supported)
    usable = [p for p in pairs if p.currency and p.amount > 0]
    if not usable:
        return None

    first = usable[0]
    second = next((p for p in usable if p.currency != first.currency), None)
    if second is None:
        target = next(
            ((amount, ccy) for amount, ccy in connectors if ccy != first.currency),
            None,
        )
        if target is None:
            return None
        return ExchangeIntent(
            source_amount=first.amount,
            source_currency=first.currency,
            target_amount=target[0],
            target_currency=target[1],
            explicit_pair=False,
        )

    return ExchangeIntent(
        source_amount=first.amount,
        source_currency=first.currency,
        target_amount=second.amount,
        target_currency=second.currency,
        explicit_pair=False,
    )
