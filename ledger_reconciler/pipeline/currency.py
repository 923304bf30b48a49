"""
Currency Resolver

Reconciles a candidate's currency against the globally supported set and
the holdings of its account, and fills in the converted amount of
exchange-like transfers from a rate lookup.

Hard failures are recorded on the candidate (meta.block) and surface
through the validator; nothing here raises for an expected failure.
"""

from decimal import Decimal
from typing import Optional

import structlog

from ledger_reconciler.models.candidate import (
    Candidate,
    ConversionSource,
    Direction,
    IssueKind,
)
from ledger_reconciler.models.ledger import Account, AccountBook
from ledger_reconciler.services.currency import CurrencyServiceInterface, KnownCurrencies
from ledger_reconciler.text.money import detect_currency_mentions, normalize_currency_token


logger = structlog.get_logger(__name__)


def infer_currency_from_account(
    account: Account,
    direction: Direction,
    amount: Optional[Decimal],
) -> Optional[str]:
    """
    Income lands in the first holding. Outflows use the first holding
    whose balance covers the amount, else the first holding.
    """
    if not account.assets:
        return None
    first = account.assets[0].currency.upper()
    if direction == Direction.INCOME or amount is None:
        return first
    for asset in account.assets:
        if asset.amount >= amount:
            return asset.currency.upper()
    return first


class CurrencyResolver:
    """
    Resolves currencies of a batch in place.

    The rate lookup is the only awaited step.
    """

    def __init__(
        self,
        known: KnownCurrencies,
        currency_service: CurrencyServiceInterface,
        book: AccountBook,
    ):
        self._known = known
        self._rates = currency_service
        self._book = book

    async def resolve(self, candidates: list[Candidate]) -> list[Candidate]:
        for candidate in candidates:
            await self.resolve_one(candidate)
        return candidates

    def _normalize(self, code: Optional[str]) -> tuple[Optional[str], bool]:
        """(normalized code, is_supported); empty input is (None, True)."""
        if not code:
            return None, True
        normalized = normalize_currency_token(code) or code.strip().upper()
        return normalized, normalized in self._known.all

    async def resolve_one(self, candidate: Candidate) -> Candidate:
        meta = candidate.meta

        currency, supported = self._normalize(candidate.currency)
        if not supported:
            meta.block(
                IssueKind.UNSUPPORTED_CURRENCY,
                f"валюта {currency} не поддерживается",
                currency=currency,
            )
            return candidate
        candidate.currency = currency

        target, supported = self._normalize(candidate.convert_to_currency)
        if not supported:
            meta.block(
                IssueKind.UNSUPPORTED_CURRENCY,
                f"валюта {target} не поддерживается",
                currency=target,
            )
            return candidate
        candidate.convert_to_currency = target

        text = " ".join(p for p in (candidate.user_text, candidate.description) if p)
        meta.currency_explicit = bool(currency) and currency in detect_currency_mentions(
            text, self._known.all
        )

        account = self._book.get(candidate.account_id)
        is_outside = self._book.is_sentinel(candidate.account_id)
        if account is not None and not is_outside:
            if not account.assets:
                meta.block(
                    IssueKind.ACCOUNT_HAS_NO_HOLDINGS,
                    f"на счёте {account.name} нет валют",
                    account_id=account.id,
                )
                return candidate
            self._infer(candidate, account)
            self._check_holding(candidate, account)

        if candidate.exchange_like:
            await self._resolve_conversion(candidate)
        return candidate

    def _infer(self, candidate: Candidate, account: Account) -> None:
        currency = candidate.currency
        guessed = not currency or (
            not candidate.meta.currency_explicit
            and not candidate.exchange_like
            and not account.holds(currency)
        )
        if not guessed:
            return
        inferred = infer_currency_from_account(account, candidate.direction, candidate.amount)
        if inferred and inferred != currency:
            logger.info(
                "currency_inferred",
                account_id=account.id,
                stated=currency,
                inferred=inferred,
            )
            candidate.currency = inferred

    def _check_holding(self, candidate: Candidate, account: Account) -> None:
        if not candidate.currency or account.holds(candidate.currency):
            return
        if candidate.exchange_like or candidate.direction == Direction.INCOME:
            if not candidate.exchange_like:
                candidate.convert_to_currency = None
                candidate.converted_amount = None
            return
        candidate.meta.block(
            IssueKind.MISSING_CRITICAL_FIELDS,
            f"на счёте {account.name} нет валюты {candidate.currency}",
            account_id=account.id,
            currency=candidate.currency,
        )

    async def _resolve_conversion(self, candidate: Candidate) -> None:
        meta = candidate.meta
        if candidate.converted_amount:
            # Extractor-supplied conversion; normalizer-built ones already carry a source
            if meta.conversion_source is None:
                meta.conversion_source = ConversionSource.EXPLICIT
            return
        if not (candidate.amount and candidate.currency and candidate.convert_to_currency):
            return
        if candidate.currency == candidate.convert_to_currency:
            return

        converted = await self._rates.convert(
            candidate.amount, candidate.currency, candidate.convert_to_currency
        )
        if converted is None or converted <= 0:
            meta.block(
                IssueKind.RATE_LOOKUP_FAILED,
                f"нет курса {candidate.currency}/{candidate.convert_to_currency}",
                source=candidate.currency,
                target=candidate.convert_to_currency,
            )
            return
        candidate.converted_amount = converted
        meta.conversion_source = ConversionSource.RATE
        logger.info(
            "conversion_rate_applied",
            source=candidate.currency,
            target=candidate.convert_to_currency,
            amount=str(candidate.amount),
            converted=str(converted),
        )
