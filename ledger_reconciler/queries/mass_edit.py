"""
Mass-Edit Matching Engine

DESIGN DECISION: Matching is DETERMINISTIC.
The LLM converts a natural-language instruction into a MassEditInstruction.
This engine selects the affected entries from actual stored data and
produces before/after rows. The ledger is not touched here; the rows are
applied only after the user confirms them.

Filter semantics:
- every present filter field must match
- account/category/tag use the same fuzzy name matching as the account
  resolver
- amount matches inside a tolerance band (1e-8 for crypto, 0.01 for fiat,
  tighter when the filter amount is more precise)
- dates match on the same UTC calendar day
- deletions may carry extra "amount currency" pairs in the raw text;
  those intersect the selection when the filter has no amount and are
  unioned in otherwise

Hard failures: no matches, more than `mass_edit_max_matches`, and more
than one match in single mode.
"""

from decimal import Decimal
from typing import Any, Optional

import structlog

from ledger_reconciler.config import PipelineSettings, get_settings
from ledger_reconciler.models.candidate import IssueKind, ReconciliationIssue
from ledger_reconciler.models.ledger import AccountBook, Category, LedgerEntry, Tag
from ledger_reconciler.models.mass_edit import (
    MassEditAction,
    MassEditDraftRow,
    MassEditFilter,
    MassEditInstruction,
    MassEditMode,
    MassEditPatch,
    MassEditProposal,
)
from ledger_reconciler.pipeline.accounts import resolve_account_mention
from ledger_reconciler.services.currency import KnownCurrencies
from ledger_reconciler.text.dates import same_utc_day
from ledger_reconciler.text.money import (
    AmountPair,
    decimal_places,
    extract_amount_pairs,
    normalize_currency_token,
)
from ledger_reconciler.text.normalize import best_match, fold, match_rank


logger = structlog.get_logger(__name__)


class MassEditMatchError(Exception):
    """A filter or patch names something that does not exist."""

    def __init__(self, message: str, field: str):
        super().__init__(message)
        self.field = field


class MassEditMatcher:
    """
    Selects ledger entries for one mass-edit instruction.

    GUARANTEES:
    - Only returns real entries from the given list
    - Never mutates an entry
    - Clear failure issue when the selection is empty or too broad
    """

    def __init__(
        self,
        book: AccountBook,
        categories: list[Category],
        tags: list[Tag],
        known: Optional[KnownCurrencies] = None,
        settings: Optional[PipelineSettings] = None,
    ):
        self._book = book
        self._categories = categories
        self._tags = tags
        self._known = known or KnownCurrencies()
        self._settings = settings or get_settings().pipeline

    # -- name resolution ----------------------------------------------------

    def _category_id(self, mention: str) -> Optional[str]:
        return best_match(
            mention,
            ((c.id, c.name, ()) for c in self._categories),
            max_distance=self._settings.max_fuzzy_distance,
            max_translit_distance=self._settings.max_translit_distance,
            short_mention_guard=self._settings.short_mention_guard,
        )

    def _tag_id(self, mention: str) -> Optional[str]:
        return best_match(
            mention,
            ((t.id, t.name, t.aliases) for t in self._tags),
            max_distance=self._settings.max_fuzzy_distance,
            max_translit_distance=self._settings.max_translit_distance,
            short_mention_guard=self._settings.short_mention_guard,
        )

    def _account_id(self, mention: str) -> Optional[str]:
        return resolve_account_mention(mention, self._book, self._settings)

    def _currency(self, raw: Optional[str]) -> Optional[str]:
        if not raw:
            return None
        return normalize_currency_token(raw) or raw.upper()

    # -- amount tolerance ---------------------------------------------------

    def amount_tolerance(self, currency: Optional[str], amount: Optional[Decimal]) -> Decimal:
        """
        Half-width of the amount band.

        The base band is the crypto or fiat tolerance; a filter amount with
        more decimals than that narrows it to one unit of its last digit.
        """
        if currency and self._known.is_crypto(currency):
            base = Decimal(str(self._settings.crypto_amount_tolerance))
        else:
            base = Decimal(str(self._settings.fiat_amount_tolerance))
        places = decimal_places(amount)
        precision = Decimal(1).scaleb(-places)
        return min(base, precision)

    def amount_matches(
        self,
        entry_amount: Decimal,
        wanted: Decimal,
        currency: Optional[str],
    ) -> bool:
        return abs(entry_amount - wanted) <= self.amount_tolerance(currency, wanted)

    # -- filter evaluation --------------------------------------------------

    def _compile(self, flt: MassEditFilter) -> dict[str, Any]:
        """Resolve names in a filter to ids. Unknown names raise MassEditMatchError."""
        compiled: dict[str, Any] = dict(flt.present())
        if flt.currency:
            compiled["currency"] = self._currency(flt.currency)
        for field, resolver in (
            ("account", self._account_id),
            ("to_account", self._account_id),
            ("category", self._category_id),
            ("tag", self._tag_id),
        ):
            mention = getattr(flt, field)
            if mention is None:
                continue
            resolved = resolver(mention)
            if resolved is None:
                raise MassEditMatchError(f"не найдено: {mention}", field)
            compiled[field] = resolved
        return compiled

    def entry_matches(self, entry: LedgerEntry, compiled: dict[str, Any]) -> bool:
        for field, wanted in compiled.items():
            if field == "direction":
                if entry.direction != wanted:
                    return False
            elif field == "currency":
                if entry.currency.upper() != wanted:
                    return False
            elif field == "amount":
                currency = compiled.get("currency") or entry.currency
                if not self.amount_matches(entry.amount, wanted, currency):
                    return False
            elif field == "account":
                if entry.account_id != wanted:
                    return False
            elif field == "to_account":
                if entry.to_account_id != wanted:
                    return False
            elif field == "category":
                if entry.category_id != wanted:
                    return False
            elif field == "tag":
                if entry.tag_id != wanted:
                    return False
            elif field == "description":
                if not self._description_matches(entry.description, wanted):
                    return False
            elif field == "transaction_date":
                if not same_utc_day(entry.transaction_date, wanted):
                    return False
        return True

    def _description_matches(self, description: Optional[str], wanted: str) -> bool:
        if not description:
            return False
        if fold(wanted) in fold(description):
            return True
        return match_rank(
            wanted,
            description,
            max_distance=self._settings.max_fuzzy_distance,
            max_translit_distance=self._settings.max_translit_distance,
            short_mention_guard=self._settings.short_mention_guard,
        ) is not None

    def _secondary_pairs(self, instruction: MassEditInstruction) -> list[AmountPair]:
        """Amount+currency pairs in the raw text that the filter does not cover."""
        if instruction.action != MassEditAction.DELETE:
            return []
        flt = instruction.filter
        filter_currency = self._currency(flt.currency)
        uncovered = []
        for pair in extract_amount_pairs(instruction.raw_text, self._known.all or None):
            if flt.amount is not None and pair.amount == flt.amount and pair.currency == filter_currency:
                continue
            uncovered.append(pair)
        return uncovered

    def _pair_matches(self, entry: LedgerEntry, pairs: list[AmountPair]) -> bool:
        return any(
            entry.currency.upper() == pair.currency
            and self.amount_matches(entry.amount, pair.amount, pair.currency)
            for pair in pairs
        )

    def select(self, instruction: MassEditInstruction, entries: list[LedgerEntry]) -> list[LedgerEntry]:
        """Entries matched by the instruction, ledger order preserved."""
        flt = instruction.filter
        if flt.is_empty:
            selected = list(entries) if instruction.delete_all else []
        else:
            compiled = self._compile(flt)
            selected = [e for e in entries if self.entry_matches(e, compiled)]

        pairs = self._secondary_pairs(instruction)
        if pairs and not flt.is_empty:
            if flt.amount is None:
                selected = [e for e in selected if self._pair_matches(e, pairs)]
            else:
                chosen = {e.id for e in selected}
                selected = [
                    e for e in entries
                    if e.id in chosen or self._pair_matches(e, pairs)
                ]

        if instruction.exclude is not None and not instruction.exclude.is_empty:
            excluded = self._compile(instruction.exclude)
            selected = [e for e in selected if not self.entry_matches(e, excluded)]
        return selected

    # -- patch --------------------------------------------------------------

    def compile_patch(self, patch: MassEditPatch) -> dict[str, Any]:
        """Entry-level changes for a patch (names resolved to ids)."""
        changes: dict[str, Any] = {}
        present = patch.present()
        for field in ("direction", "amount", "description", "transaction_date"):
            if field in present:
                changes[field] = present[field]
        if patch.currency:
            changes["currency"] = self._currency(patch.currency)
        for field, target, resolver in (
            ("account", "account_id", self._account_id),
            ("to_account", "to_account_id", self._account_id),
            ("category", "category_id", self._category_id),
            ("tag", "tag_id", self._tag_id),
        ):
            mention = getattr(patch, field)
            if mention is None:
                continue
            resolved = resolver(mention)
            if resolved is None:
                raise MassEditMatchError(f"не найдено: {mention}", field)
            changes[target] = resolved
        return changes

    # -- entry point --------------------------------------------------------

    def _fail(
        self,
        user_id: str,
        instruction: MassEditInstruction,
        kind: IssueKind,
        message: str,
        **details: Any,
    ) -> MassEditProposal:
        logger.info("mass_edit_rejected", user_id=user_id, kind=kind.value, **details)
        return MassEditProposal(
            user_id=user_id,
            success=False,
            instruction=instruction,
            issue=ReconciliationIssue(kind=kind, message=message, details=details),
        )

    def match(
        self,
        user_id: str,
        instruction: MassEditInstruction,
        entries: list[LedgerEntry],
    ) -> MassEditProposal:
        """Build the proposal for one instruction."""
        changes: dict[str, Any] = {}
        try:
            if instruction.action == MassEditAction.UPDATE:
                if instruction.update is None or instruction.update.is_empty:
                    return self._fail(
                        user_id, instruction, IssueKind.MISSING_CRITICAL_FIELDS,
                        "не указано, что изменить",
                    )
                changes = self.compile_patch(instruction.update)
            selected = self.select(instruction, entries)
        except MassEditMatchError as e:
            return self._fail(
                user_id, instruction, IssueKind.NO_MASS_EDIT_MATCHES, str(e), field=e.field,
            )

        count = len(selected)
        if count == 0:
            return self._fail(
                user_id, instruction, IssueKind.NO_MASS_EDIT_MATCHES,
                "не найдено ни одной подходящей операции",
            )
        if count > self._settings.mass_edit_max_matches:
            return self._fail(
                user_id, instruction, IssueKind.TOO_MANY_MASS_EDIT_MATCHES,
                "слишком много операций, уточните фильтр",
                match_count=count,
            )
        if instruction.mode == MassEditMode.SINGLE and count > 1:
            return self._fail(
                user_id, instruction, IssueKind.AMBIGUOUS_MASS_EDIT_MATCH,
                "найдено несколько операций, добавьте деталей",
                match_count=count,
            )

        after = {
            key: (str(value) if isinstance(value, Decimal) else value)
            for key, value in changes.items()
        } if changes else None
        rows = [
            MassEditDraftRow(
                transaction_id=entry.id,
                action=instruction.action,
                before=entry.snapshot(),
                after=dict(after) if after is not None else None,
            )
            for entry in selected
        ]
        logger.info(
            "mass_edit_proposed",
            user_id=user_id,
            action=instruction.action.value,
            match_count=count,
        )
        return MassEditProposal(
            user_id=user_id,
            success=True,
            instruction=instruction,
            rows=rows,
        )
