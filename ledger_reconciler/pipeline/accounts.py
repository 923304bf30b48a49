"""
Account Resolver

Maps free-text account mentions to real accounts and fills in
account_id / to_account_id.

Matching order per mention: exact folded name, containment either way,
alias table hit, fuzzy distance (<= 2, or <= 3 after transliteration).

RULES:
- Non-transfers: explicit id > mention > default account. A non-transfer
  never stays on the "outside" sentinel account.
- Transfers: from = mention or default; to = mention or sentinel. A
  transfer never ends with both sides on the sentinel unless the user
  named it on both sides.
- Exchange-like transfers with an unmatched side use
  pick_source_account_id / pick_target_account_id instead of the
  default/sentinel fallbacks.
"""

from decimal import Decimal
from typing import Iterable, Optional

import structlog

from ledger_reconciler.config import PipelineSettings, get_settings
from ledger_reconciler.models.candidate import Candidate
from ledger_reconciler.models.ledger import (
    Account,
    AccountBook,
    AccountUsageStats,
    LedgerEntry,
)
from ledger_reconciler.text.normalize import best_match, fold


logger = structlog.get_logger(__name__)


# Brand handles, transliterations and common misspellings.
# Keys are folded canonical names; an account matches a group when its
# folded name contains the key.
BRAND_ALIASES: dict[str, tuple[str, ...]] = {
    "monobank": ("mono", "моно", "монобанк", "монобанка", "monobank", "монік"),
    "privat": ("privat", "privat24", "приват", "приватбанк", "приват24", "привата"),
    "paypal": ("paypal", "пейпал", "пайпал", "пайпел", "пейпел", "pp"),
    "bybit": ("bybit", "байбит", "бай бит", "байбіт"),
    "mexc": ("mexc", "мекс", "мех", "мэкс", "mex"),
    "bingx": ("bingx", "бингх", "бинг", "бінгх"),
    "tinkoff": ("tinkoff", "тинькофф", "тинькоф", "тинек", "тинь", "тиньк"),
    "binance": ("binance", "бинанс", "бинанса", "бінанс"),
    "cash": ("cash", "нал", "наличные", "наличка", "кеш", "налик", "готівка"),
    "revolut": ("revolut", "револют", "рево", "revo"),
    "wise": ("wise", "вайз", "transferwise"),
    "sparkasse": ("sparkasse", "шпаркасе", "шпаркассе", "спаркассе"),
    "okx": ("okx", "окх", "окекс"),
}

SENTINEL_ALIASES = ("вне", "outside", "внешний", "вне кошелька", "external")


def aliases_for(name: str) -> list[str]:
    """Alias list for an account name from the brand table."""
    folded = fold(name)
    aliases: list[str] = []
    for brand, brand_aliases in BRAND_ALIASES.items():
        if brand in folded or any(fold(a) == folded for a in brand_aliases):
            aliases.extend(brand_aliases)
    return aliases


def resolve_account_mention(
    mention: Optional[str],
    book: AccountBook,
    settings: Optional[PipelineSettings] = None,
) -> Optional[str]:
    """Account id for a free-text mention, or None."""
    if not mention or not fold(mention):
        return None
    settings = settings or get_settings().pipeline

    options = []
    for account in book.accounts:
        if account.is_hidden and not book.is_sentinel(account.id):
            continue
        aliases = aliases_for(account.name)
        if book.is_sentinel(account.id):
            aliases = [*aliases, *SENTINEL_ALIASES]
        options.append((account.id, account.name, aliases))

    return best_match(
        mention,
        options,
        max_distance=settings.max_fuzzy_distance,
        max_translit_distance=settings.max_translit_distance,
        short_mention_guard=settings.short_mention_guard,
    )


# =============================================================================
# EXCHANGE ENDPOINTS
# =============================================================================

def _recency_key(
    account: Account,
    book: AccountBook,
) -> tuple:
    stats = book.stats(account.id)
    is_default = 1 if account.id == book.default_account_id else 0
    return (-stats.last_used_at_ms, -stats.usage_count, -is_default, account.id)


def pick_source_account_id(
    book: AccountBook,
    source_currency: Optional[str],
    required_amount: Optional[Decimal] = None,
) -> Optional[str]:
    """
    Account to pay the source leg of an exchange from.

    Only accounts with a positive balance in the source currency qualify.
    Accounts covering `required_amount` win when any exist; then largest
    balance, most recent use, most use, default account, id.
    """
    if not source_currency:
        return None
    funded = [a for a in book.real_accounts if a.balance(source_currency) > 0]
    if not funded:
        return None

    required = required_amount or Decimal("0")
    enough = [a for a in funded if a.balance(source_currency) >= required] if required > 0 else funded
    pool = enough or funded
    pool.sort(key=lambda a: (-a.balance(source_currency), *_recency_key(a, book)))
    return pool[0].id


def pick_target_account_id(
    book: AccountBook,
    target_currency: Optional[str],
) -> Optional[str]:
    """
    Account to receive the target leg of an exchange.

    Any account holding the target currency qualifies, even with a zero
    balance; most recent use wins, then most use, default account, id.
    """
    if not target_currency:
        return None
    holders = [a for a in book.real_accounts if a.holds(target_currency)]
    if not holders:
        return None
    holders.sort(key=lambda a: _recency_key(a, book))
    return holders[0].id


def compute_usage_stats(entries: Iterable[LedgerEntry]) -> dict[str, AccountUsageStats]:
    """Per-account entry count and latest transaction time (both transfer sides)."""
    usage: dict[str, AccountUsageStats] = {}
    for entry in entries:
        when_ms = int(entry.transaction_date.timestamp() * 1000)
        for account_id in {entry.account_id, entry.to_account_id}:
            if not account_id:
                continue
            stats = usage.setdefault(account_id, AccountUsageStats())
            stats.usage_count += 1
            stats.last_used_at_ms = max(stats.last_used_at_ms, when_ms)
    return usage


# =============================================================================
# RESOLVER
# =============================================================================

class AccountResolver:
    """
    Binds candidates to the user's accounts.

    Mutates the candidates in place and returns them for chaining.
    """

    def __init__(
        self,
        book: AccountBook,
        settings: Optional[PipelineSettings] = None,
    ):
        self._book = book
        self._settings = settings or get_settings().pipeline

    def _lookup(self, account_id: Optional[str], mention: Optional[str]) -> Optional[str]:
        if account_id and self._book.get(account_id):
            return account_id
        return resolve_account_mention(mention, self._book, self._settings)

    def _name(self, account_id: Optional[str]) -> Optional[str]:
        account = self._book.get(account_id)
        return account.name if account else None

    def resolve(self, candidates: list[Candidate]) -> list[Candidate]:
        for candidate in candidates:
            if candidate.is_transfer:
                self._resolve_transfer(candidate)
            else:
                self._resolve_single(candidate)
        return candidates

    def _resolve_single(self, candidate: Candidate) -> None:
        book = self._book
        account_id = self._lookup(candidate.account_id, candidate.account)
        if account_id is None or book.is_sentinel(account_id):
            account_id = book.default_account_id
        candidate.account_id = account_id
        candidate.account = self._name(account_id) or candidate.account
        candidate.to_account = None
        candidate.to_account_id = None

    def _resolve_transfer(self, candidate: Candidate) -> None:
        book = self._book
        from_id = self._lookup(candidate.account_id, candidate.account)
        to_id = self._lookup(candidate.to_account_id, candidate.to_account)
        from_explicit = from_id is not None
        to_explicit = to_id is not None

        candidate.meta.from_outside_explicit = from_explicit and book.is_sentinel(from_id)
        candidate.meta.to_outside_explicit = to_explicit and book.is_sentinel(to_id)

        if candidate.exchange_like:
            if from_id is None:
                from_id = (
                    pick_source_account_id(book, candidate.currency, candidate.amount)
                    or book.default_account_id
                )
            if to_id is None:
                to_id = pick_target_account_id(book, candidate.convert_to_currency) or from_id
        else:
            if from_id is None:
                from_id = book.default_account_id
            if to_id is None:
                to_id = book.sentinel_account_id

        both_outside = book.is_sentinel(from_id) and book.is_sentinel(to_id)
        named_both = candidate.meta.from_outside_explicit and candidate.meta.to_outside_explicit
        if both_outside and not named_both and book.default_account_id:
            from_id = book.default_account_id

        # "перевёл 100 на моно" with mono as default: money came from outside
        if not from_explicit and from_id == to_id and not candidate.exchange_like:
            from_id = book.sentinel_account_id or from_id

        candidate.account_id = from_id
        candidate.to_account_id = to_id
        candidate.account = self._name(from_id) or candidate.account
        candidate.to_account = self._name(to_id) or candidate.to_account
        candidate.category = None
        candidate.category_id = None

        logger.debug(
            "transfer_accounts_resolved",
            from_account_id=from_id,
            to_account_id=to_id,
            exchange_like=candidate.exchange_like,
        )
