"""
In-Memory Storage Implementation

Reference implementation of the storage interfaces. All data lives in one
InMemoryBackend shared by the per-entity storages, the same way several
storages would share one database connection.

Used by tests and by create_app_components() when no external storage
is wired in.

Balance effects follow the ledger rules:
- expense debits the account, income credits it (in the converted
  currency/amount when a conversion is set)
- transfer debits amount/currency on the source and credits the
  converted amount (or the same amount) on the target
Deleting an entry reverses its effect.
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from ledger_reconciler.models.audit import AuditEvent
from ledger_reconciler.models.candidate import Direction
from ledger_reconciler.models.ledger import (
    Account,
    AccountAsset,
    Category,
    LedgerEntry,
    LedgerEntryCreate,
    Tag,
)
from ledger_reconciler.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    CategoryStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    TagStorageInterface,
)
from ledger_reconciler.text.normalize import normalize_tag


class InMemoryBackend:
    """Shared state for the in-memory storages."""

    def __init__(self):
        self.accounts: dict[str, list[Account]] = {}
        self.default_account_ids: dict[str, str] = {}
        self.outside_account_ids: dict[str, str] = {}
        self.categories: dict[str, list[Category]] = {}
        self.tags: dict[str, Tag] = {}
        self.tag_owners: dict[str, str] = {}
        self.entries: dict[str, LedgerEntry] = {}
        self.events: list[AuditEvent] = []

    # -- seeding helpers ----------------------------------------------------

    def add_account(self, user_id: str, account: Account, default: bool = False) -> Account:
        self.accounts.setdefault(user_id, []).append(account)
        if default or user_id not in self.default_account_ids:
            if account.id != self.outside_account_ids.get(user_id):
                self.default_account_ids[user_id] = account.id
        return account

    def ensure_outside_account(self, user_id: str, name: str) -> Account:
        """Create the sentinel account once per user."""
        existing = self.outside_account_ids.get(user_id)
        if existing:
            return self.find_account(existing)
        account = Account(name=name)
        self.accounts.setdefault(user_id, []).append(account)
        self.outside_account_ids[user_id] = account.id
        return account

    def add_category(self, user_id: str, category: Category) -> Category:
        self.categories.setdefault(user_id, []).append(category)
        return category

    def add_tag(self, user_id: str, tag: Tag) -> Tag:
        self.tags[tag.id] = tag
        self.tag_owners[tag.id] = user_id
        return tag

    def find_account(self, account_id: Optional[str]) -> Optional[Account]:
        if not account_id:
            return None
        for accounts in self.accounts.values():
            for account in accounts:
                if account.id == account_id:
                    return account
        return None


class InMemoryAccountStorage(AccountStorageInterface):

    def __init__(self, backend: InMemoryBackend):
        self._backend = backend

    async def list_accounts(self, user_id: str) -> list[Account]:
        return [a.model_copy(deep=True) for a in self._backend.accounts.get(user_id, [])]

    async def get_default_account_id(self, user_id: str) -> Optional[str]:
        return self._backend.default_account_ids.get(user_id)

    async def get_outside_account_id(self, user_id: str) -> Optional[str]:
        return self._backend.outside_account_ids.get(user_id)


class InMemoryCategoryStorage(CategoryStorageInterface):

    def __init__(self, backend: InMemoryBackend):
        self._backend = backend

    async def list_categories(self, user_id: str) -> list[Category]:
        return list(self._backend.categories.get(user_id, []))


class InMemoryTagStorage(TagStorageInterface):

    def __init__(self, backend: InMemoryBackend):
        self._backend = backend

    async def list_tags(self, user_id: str) -> list[Tag]:
        return [
            tag.model_copy(deep=True)
            for tag_id, tag in self._backend.tags.items()
            if self._backend.tag_owners.get(tag_id) == user_id
        ]

    async def create_tag(self, user_id: str, name: str) -> Tag:
        normalized = normalize_tag(name)
        for tag_id, tag in self._backend.tags.items():
            if self._backend.tag_owners.get(tag_id) == user_id and normalize_tag(tag.name) == normalized:
                raise DuplicateError(f"Tag already exists: {name}")
        return self._backend.add_tag(user_id, Tag(name=name))

    async def increment_usage(self, tag_id: str) -> None:
        tag = self._backend.tags.get(tag_id)
        if tag is None:
            raise NotFoundError(f"Tag not found: {tag_id}")
        tag.usage_count += 1

    async def decrement_usage(self, tag_id: str) -> None:
        tag = self._backend.tags.get(tag_id)
        if tag is None:
            raise NotFoundError(f"Tag not found: {tag_id}")
        tag.usage_count = max(0, tag.usage_count - 1)

    async def delete_tag(self, tag_id: str) -> bool:
        self._backend.tag_owners.pop(tag_id, None)
        return self._backend.tags.pop(tag_id, None) is not None


class InMemoryLedgerStorage(LedgerStorageInterface):

    def __init__(self, backend: InMemoryBackend):
        self._backend = backend

    async def create_entry(self, payload: LedgerEntryCreate) -> LedgerEntry:
        for account_id in (payload.account_id, payload.to_account_id):
            if account_id and self._backend.find_account(account_id) is None:
                raise StorageError(f"Unknown account: {account_id}")
        entry = LedgerEntry(**payload.model_dump())
        self._apply_balance_effect(entry, Decimal("1"))
        self._backend.entries[entry.id] = entry
        return entry.model_copy(deep=True)

    async def get_entry(self, entry_id: str) -> Optional[LedgerEntry]:
        entry = self._backend.entries.get(entry_id)
        return entry.model_copy(deep=True) if entry else None

    async def update_entry(self, entry_id: str, changes: dict[str, Any]) -> LedgerEntry:
        current = self._backend.entries.get(entry_id)
        if current is None:
            raise NotFoundError(f"Ledger entry not found: {entry_id}")
        updated = LedgerEntry(**{**current.model_dump(), **changes})
        self._apply_balance_effect(current, Decimal("-1"))
        self._apply_balance_effect(updated, Decimal("1"))
        self._backend.entries[entry_id] = updated
        return updated.model_copy(deep=True)

    async def delete_entry(self, entry_id: str) -> bool:
        entry = self._backend.entries.pop(entry_id, None)
        if entry is None:
            return False
        self._apply_balance_effect(entry, Decimal("-1"))
        return True

    async def list_entries(
        self,
        user_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[LedgerEntry]:
        entries = sorted(
            (e for e in self._backend.entries.values() if e.user_id == user_id),
            key=lambda e: (e.transaction_date, e.created_at),
            reverse=True,
        )
        window = entries[offset:] if limit is None else entries[offset:offset + limit]
        return [e.model_copy(deep=True) for e in window]

    def _apply_balance_effect(self, entry: LedgerEntry, sign: Decimal) -> None:
        has_conversion = bool(entry.convert_to_currency and entry.converted_amount)

        if entry.direction == Direction.TRANSFER:
            self._adjust(entry.account_id, entry.currency, -sign * entry.amount)
            if has_conversion:
                self._adjust(entry.to_account_id, entry.convert_to_currency, sign * entry.converted_amount)
            else:
                self._adjust(entry.to_account_id, entry.currency, sign * entry.amount)
            return

        currency = entry.convert_to_currency if has_conversion else entry.currency
        amount = entry.converted_amount if has_conversion else entry.amount
        if entry.direction == Direction.EXPENSE:
            self._adjust(entry.account_id, currency, -sign * amount)
        else:
            self._adjust(entry.account_id, currency, sign * amount)

    def _adjust(self, account_id: Optional[str], currency: str, delta: Decimal) -> None:
        account = self._backend.find_account(account_id)
        if account is None:
            return
        asset = account.holding(currency)
        if asset is None:
            asset = AccountAsset(currency=currency.upper(), amount=Decimal("0"))
            account.assets.append(asset)
        asset.amount += delta


class InMemoryAuditStorage(AuditStorageInterface):

    def __init__(self, backend: InMemoryBackend):
        self._backend = backend

    async def append_event(self, event: AuditEvent) -> bool:
        self._backend.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._backend.events if e.correlation_id == correlation_id]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._backend.events))[:limit]
