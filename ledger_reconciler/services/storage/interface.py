"""
Abstract Storage Interface

DESIGN DECISION: The pipeline never talks to a database directly. It reads
accounts, categories, tags and recent ledger history through these
interfaces and writes ledger entries and tags through them. This allows us to:
1. Plug in whatever persistence the surrounding application uses
2. Use in-memory storage for testing
3. Keep the reconciliation logic decoupled from storage

There is no multi-statement transaction here: the committer achieves
batch atomicity with compensating deletes.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from ledger_reconciler.models.audit import AuditEvent
from ledger_reconciler.models.ledger import (
    Account,
    Category,
    LedgerEntry,
    LedgerEntryCreate,
    Tag,
)


class AccountStorageInterface(ABC):
    """Read access to a user's accounts."""

    @abstractmethod
    async def list_accounts(self, user_id: str) -> list[Account]:
        """
        List all accounts of a user, holdings included.

        The sentinel "outside" account is part of the list.
        """
        pass

    @abstractmethod
    async def get_default_account_id(self, user_id: str) -> Optional[str]:
        """Id of the account used when the user names none."""
        pass

    @abstractmethod
    async def get_outside_account_id(self, user_id: str) -> Optional[str]:
        """Id of the reserved sentinel account."""
        pass


class CategoryStorageInterface(ABC):
    """Read access to a user's categories."""

    @abstractmethod
    async def list_categories(self, user_id: str) -> list[Category]:
        pass


class TagStorageInterface(ABC):
    """
    Tag storage.

    Tags are the one catalog entity this package writes: the committer
    creates a tag on first use and counts its usage.
    """

    @abstractmethod
    async def list_tags(self, user_id: str) -> list[Tag]:
        pass

    @abstractmethod
    async def create_tag(self, user_id: str, name: str) -> Tag:
        """
        Create a tag.

        Raises:
            DuplicateError: If a tag with this name already exists
        """
        pass

    @abstractmethod
    async def increment_usage(self, tag_id: str) -> None:
        pass

    @abstractmethod
    async def decrement_usage(self, tag_id: str) -> None:
        pass

    @abstractmethod
    async def delete_tag(self, tag_id: str) -> bool:
        pass


class LedgerStorageInterface(ABC):
    """
    Ledger entry storage.

    Implementations apply the balance effect of an entry to the
    account holdings on create and reverse it on delete.
    """

    @abstractmethod
    async def create_entry(self, payload: LedgerEntryCreate) -> LedgerEntry:
        """
        Create one ledger entry.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_entry(self, entry_id: str) -> Optional[LedgerEntry]:
        pass

    @abstractmethod
    async def update_entry(self, entry_id: str, changes: dict[str, Any]) -> LedgerEntry:
        """
        Update fields of an existing entry.

        Raises:
            NotFoundError: If the entry doesn't exist
        """
        pass

    @abstractmethod
    async def delete_entry(self, entry_id: str) -> bool:
        """
        Delete an entry and reverse its balance effect.

        Returns:
            True if deleted, False if it did not exist
        """
        pass

    @abstractmethod
    async def list_entries(
        self,
        user_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[LedgerEntry]:
        """
        List entries newest first (by transaction date).

        Args:
            user_id: Owner of the entries
            limit: Maximum number of results (None for all)
            offset: Number of results to skip
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one user action in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
