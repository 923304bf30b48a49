"""
Storage Services Package

Provides abstract interfaces and the in-memory reference implementation.
"""

from ledger_reconciler.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    CategoryStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    TagStorageInterface,
)
from ledger_reconciler.services.storage.memory import (
    InMemoryAccountStorage,
    InMemoryAuditStorage,
    InMemoryBackend,
    InMemoryCategoryStorage,
    InMemoryLedgerStorage,
    InMemoryTagStorage,
)

__all__ = [
    # Interfaces
    "AccountStorageInterface",
    "AuditStorageInterface",
    "CategoryStorageInterface",
    "LedgerStorageInterface",
    "TagStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAccountStorage",
    "InMemoryAuditStorage",
    "InMemoryBackend",
    "InMemoryCategoryStorage",
    "InMemoryLedgerStorage",
    "InMemoryTagStorage",
]
