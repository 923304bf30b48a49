"""Services package."""

from ledger_reconciler.services.currency import (
    CurrencyServiceInterface,
    KnownCurrencies,
    StaticCurrencyService,
)
from ledger_reconciler.services.guards import (
    ConfirmLockRegistry,
    RequestRateLimiter,
)
from ledger_reconciler.services.image import read_image_date
from ledger_reconciler.services.storage import (
    AccountStorageInterface,
    AuditStorageInterface,
    CategoryStorageInterface,
    ConnectionError,
    DuplicateError,
    InMemoryAccountStorage,
    InMemoryAuditStorage,
    InMemoryBackend,
    InMemoryCategoryStorage,
    InMemoryLedgerStorage,
    InMemoryTagStorage,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    TagStorageInterface,
)

__all__ = [
    # Currency
    "CurrencyServiceInterface",
    "KnownCurrencies",
    "StaticCurrencyService",
    # Guards
    "ConfirmLockRegistry",
    "RequestRateLimiter",
    # Image
    "read_image_date",
    # Storage
    "AccountStorageInterface",
    "AuditStorageInterface",
    "CategoryStorageInterface",
    "LedgerStorageInterface",
    "TagStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    "InMemoryAccountStorage",
    "InMemoryAuditStorage",
    "InMemoryBackend",
    "InMemoryCategoryStorage",
    "InMemoryLedgerStorage",
    "InMemoryTagStorage",
]
