"""Services package."""

from budget_ledger.services.accounts import (
    AccountNotFoundError,
    AccountStoreInterface,
    InMemoryAccountStore,
    InsufficientFundsError,
)
from budget_ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    JsonFileClient,
    JsonFileLedgerStorage,
    JsonLinesAuditStorage,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Account store
    "AccountNotFoundError",
    "AccountStoreInterface",
    "InMemoryAccountStore",
    "InsufficientFundsError",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "JsonFileClient",
    "JsonFileLedgerStorage",
    "JsonLinesAuditStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "StorageError",
]
