"""
Storage Services Package

Provides abstract interfaces and concrete implementations for ledger storage.
The JSON file backend is the default; the in-memory backend serves tests.
"""

from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from budget_ledger.services.storage.json_file import (
    JsonFileClient,
    JsonFileLedgerStorage,
    JsonLinesAuditStorage,
)
from budget_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # JSON file implementation
    "JsonFileClient",
    "JsonFileLedgerStorage",
    "JsonLinesAuditStorage",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
]
