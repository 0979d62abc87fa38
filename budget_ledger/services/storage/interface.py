"""
Storage Interface Definitions

We define an abstract interface for storage operations. This allows us to:
1. Swap the JSON file for a real database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

The ledger state is loaded and saved as one document. A run or a purge is
therefore persisted in a single write, and either lands completely or not
at all.
"""

from abc import ABC, abstractmethod
from uuid import UUID

from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import LedgerState


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger state storage.

    Any storage implementation (JSON file, SQLite, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def load(self) -> LedgerState:
        """
        Load the complete ledger state.

        Returns:
            The stored state, or an empty LedgerState if nothing is stored yet

        Raises:
            StorageError: If the stored document exists but cannot be read
        """
        pass

    @abstractmethod
    async def save(self, state: LedgerState) -> None:
        """
        Replace the stored ledger state.

        Args:
            state: The full state to persist

        Raises:
            StorageError: If the write fails. The previously stored
                state must still be intact afterwards.
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

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (all events of one run).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not reach the storage backend."""
    pass
