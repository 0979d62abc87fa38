"""
In-Memory Storage Implementation

Keeps the ledger state and audit events in process memory. Used by tests
and by callers that persist through some other channel.

Saved state is deep-copied on the way in and on the way out, so later
mutation of the live ledger never leaks into what was "persisted".
"""

import asyncio
from typing import Optional
from uuid import UUID

from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import LedgerState
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Ledger storage backed by a single in-memory LedgerState."""

    def __init__(self, initial: Optional[LedgerState] = None):
        self._state = initial.model_copy(deep=True) if initial else LedgerState()
        self.save_count = 0

    @property
    def stored(self) -> LedgerState:
        """The last saved state (a copy)."""
        return self._state.model_copy(deep=True)

    async def load(self) -> LedgerState:
        await asyncio.sleep(0)
        return self._state.model_copy(deep=True)

    async def save(self, state: LedgerState) -> None:
        await asyncio.sleep(0)
        self._state = state.model_copy(deep=True)
        self.save_count += 1


class InMemoryAuditStorage(AuditStorageInterface):
    """Audit storage backed by a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        related = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(related, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
