"""
Event Store

Holds the three collections a run writes into:

1. Transaction records, each with its own list of execution events
2. Income schedules' event lists, keyed by income schedule id
3. The flat processed log of scheduled-payment firings

There is no foreign key between them. A run is whatever shares a batch id
(or, for older records, a timestamp) across all three.

The store does no dedup checking; idempotency is decided by the registry
before anything is appended. Removing events never reverses balances.

CRITICAL: The store mutates the LedgerState it was given in place. The
registry reads schedules from the same document, so one snapshot/restore
covers schedules and events together.
"""

from collections.abc import Callable, Iterator
from decimal import Decimal
from typing import Optional
from uuid import UUID

from budget_ledger.ledger.clock import parse_timestamp, period_of
from budget_ledger.ledger.errors import LedgerError
from budget_ledger.models.ledger import (
    EventOwner,
    ExecutionEvent,
    ExecutionLogEntry,
    LedgerState,
    OwnerKind,
    ProcessedLogEntry,
    TransactionRecord,
)
from budget_ledger.models.schedule import ScheduleKey, ScheduleKind


EventPredicate = Callable[[EventOwner, ExecutionEvent], bool]
LogPredicate = Callable[[ProcessedLogEntry], bool]


class UnknownOwnerError(LedgerError):
    """An event was appended to a transaction record that does not exist."""

    def __init__(self, owner: EventOwner):
        self.owner = owner
        super().__init__(f"Unknown event owner {owner}")


def matches_run(key: str, run_key: str, raw_timestamp: str) -> bool:
    """Does a record with this run key and raw timestamp belong to run `key`?"""
    return key == run_key or key == raw_timestamp


def event_period(event: ExecutionEvent) -> Optional[str]:
    """The period an event counts against (stored, or derived from its timestamp)."""
    if event.period:
        return event.period
    parsed = parse_timestamp(event.executed_at)
    return period_of(parsed) if parsed else None


def log_period(entry: ProcessedLogEntry) -> Optional[str]:
    if entry.period:
        return entry.period
    parsed = parse_timestamp(entry.processed_at)
    return period_of(parsed) if parsed else None


class EventStore:
    """Per-owner event lists plus the flat processed log."""

    def __init__(self, state: Optional[LedgerState] = None):
        self._state = state if state is not None else LedgerState()

    @property
    def state(self) -> LedgerState:
        return self._state

    def replace_state(self, state: LedgerState) -> None:
        """Swap in new contents (e.g. after a load) without changing identity."""
        for name in LedgerState.model_fields:
            setattr(self._state, name, getattr(state, name))

    def snapshot(self) -> LedgerState:
        return self._state.model_copy(deep=True)

    def restore(self, snapshot: LedgerState) -> None:
        self.replace_state(snapshot.model_copy(deep=True))

    # =========================================================================
    # READS
    # =========================================================================

    @property
    def transactions(self) -> list[TransactionRecord]:
        return self._state.transactions

    @property
    def processed_logs(self) -> list[ProcessedLogEntry]:
        return self._state.processed_logs

    @property
    def execution_logs(self) -> list[ExecutionLogEntry]:
        return self._state.execution_logs

    def get_transaction(self, transaction_id: int) -> Optional[TransactionRecord]:
        for record in self._state.transactions:
            if record.id == transaction_id:
                return record
        return None

    def income_events(self, schedule_id: int) -> list[ExecutionEvent]:
        return list(self._state.income_events.get(schedule_id, []))

    def iter_events(
        self,
        owner_kind: Optional[OwnerKind] = None,
    ) -> Iterator[tuple[EventOwner, ExecutionEvent]]:
        """Every event with its owner; transactions first, then income."""
        if owner_kind in (None, OwnerKind.TRANSACTION):
            for record in self._state.transactions:
                owner = record.owner
                for event in record.events:
                    yield owner, event
        if owner_kind in (None, OwnerKind.INCOME):
            for schedule_id, events in self._state.income_events.items():
                owner = EventOwner(kind=OwnerKind.INCOME, id=schedule_id)
                for event in events:
                    yield owner, event

    def iter_timestamps(self) -> Iterator[str]:
        for _, event in self.iter_events():
            yield event.executed_at
        for entry in self._state.processed_logs:
            yield entry.processed_at

    def has_execution_in_period(self, key: ScheduleKey, period: str) -> bool:
        """Has this schedule executed (event or processed log) in the period?"""
        if key.kind == ScheduleKind.INCOME:
            return any(
                event_period(event) == period
                for event in self._state.income_events.get(key.id, [])
            )

        for record in self._state.transactions:
            if record.schedule_key != key:
                continue
            if any(event_period(event) == period for event in record.events):
                return True

        if key.kind == ScheduleKind.PAYMENT:
            return any(
                entry.payment_id == key.id and log_period(entry) == period
                for entry in self._state.processed_logs
            )
        return False

    def schedule_ids_with_history(self, kind: ScheduleKind) -> set[int]:
        """Ids of this kind that any event, transaction or processed log refers to."""
        if kind == ScheduleKind.INCOME:
            ids = {schedule_id for schedule_id, events in self._state.income_events.items() if events}
        else:
            ids = set()
        ids.update(
            record.schedule_id
            for record in self._state.transactions
            if record.schedule_kind == kind and record.schedule_id is not None
        )
        if kind == ScheduleKind.PAYMENT:
            ids.update(entry.payment_id for entry in self._state.processed_logs)
        return ids

    def transfer_executed_in(self, period: str) -> bool:
        """Has any transfer schedule executed in the period?"""
        return any(
            record.schedule_kind == ScheduleKind.TRANSFER
            and any(event_period(event) == period for event in record.events)
            for record in self._state.transactions
        )

    # =========================================================================
    # WRITES
    # =========================================================================

    def create_transaction(self, **fields) -> TransactionRecord:
        """Create a transaction record with the next free id."""
        record = TransactionRecord(id=self._state.next_transaction_id, **fields)
        self._state.next_transaction_id += 1
        self._state.transactions.append(record)
        return record

    def append_event(
        self,
        owner: EventOwner,
        timestamp: str,
        amount: Decimal,
        batch_id: Optional[UUID] = None,
        period: Optional[str] = None,
    ) -> ExecutionEvent:
        """Push an execution event onto the owner's event list."""
        event = ExecutionEvent(
            executed_at=timestamp,
            amount=amount,
            batch_id=batch_id,
            period=period,
        )
        if owner.kind == OwnerKind.TRANSACTION:
            record = self.get_transaction(owner.id)
            if record is None:
                raise UnknownOwnerError(owner)
            record.events.append(event)
        else:
            self._state.income_events.setdefault(owner.id, []).append(event)
        return event

    def allocate_processed_log_id(self) -> int:
        log_id = self._state.next_processed_log_id
        self._state.next_processed_log_id += 1
        return log_id

    def append_processed_log(self, entry: ProcessedLogEntry) -> ProcessedLogEntry:
        self._state.processed_logs.append(entry)
        if entry.id >= self._state.next_processed_log_id:
            self._state.next_processed_log_id = entry.id + 1
        return entry

    def record_execution_log(self, entry: ExecutionLogEntry, limit: int) -> None:
        """Prepend to the execution history, keeping at most `limit` entries."""
        self._state.execution_logs.insert(0, entry)
        del self._state.execution_logs[limit:]

    # =========================================================================
    # REMOVALS
    # =========================================================================

    def remove_events(
        self,
        predicate: EventPredicate,
        owner_kind: Optional[OwnerKind] = None,
    ) -> int:
        """Delete every matching event; returns how many were removed."""
        removed = 0
        if owner_kind in (None, OwnerKind.TRANSACTION):
            for record in self._state.transactions:
                owner = record.owner
                kept = [e for e in record.events if not predicate(owner, e)]
                removed += len(record.events) - len(kept)
                record.events = kept
        if owner_kind in (None, OwnerKind.INCOME):
            for schedule_id in list(self._state.income_events):
                owner = EventOwner(kind=OwnerKind.INCOME, id=schedule_id)
                events = self._state.income_events[schedule_id]
                kept = [e for e in events if not predicate(owner, e)]
                removed += len(events) - len(kept)
                if kept:
                    self._state.income_events[schedule_id] = kept
                else:
                    del self._state.income_events[schedule_id]
        return removed

    def remove_processed_logs(self, predicate: LogPredicate) -> int:
        before = len(self._state.processed_logs)
        self._state.processed_logs = [
            entry for entry in self._state.processed_logs if not predicate(entry)
        ]
        return before - len(self._state.processed_logs)

    def remove_orphaned_transactions(self) -> int:
        """Drop engine-created transaction records whose events are all gone."""
        before = len(self._state.transactions)
        self._state.transactions = [
            record for record in self._state.transactions
            if record.events or not record.created_by_engine
        ]
        return before - len(self._state.transactions)
