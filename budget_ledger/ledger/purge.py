"""
Purge Service

Deletes execution history, either by date range or by single run, across
all three collections: transaction events, income events and the
processed log.

GUARANTEES:
- Summary counts are taken before anything is deleted
- A purge is applied in memory, then saved in one write; if the write
  fails the in-memory ledger is restored, so no partial run is left behind
- A purge never runs while a run or another purge is in flight

CRITICAL: Purging does NOT reverse the balance effects of the deleted
executions. It trims the audit trail; it is not an undo. Because the due
check looks at events, purging a run from the current month makes its
schedules due again.
"""

from datetime import date, datetime, time, timezone
from typing import Optional, Union

import structlog

from budget_ledger.audit import AuditLogger
from budget_ledger.ledger.clock import parse_timestamp
from budget_ledger.ledger.errors import InvalidRangeError, LedgerBusyError, PersistenceError
from budget_ledger.ledger.events import (
    EventPredicate,
    EventStore,
    LogPredicate,
    matches_run,
)
from budget_ledger.ledger.guard import LedgerGuard, LedgerOperation, LedgerPhase
from budget_ledger.models.ledger import OwnerKind, PurgeSummary
from budget_ledger.services.storage import LedgerStorageInterface, StorageError


logger = structlog.get_logger(__name__)


DateLike = Union[date, datetime]


def range_bound(value: DateLike, end: bool = False) -> datetime:
    """
    Normalise a range bound to an aware UTC datetime.

    A date becomes the start of that day, or its last instant when it is
    the end bound. A datetime is used as given (naive means UTC).
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime.combine(value, time.max if end else time.min, tzinfo=timezone.utc)


def in_range(raw: str, start: datetime, end: datetime) -> bool:
    """Inclusive on both ends. Unparseable timestamps never match."""
    parsed = parse_timestamp(raw)
    return parsed is not None and start <= parsed <= end


class PurgeService:
    """Range and run deletion of execution records."""

    def __init__(
        self,
        events: EventStore,
        storage: LedgerStorageInterface,
        guard: LedgerGuard,
        audit: Optional[AuditLogger] = None,
    ):
        self._events = events
        self._storage = storage
        self._guard = guard
        self._audit = audit or AuditLogger()

    async def purge_range(self, start: DateLike, end: DateLike) -> PurgeSummary:
        """
        Remove every execution record timestamped within [start, end].

        Raises:
            InvalidRangeError: If start is after end (nothing is touched)
            PurgeBusyError: If a run or another purge is in flight
            PersistenceError: If the purge could not be saved (nothing is kept)
        """
        lower = range_bound(start)
        upper = range_bound(end, end=True)
        if lower > upper:
            await self._audit.log_purge_rejected(
                "start is after end",
                {"start": lower.isoformat(), "end": upper.isoformat()},
            )
            raise InvalidRangeError(start, end)

        return await self._purge(
            LedgerOperation.PURGE_RANGE,
            match_event=lambda owner, event: in_range(event.executed_at, lower, upper),
            match_log=lambda entry: in_range(entry.processed_at, lower, upper),
            details={"start": lower.isoformat(), "end": upper.isoformat()},
        )

    async def purge_run(self, run_key: str) -> PurgeSummary:
        """
        Remove every execution record of one run.

        The key may be the run's batch id or its raw timestamp.

        Raises:
            PurgeBusyError: If a run or another purge is in flight
            PersistenceError: If the purge could not be saved (nothing is kept)
        """
        return await self._purge(
            LedgerOperation.PURGE_RUN,
            match_event=lambda owner, event: matches_run(run_key, event.run_key, event.executed_at),
            match_log=lambda entry: matches_run(run_key, entry.run_key, entry.processed_at),
            details={"run_key": run_key},
        )

    def preview(
        self,
        match_event: EventPredicate,
        match_log: LogPredicate,
    ) -> PurgeSummary:
        """Count what a purge would remove, without removing anything."""
        summary = PurgeSummary()
        run_keys: set[str] = set()

        for owner, event in self._events.iter_events():
            if not match_event(owner, event):
                continue
            if owner.kind == OwnerKind.TRANSACTION:
                summary.transaction_events_removed += 1
            else:
                summary.income_events_removed += 1
            run_keys.add(event.run_key)

        for entry in self._events.processed_logs:
            if match_log(entry):
                summary.processed_logs_removed += 1
                run_keys.add(entry.run_key)

        summary.run_keys = sorted(run_keys)
        return summary

    async def _purge(
        self,
        operation: LedgerOperation,
        match_event: EventPredicate,
        match_log: LogPredicate,
        details: dict,
    ) -> PurgeSummary:
        try:
            self._guard.acquire(operation)
        except LedgerBusyError as e:
            logger.warning("purge_rejected", requested=e.requested, in_flight=e.in_flight)
            await self._audit.log_busy_rejected(e.requested, e.in_flight)
            raise

        try:
            self._guard.enter(LedgerPhase.PURGING)
            summary = self.preview(match_event, match_log)
            if summary.is_empty:
                logger.info("purge_matched_nothing", operation=operation.value, **details)
                return summary

            snapshot = self._events.snapshot()
            self._events.remove_events(match_event)
            self._events.remove_processed_logs(match_log)
            summary.transactions_removed = self._events.remove_orphaned_transactions()

            self._guard.enter(LedgerPhase.PERSISTING)
            try:
                await self._storage.save(self._events.state)
            except StorageError as e:
                self._events.restore(snapshot)
                logger.error("purge_rolled_back", operation=operation.value, error=str(e))
                await self._audit.log_persistence_failed(operation.value, str(e))
                raise PersistenceError(operation.value, e) from e

            logger.info(
                "purge_completed",
                operation=operation.value,
                executions_removed=summary.total_executions_removed,
                logs_removed=summary.processed_logs_removed,
                runs_affected=summary.total_runs_affected,
            )
            await self._audit.log_purge_completed(
                scope="range" if operation == LedgerOperation.PURGE_RANGE else "run",
                executions_removed=summary.total_executions_removed,
                logs_removed=summary.processed_logs_removed,
                runs_affected=summary.total_runs_affected,
                details={**details, "run_keys": summary.run_keys},
            )
            return summary
        finally:
            self._guard.release()
