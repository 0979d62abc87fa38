"""
Execution Engine

Runs every due schedule once and records the executions as one batch.

FLOW (one run_due invocation):
1. COLLECTING - ask the registry for due schedules; allocate the batch id
   and the batch timestamp shared by everything this run writes
2. APPLYING   - per schedule, apply its balance deltas through the account
   store
3. RECORDING  - per schedule, append its execution event (and, for a
   payment, its processed log entry), stamp the schedule
4. PERSISTING - save the whole ledger document in one write

ATOMICITY:
- Per schedule: if any delta or record fails, the deltas already applied
  for that schedule are reversed and nothing is recorded for it. The
  other schedules carry on.
- Per batch: if the persistence write fails, every delta of the batch is
  reversed, the in-memory ledger is restored, and PersistenceError is
  raised. Nothing of the batch survives.
- Any other exception (from a host account store, say) rolls the batch
  back the same way and propagates unchanged.

If some schedules failed, the successful ones are persisted and
PartialExecutionError names both sets.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from budget_ledger.audit import AuditLogger, create_correlation_id
from budget_ledger.ledger.clock import BatchStamper, effective_trigger_day, period_of
from budget_ledger.ledger.errors import (
    LedgerBusyError,
    LedgerError,
    PartialExecutionError,
    PersistenceError,
)
from budget_ledger.ledger.events import EventStore
from budget_ledger.ledger.guard import LedgerGuard, LedgerOperation, LedgerPhase
from budget_ledger.ledger.registry import ScheduleRegistry
from budget_ledger.models.ledger import (
    EventOwner,
    ExecutionLogEntry,
    ExecutionSummary,
    OwnerKind,
    ProcessedLogEntry,
    ScheduleFailure,
    TransactionKind,
)
from budget_ledger.models.schedule import (
    BalanceRef,
    IncomeSchedule,
    PaymentSchedule,
    Schedule,
    ScheduleKind,
    TransferSchedule,
)
from budget_ledger.services.accounts import (
    AccountNotFoundError,
    AccountStoreInterface,
    InsufficientFundsError,
)
from budget_ledger.services.storage import LedgerStorageInterface, StorageError


logger = structlog.get_logger(__name__)


PROCESS_NAMES = {
    ScheduleKind.TRANSFER: "Transfer Schedules",
    ScheduleKind.INCOME: "Income Schedules",
    ScheduleKind.PAYMENT: "Scheduled Payments",
}

# Failures isolated to a single schedule; anything else aborts the run
SCHEDULE_FAILURES = (AccountNotFoundError, InsufficientFundsError, LedgerError, ValueError)

AppliedDelta = tuple[BalanceRef, Decimal]


class ExecutionEngine:
    """Executes due schedules as correlated batches."""

    def __init__(
        self,
        registry: ScheduleRegistry,
        events: EventStore,
        accounts: AccountStoreInterface,
        storage: LedgerStorageInterface,
        guard: LedgerGuard,
        stamper: BatchStamper,
        audit: Optional[AuditLogger] = None,
        execution_log_limit: int = 100,
    ):
        self._registry = registry
        self._events = events
        self._accounts = accounts
        self._storage = storage
        self._guard = guard
        self._stamper = stamper
        self._audit = audit or AuditLogger()
        self._execution_log_limit = execution_log_limit

    async def run_due(self, as_of: date, automatic: bool = False) -> ExecutionSummary:
        """
        Execute every schedule due on as_of.

        Args:
            as_of: The date to evaluate schedules against
            automatic: True for app-start catch-up, False for a user action

        Returns:
            ExecutionSummary with the batch id, timestamp and executed keys

        Raises:
            EngineBusyError: If a run or a purge is already in flight
            PartialExecutionError: If some schedules failed (the rest are saved)
            PersistenceError: If the batch could not be saved (nothing is kept)
        """
        try:
            self._guard.acquire(LedgerOperation.RUN_DUE)
        except LedgerBusyError as e:
            logger.warning("run_due_rejected", in_flight=e.in_flight)
            await self._audit.log_busy_rejected(e.requested, e.in_flight)
            raise

        try:
            return await self._run(as_of, automatic)
        finally:
            self._guard.release()

    async def _run(self, as_of: date, automatic: bool) -> ExecutionSummary:
        # COLLECTING
        self._guard.enter(LedgerPhase.COLLECTING)
        due = self._registry.due_schedules(as_of)
        for raw in self._events.iter_timestamps():
            self._stamper.observe(raw)
        batch_id = create_correlation_id()
        timestamp = self._stamper.next()
        period = period_of(as_of)

        summary = ExecutionSummary(
            batch_id=batch_id,
            timestamp=timestamp,
            as_of=as_of,
            automatic=automatic,
        )
        log = logger.bind(batch_id=str(batch_id), as_of=as_of.isoformat())
        log.info("run_started", due=len(due), automatic=automatic)

        if not due:
            return summary

        await self._audit.log_run_started(batch_id, as_of.isoformat(), automatic, len(due))

        batch_snapshot = self._events.snapshot()
        batch_deltas: list[AppliedDelta] = []

        try:
            for schedule in due:
                checkpoint = self._events.snapshot()
                applied: list[AppliedDelta] = []
                try:
                    self._guard.enter(LedgerPhase.APPLYING)
                    self._apply(schedule, applied)
                    self._guard.enter(LedgerPhase.RECORDING)
                    self._record(schedule, as_of, timestamp, batch_id, period, automatic)
                except SCHEDULE_FAILURES as e:
                    self._compensate(applied)
                    self._events.restore(checkpoint)
                    summary.failed.append(ScheduleFailure(key=schedule.key, reason=str(e)))
                    log.warning("schedule_failed", schedule=str(schedule.key), reason=str(e))
                    await self._audit.log_schedule_failed(batch_id, str(schedule.key), str(e))
                    continue
                except Exception:
                    self._compensate(applied)
                    raise

                batch_deltas.extend(applied)
                summary.executed.append(schedule.key)
                log.info("schedule_executed", schedule=str(schedule.key), amount=str(schedule.amount))
                await self._audit.log_schedule_executed(batch_id, str(schedule.key), str(schedule.amount))

            if summary.executed:
                self._record_execution_logs(summary)
                await self._persist(summary, batch_snapshot, batch_deltas)
        except PersistenceError:
            raise
        except Exception as e:
            # Unexpected failure: nothing of the batch survives
            self._compensate(batch_deltas)
            self._events.restore(batch_snapshot)
            log.error("run_aborted", error=repr(e))
            await self._audit.log_run_rolled_back(batch_id, repr(e))
            raise

        await self._audit.log_run_completed(
            batch_id,
            timestamp,
            executed=summary.total_executed,
            failed=len(summary.failed),
        )
        log.info(
            "run_completed",
            executed=summary.total_executed,
            failed=len(summary.failed),
        )

        if summary.failed:
            raise PartialExecutionError(
                summary=summary,
                succeeded=list(summary.executed),
                failed=list(summary.failed),
            )
        return summary

    # =========================================================================
    # APPLYING
    # =========================================================================

    def _apply(self, schedule: Schedule, applied: list[AppliedDelta]) -> None:
        """Apply the schedule's deltas, recording each one as it lands."""
        for ref, delta in schedule.balance_effects():
            # Only a transfer's source is checked for funds
            require_funds = schedule.kind == ScheduleKind.TRANSFER and delta < 0
            self._accounts.apply_delta(ref, delta, require_funds=require_funds)
            applied.append((ref, delta))

    def _compensate(self, applied: list[AppliedDelta]) -> None:
        for ref, delta in reversed(applied):
            self._accounts.apply_delta(ref, -delta)

    # =========================================================================
    # RECORDING
    # =========================================================================

    def _record(
        self,
        schedule: Schedule,
        as_of: date,
        timestamp: str,
        batch_id: UUID,
        period: str,
        automatic: bool,
    ) -> None:
        due_date = as_of.replace(day=effective_trigger_day(schedule.trigger_day, as_of))

        if isinstance(schedule, IncomeSchedule):
            owner = EventOwner(kind=OwnerKind.INCOME, id=schedule.id)
        else:
            record = self._create_transaction(schedule, due_date)
            owner = record.owner

        self._events.append_event(
            owner,
            timestamp,
            schedule.amount,
            batch_id=batch_id,
            period=period,
        )

        if isinstance(schedule, PaymentSchedule):
            self._events.append_processed_log(ProcessedLogEntry(
                id=self._events.allocate_processed_log_id(),
                payment_id=schedule.id,
                name=schedule.description,
                company=schedule.company,
                amount=schedule.amount,
                account_id=schedule.account_id,
                pot_name=schedule.pot_name,
                day=schedule.trigger_day,
                payment_type=schedule.payment_type,
                processed_at=timestamp,
                period=period,
                was_manual=not automatic,
                batch_id=batch_id,
            ))

        self._registry.mark_executed(schedule.key, timestamp)

    def _create_transaction(self, schedule: Schedule, due_date: date):
        if isinstance(schedule, TransferSchedule):
            return self._events.create_transaction(
                name=schedule.description,
                amount=schedule.amount,
                date=due_date.isoformat(),
                from_account_id=schedule.account_id,
                to_account_id=schedule.to_account_id,
                to_pot_name=schedule.to_pot_name,
                kind=TransactionKind.TRANSFER,
                schedule_kind=schedule.kind,
                schedule_id=schedule.id,
            )
        return self._events.create_transaction(
            name=schedule.description,
            vendor=schedule.company,
            amount=schedule.amount,
            date=due_date.isoformat(),
            to_account_id=schedule.account_id,
            to_pot_name=schedule.pot_name,
            payment_type=schedule.payment_type,
            kind=TransactionKind.SCHEDULED,
            schedule_kind=schedule.kind,
            schedule_id=schedule.id,
        )

    def _record_execution_logs(self, summary: ExecutionSummary) -> None:
        counts = {
            ScheduleKind.TRANSFER: summary.transfers_executed,
            ScheduleKind.INCOME: summary.income_executed,
            ScheduleKind.PAYMENT: summary.payments_executed,
        }
        for kind, count in counts.items():
            if count == 0:
                continue
            self._events.record_execution_log(
                ExecutionLogEntry(
                    timestamp=summary.timestamp,
                    process_name=PROCESS_NAMES[kind],
                    item_count=count,
                    was_automatic=summary.automatic,
                    batch_id=summary.batch_id,
                ),
                limit=self._execution_log_limit,
            )

    # =========================================================================
    # PERSISTING
    # =========================================================================

    async def _persist(
        self,
        summary: ExecutionSummary,
        batch_snapshot,
        batch_deltas: list[AppliedDelta],
    ) -> None:
        self._guard.enter(LedgerPhase.PERSISTING)
        try:
            await self._storage.save(self._events.state)
        except StorageError as e:
            self._compensate(batch_deltas)
            self._events.restore(batch_snapshot)
            logger.error(
                "run_rolled_back",
                batch_id=str(summary.batch_id),
                error=str(e),
            )
            await self._audit.log_persistence_failed("run_due", str(e), summary.batch_id)
            await self._audit.log_run_rolled_back(summary.batch_id, str(e))
            raise PersistenceError("run_due", e, batch_id=summary.batch_id) from e
