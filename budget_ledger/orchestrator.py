"""
Main Orchestrator for Budget Ledger

This module wires the ledger components together and exposes the surface
the presentation layer calls:

1. run_due / catch_up - execute due schedules (user action or app start)
2. list_runs / get_run - execution history grouped into runs
3. purge_range / purge_run - trim execution history
4. add_schedule / remove_schedule - manage schedule definitions

The orchestrator enforces the boundaries:
- One mutating operation at a time (the ledger guard)
- Every change is persisted in a single write, or not at all
- Every step is audited
"""

from collections.abc import Mapping
from datetime import date
from typing import Any, Optional, Union

import structlog

from budget_ledger.audit import AuditLogger
from budget_ledger.config import LedgerSettings, get_settings
from budget_ledger.ledger import (
    BatchStamper,
    Clock,
    EventStore,
    ExecutionEngine,
    InvalidScheduleError,
    LedgerGuard,
    LedgerOperation,
    PersistenceError,
    PurgeService,
    ScheduleRegistry,
    SystemClock,
)
from budget_ledger.ledger.purge import DateLike
from budget_ledger.models.ledger import (
    ExecutionLogEntry,
    ExecutionSummary,
    LedgerState,
    PurgeSummary,
    RunSummary,
)
from budget_ledger.models.schedule import Schedule, ScheduleKey, ScheduleKind
from budget_ledger.queries import RunAggregator
from budget_ledger.services.accounts import AccountStoreInterface, InMemoryAccountStore
from budget_ledger.services.storage import (
    InMemoryLedgerStorage,
    JsonFileClient,
    JsonFileLedgerStorage,
    JsonLinesAuditStorage,
    LedgerStorageInterface,
    StorageError,
)
from budget_ledger.validation import ScheduleValidator


logger = structlog.get_logger(__name__)


class RecurringLedger:
    """
    Facade over the recurring execution ledger.

    All mutating operations are async and suspend only at the persistence
    write. They are mutually exclusive; a conflicting call fails fast with
    a LedgerBusyError subclass instead of queueing.
    """

    def __init__(
        self,
        accounts: AccountStoreInterface,
        storage: LedgerStorageInterface,
        clock: Optional[Clock] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        settings = settings or get_settings().ledger
        self._accounts = accounts
        self._storage = storage
        self._clock = clock or SystemClock()
        self._audit = audit_logger or AuditLogger()

        self._events = EventStore()
        self._guard = LedgerGuard()
        self._stamper = BatchStamper(self._clock)
        self._registry = ScheduleRegistry(
            self._events,
            validator=ScheduleValidator(accounts),
            require_transfer_before_payments=settings.require_transfer_before_payments,
        )
        self._engine = ExecutionEngine(
            registry=self._registry,
            events=self._events,
            accounts=accounts,
            storage=storage,
            guard=self._guard,
            stamper=self._stamper,
            audit=self._audit,
            execution_log_limit=settings.execution_log_limit,
        )
        self._purge = PurgeService(
            events=self._events,
            storage=storage,
            guard=self._guard,
            audit=self._audit,
        )
        self._runs = RunAggregator(
            self._events,
            accounts=accounts,
            currency_symbol=settings.currency_symbol,
        )

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    @property
    def registry(self) -> ScheduleRegistry:
        return self._registry

    @property
    def events(self) -> EventStore:
        return self._events

    @property
    def guard(self) -> LedgerGuard:
        return self._guard

    @property
    def busy(self) -> bool:
        return self._guard.busy

    @property
    def state(self) -> LedgerState:
        return self._events.state

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def load(self) -> LedgerState:
        """
        Load the persisted ledger document into memory.

        Raises:
            LedgerBusyError: If an operation is in flight
            PersistenceError: If the stored document cannot be read
        """
        self._guard.acquire(LedgerOperation.LOAD)
        try:
            try:
                state = await self._storage.load()
            except StorageError as e:
                await self._audit.log_persistence_failed(LedgerOperation.LOAD.value, str(e))
                raise PersistenceError(LedgerOperation.LOAD.value, e) from e

            self._events.replace_state(state)
            for raw in self._events.iter_timestamps():
                self._stamper.observe(raw)
        finally:
            self._guard.release()

        logger.info(
            "ledger_loaded",
            schedules=len(state.schedules),
            transactions=len(state.transactions),
            processed_logs=len(state.processed_logs),
        )
        return self._events.state

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def run_due(
        self,
        as_of: Optional[date] = None,
        automatic: bool = False,
    ) -> ExecutionSummary:
        """Execute every schedule due on as_of (default: today)."""
        return await self._engine.run_due(as_of or self._clock.today(), automatic=automatic)

    async def catch_up(self) -> ExecutionSummary:
        """App-start catch-up: an automatic run as of today."""
        return await self.run_due(self._clock.today(), automatic=True)

    # =========================================================================
    # HISTORY
    # =========================================================================

    def list_runs(self) -> list[RunSummary]:
        return self._runs.list_runs()

    def get_run(self, key: str) -> Optional[RunSummary]:
        return self._runs.get_run(key)

    def execution_logs(self, process_name: Optional[str] = None) -> list[ExecutionLogEntry]:
        """Execution history, newest first, optionally for one process."""
        logs = self._events.execution_logs
        if process_name is None:
            return list(logs)
        return [entry for entry in logs if entry.process_name == process_name]

    async def purge_range(self, start: DateLike, end: DateLike) -> PurgeSummary:
        return await self._purge.purge_range(start, end)

    async def purge_run(self, run_key: str) -> PurgeSummary:
        return await self._purge.purge_run(run_key)

    # =========================================================================
    # SCHEDULE DEFINITIONS
    # =========================================================================

    async def _persist_schedules(self, snapshot: LedgerState) -> None:
        try:
            await self._storage.save(self._events.state)
        except StorageError as e:
            self._events.restore(snapshot)
            await self._audit.log_persistence_failed(LedgerOperation.EDIT_SCHEDULES.value, str(e))
            raise PersistenceError(LedgerOperation.EDIT_SCHEDULES.value, e) from e

    async def add_schedule(self, data: Union[Mapping[str, Any], Schedule]) -> Schedule:
        """
        Validate, register and persist a new schedule.

        Raises:
            InvalidScheduleError: If the definition is rejected
            LedgerBusyError: If an operation is in flight
            PersistenceError: If the write fails (the schedule is not kept)
        """
        self._guard.acquire(LedgerOperation.EDIT_SCHEDULES)
        try:
            snapshot = self._events.snapshot()
            try:
                if isinstance(data, Mapping):
                    schedule = self._registry.add(data)
                else:
                    schedule = self._registry.add_schedule(data)
            except InvalidScheduleError as e:
                await self._audit.log_schedule_rejected(
                    [issue.model_dump() for issue in e.issues]
                )
                raise

            await self._persist_schedules(snapshot)
            await self._audit.log_schedule_added(str(schedule.key), schedule.description)
            return schedule
        finally:
            self._guard.release()

    async def remove_schedule(self, kind: ScheduleKind, schedule_id: int) -> Schedule:
        """
        Remove a schedule. Its execution history is kept.

        Raises:
            ScheduleNotFoundError: If no such schedule exists
            LedgerBusyError: If an operation is in flight
            PersistenceError: If the write fails (the schedule is kept)
        """
        self._guard.acquire(LedgerOperation.EDIT_SCHEDULES)
        try:
            snapshot = self._events.snapshot()
            key = ScheduleKey(kind=kind, id=schedule_id)
            schedule = self._registry.remove(key)
            await self._persist_schedules(snapshot)
            await self._audit.log_schedule_removed(str(key))
            return schedule
        finally:
            self._guard.release()


def create_ledger(
    accounts: Optional[AccountStoreInterface] = None,
    use_storage: bool = True,
    clock: Optional[Clock] = None,
    settings: Optional[LedgerSettings] = None,
) -> RecurringLedger:
    """
    Factory function to create a ledger with its collaborators.

    Args:
        accounts: Account/pot store (an empty in-memory store if None)
        use_storage: Persist to the JSON files named in LEDGER_* settings.
                    Set to False for in-memory storage and local-only audit.
        clock: Clock to use (system clock if None)
        settings: Ledger settings (loaded from the environment if None)

    Returns:
        An unloaded RecurringLedger; call ``await ledger.load()`` next
    """
    settings = settings or get_settings().ledger
    accounts = accounts or InMemoryAccountStore()

    if use_storage:
        storage = JsonFileLedgerStorage(
            JsonFileClient(settings.data_path, settings.storage_retry_attempts)
        )
        audit_logger = AuditLogger(
            JsonLinesAuditStorage(
                JsonFileClient(settings.audit_log_path, settings.storage_retry_attempts)
            )
        )
    else:
        storage = InMemoryLedgerStorage()
        audit_logger = AuditLogger()  # Local-only logging

    return RecurringLedger(
        accounts=accounts,
        storage=storage,
        clock=clock,
        audit_logger=audit_logger,
        settings=settings,
    )
