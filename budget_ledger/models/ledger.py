"""
Ledger Record Models for Budget Ledger

These models describe everything the execution ledger writes:

1. ExecutionEvent - one execution of a schedule, attached to its owner
   (a transaction record or an income schedule)
2. TransactionRecord - the transaction a payment or transfer execution creates
3. ProcessedLogEntry - flat, unowned record of one scheduled-payment firing
4. ExecutionLogEntry - one line of the per-process execution history
5. LedgerState - the persisted document holding all of the above

CRITICAL: Every event and log entry written by one engine invocation carries
the same batch id and the same batch timestamp. A "run" is identified by the
batch id, or by the raw timestamp for records that predate batch ids.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
)

from budget_ledger.models.schedule import Schedule, ScheduleKey, ScheduleKind


# =============================================================================
# ENUMS
# =============================================================================

class OwnerKind(str, Enum):
    """The two kinds of record that own execution events."""
    TRANSACTION = "transaction"
    INCOME = "income"


class TransactionKind(str, Enum):
    """How a transaction record came to exist."""
    SCHEDULED = "scheduled"
    TRANSFER = "transfer"
    MANUAL = "manual"


# =============================================================================
# EVENTS
# =============================================================================

class EventOwner(BaseModel):
    """Identifies the record an event list belongs to."""
    model_config = ConfigDict(frozen=True)

    kind: OwnerKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind.value}#{self.id}"


class ExecutionEvent(BaseModel):
    """
    One execution of a schedule.

    Immutable once created. Created only by the execution engine and
    deleted only by the purge service.
    """
    model_config = ConfigDict(frozen=True)

    executed_at: str = Field(
        ...,
        description="ISO-8601 batch timestamp shared by the whole run"
    )
    amount: Decimal = Field(
        ...,
        description="Amount applied by this execution"
    )
    batch_id: Optional[UUID] = Field(
        default=None,
        description="Batch identity of the run (None for legacy records)"
    )
    period: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}-\d{2}$",
        description="YYYY-MM of the date that made the schedule due"
    )

    @property
    def run_key(self) -> str:
        return str(self.batch_id) if self.batch_id else self.executed_at


class TransactionRecord(BaseModel):
    """
    A transaction in the ledger.

    Payment and transfer executions create one record each; the
    execution event is appended to the record's own event list.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: int = Field(..., ge=1)
    name: str = Field(default="", max_length=200)
    vendor: str = Field(default="", max_length=200)
    amount: Decimal
    date: str = Field(
        ...,
        description="ISO date the transaction applies to"
    )
    from_account_id: Optional[int] = None
    to_account_id: int
    to_pot_name: Optional[str] = None
    payment_type: Optional[str] = None
    kind: TransactionKind = TransactionKind.SCHEDULED

    # Traceability back to the schedule that produced it
    schedule_kind: Optional[ScheduleKind] = None
    schedule_id: Optional[int] = None

    events: list[ExecutionEvent] = Field(default_factory=list)

    @property
    def owner(self) -> EventOwner:
        return EventOwner(kind=OwnerKind.TRANSACTION, id=self.id)

    @property
    def schedule_key(self) -> Optional[ScheduleKey]:
        if self.schedule_kind is None or self.schedule_id is None:
            return None
        return ScheduleKey(kind=self.schedule_kind, id=self.schedule_id)

    @property
    def created_by_engine(self) -> bool:
        return self.schedule_key is not None


class ProcessedLogEntry(BaseModel):
    """
    Flat record of one scheduled-payment firing.

    Not owned by any entity. Created alongside the execution event of the
    same batch and deleted only by the purge service.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: int = Field(..., ge=1)
    payment_id: int
    name: str = ""
    company: str = ""
    amount: Decimal
    account_id: int
    pot_name: Optional[str] = None
    day: int = Field(
        ...,
        ge=0,
        le=31,
        description="Trigger day of month of the payment"
    )
    payment_type: Optional[str] = None
    processed_at: str = Field(
        ...,
        description="ISO-8601 batch timestamp shared by the whole run"
    )
    period: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}-\d{2}$"
    )
    was_manual: bool = False
    batch_id: Optional[UUID] = None

    @property
    def run_key(self) -> str:
        return str(self.batch_id) if self.batch_id else self.processed_at


class ExecutionLogEntry(BaseModel):
    """One line of the per-process execution history."""
    model_config = ConfigDict(frozen=True)

    timestamp: str
    process_name: str
    item_count: int = Field(ge=0)
    was_automatic: bool
    batch_id: Optional[UUID] = None


# =============================================================================
# PERSISTED STATE
# =============================================================================

class LedgerState(BaseModel):
    """
    The complete persisted ledger document.

    Schedules, transaction records, income events, processed logs and the
    execution history are written together in one document so a run or a
    purge is saved in a single write.
    """

    schema_version: int = 1
    schedules: list[Schedule] = Field(default_factory=list)
    transactions: list[TransactionRecord] = Field(default_factory=list)
    income_events: dict[int, list[ExecutionEvent]] = Field(
        default_factory=dict,
        description="Event list per income schedule id"
    )
    processed_logs: list[ProcessedLogEntry] = Field(default_factory=list)
    execution_logs: list[ExecutionLogEntry] = Field(default_factory=list)
    next_transaction_id: int = Field(default=1, ge=1)
    next_processed_log_id: int = Field(default=1, ge=1)
    next_payment_schedule_id: int = Field(default=1, ge=1)
    next_income_schedule_id: int = Field(default=1, ge=1)
    next_transfer_schedule_id: int = Field(default=1, ge=1)


# =============================================================================
# OPERATION RESULTS
# =============================================================================

class ScheduleFailure(BaseModel):
    """A schedule that could not be executed in a batch, and why."""
    model_config = ConfigDict(frozen=True)

    key: ScheduleKey
    reason: str


class ExecutionSummary(BaseModel):
    """Result of one run_due invocation."""

    batch_id: UUID
    timestamp: str
    as_of: date
    automatic: bool
    executed: list[ScheduleKey] = Field(default_factory=list)
    failed: list[ScheduleFailure] = Field(default_factory=list)

    def _count(self, kind: ScheduleKind) -> int:
        return sum(1 for key in self.executed if key.kind == kind)

    @computed_field
    @property
    def payments_executed(self) -> int:
        return self._count(ScheduleKind.PAYMENT)

    @computed_field
    @property
    def income_executed(self) -> int:
        return self._count(ScheduleKind.INCOME)

    @computed_field
    @property
    def transfers_executed(self) -> int:
        return self._count(ScheduleKind.TRANSFER)

    @property
    def total_executed(self) -> int:
        return len(self.executed)


class RunSummary(BaseModel):
    """
    One execution run, as shown in history views.

    Derived on every read; never persisted.
    """

    run_key: str
    timestamp: str
    batch_id: Optional[UUID] = None
    executed_at: Optional[datetime] = Field(
        default=None,
        description="Parsed timestamp, None when the raw value is not ISO-8601"
    )
    transaction_events: int = 0
    income_events: int = 0
    processed_logs: int = 0
    transaction_details: list[str] = Field(default_factory=list)
    income_details: list[str] = Field(default_factory=list)
    log_details: list[str] = Field(default_factory=list)

    @property
    def total_records(self) -> int:
        return self.transaction_events + self.income_events + self.processed_logs


class PurgeSummary(BaseModel):
    """
    What a purge removed.

    Counts are taken before deletion. A summary with every count at zero
    means nothing matched, which is a valid outcome and not a failure.
    """

    transaction_events_removed: int = 0
    income_events_removed: int = 0
    processed_logs_removed: int = 0
    transactions_removed: int = 0
    run_keys: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def total_executions_removed(self) -> int:
        return self.transaction_events_removed + self.income_events_removed

    @computed_field
    @property
    def total_runs_affected(self) -> int:
        return len(self.run_keys)

    @property
    def is_empty(self) -> bool:
        return self.total_executions_removed == 0 and self.processed_logs_removed == 0
