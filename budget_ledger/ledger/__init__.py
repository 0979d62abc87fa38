"""
Recurring Execution Ledger

Decides which schedules are due, executes them once per month, records the
executions as correlated runs and purges run history.
"""

from budget_ledger.ledger.clock import (
    BatchStamper,
    Clock,
    FixedClock,
    SystemClock,
    format_timestamp,
    parse_timestamp,
    period_of,
)
from budget_ledger.ledger.engine import ExecutionEngine
from budget_ledger.ledger.errors import (
    EngineBusyError,
    InvalidRangeError,
    InvalidScheduleError,
    LedgerBusyError,
    LedgerError,
    PartialExecutionError,
    PersistenceError,
    PurgeBusyError,
    ScheduleNotFoundError,
)
from budget_ledger.ledger.events import EventStore, UnknownOwnerError, matches_run
from budget_ledger.ledger.guard import LedgerGuard, LedgerOperation, LedgerPhase
from budget_ledger.ledger.purge import PurgeService
from budget_ledger.ledger.registry import ScheduleRegistry

__all__ = [
    # Components
    "EventStore",
    "ExecutionEngine",
    "LedgerGuard",
    "PurgeService",
    "ScheduleRegistry",
    # Guard states
    "LedgerOperation",
    "LedgerPhase",
    # Time
    "BatchStamper",
    "Clock",
    "FixedClock",
    "SystemClock",
    "format_timestamp",
    "parse_timestamp",
    "period_of",
    # Errors
    "EngineBusyError",
    "InvalidRangeError",
    "InvalidScheduleError",
    "LedgerBusyError",
    "LedgerError",
    "PartialExecutionError",
    "PersistenceError",
    "PurgeBusyError",
    "ScheduleNotFoundError",
    "UnknownOwnerError",
    # Run matching
    "matches_run",
]
