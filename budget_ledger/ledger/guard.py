"""
Ledger Guard

Single-writer discipline for the ledger. At most one mutating operation
(run_due, purge_range, purge_run, schedule edits, load) is in flight at any time.

The guard is a plain state flag, checked and set synchronously before the
operation's first await. Under asyncio's cooperative scheduling nothing
can interleave between the check and the set, so no lock is needed.
"""

from enum import Enum
from typing import Optional

from budget_ledger.ledger.errors import EngineBusyError, LedgerBusyError, PurgeBusyError


class LedgerOperation(str, Enum):
    """Mutating operations serialised by the guard."""
    RUN_DUE = "run_due"
    PURGE_RANGE = "purge_range"
    PURGE_RUN = "purge_run"
    EDIT_SCHEDULES = "edit_schedules"
    LOAD = "load"


class LedgerPhase(str, Enum):
    """Where the in-flight operation is."""
    IDLE = "idle"
    COLLECTING = "collecting"
    APPLYING = "applying"
    RECORDING = "recording"
    PURGING = "purging"
    PERSISTING = "persisting"


class LedgerGuard:
    """Tracks the in-flight operation and its phase."""

    def __init__(self):
        self._in_flight: Optional[LedgerOperation] = None
        self._phase = LedgerPhase.IDLE

    @property
    def busy(self) -> bool:
        return self._in_flight is not None

    @property
    def in_flight(self) -> Optional[LedgerOperation]:
        return self._in_flight

    @property
    def phase(self) -> LedgerPhase:
        return self._phase

    def acquire(self, operation: LedgerOperation) -> None:
        """
        Claim the ledger for an operation.

        Raises:
            EngineBusyError: run_due requested while anything is in flight
            PurgeBusyError: a purge requested while anything is in flight
            LedgerBusyError: any other operation requested while busy
        """
        if self._in_flight is not None:
            raise _BUSY_ERRORS.get(operation, LedgerBusyError)(
                operation.value,
                self._in_flight.value,
            )
        self._in_flight = operation

    def release(self) -> None:
        self._in_flight = None
        self._phase = LedgerPhase.IDLE

    def enter(self, phase: LedgerPhase) -> None:
        self._phase = phase


_BUSY_ERRORS = {
    LedgerOperation.RUN_DUE: EngineBusyError,
    LedgerOperation.PURGE_RANGE: PurgeBusyError,
    LedgerOperation.PURGE_RUN: PurgeBusyError,
}
