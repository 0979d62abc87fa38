"""
Ledger Errors

Every error the ledger surfaces derives from LedgerError, so callers can
tell structured ledger failures apart from bugs. None of them is retried
inside the ledger; retrying is the caller's decision.
"""

from typing import TYPE_CHECKING, Any, Optional

from budget_ledger.models.schedule import ScheduleKey, ValidationIssue

if TYPE_CHECKING:
    from budget_ledger.models.ledger import ExecutionSummary, ScheduleFailure


class LedgerError(Exception):
    """Base class for ledger errors."""
    pass


class InvalidScheduleError(LedgerError):
    """A schedule definition was rejected at creation time."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        messages = "; ".join(issue.message for issue in issues) or "invalid schedule"
        super().__init__(f"Invalid schedule: {messages}")


class ScheduleNotFoundError(LedgerError):
    """No schedule with the given kind and id exists."""

    def __init__(self, key: ScheduleKey):
        self.key = key
        super().__init__(f"Schedule {key} not found")


class LedgerBusyError(LedgerError):
    """
    A mutating operation was requested while another is in flight.

    The caller should retry later. Requests are never queued.
    """

    def __init__(self, requested: str, in_flight: str):
        self.requested = requested
        self.in_flight = in_flight
        super().__init__(f"Cannot start {requested}: {in_flight} is in progress")


class EngineBusyError(LedgerBusyError):
    """run_due was called while a run or a purge is in flight."""
    pass


class PurgeBusyError(LedgerBusyError):
    """A purge was requested while a run or another purge is in flight."""
    pass


class PartialExecutionError(LedgerError):
    """
    One or more schedules in a batch failed to apply.

    The schedules that succeeded are persisted. Their keys are in
    ``succeeded``; the failures, each with a reason, are in ``failed``.
    """

    def __init__(
        self,
        summary: "ExecutionSummary",
        succeeded: list[ScheduleKey],
        failed: list["ScheduleFailure"],
    ):
        self.summary = summary
        self.succeeded = succeeded
        self.failed = failed
        names = ", ".join(str(f.key) for f in failed)
        super().__init__(
            f"{len(failed)} of {len(succeeded) + len(failed)} schedules failed: {names}"
        )


class InvalidRangeError(LedgerError):
    """A range purge was requested with start after end."""

    def __init__(self, start: Any, end: Any):
        self.start = start
        self.end = end
        super().__init__(f"Invalid range: start {start} is after end {end}")


class PersistenceError(LedgerError):
    """
    The persistence write of a run or purge failed.

    In-memory state has been restored to what it was before the operation.
    """

    def __init__(
        self,
        operation: str,
        cause: Exception,
        batch_id: Optional[Any] = None,
    ):
        self.operation = operation
        self.cause = cause
        self.batch_id = batch_id
        super().__init__(f"Failed to persist {operation}: {cause}")
