"""
Schedule Registry

Holds the payment, income and transfer schedules and answers the one
question the engine asks: what is due as of a given date?

A schedule is due on `as_of` when:
1. It is active (and, for a one-shot transfer, not yet completed)
2. as_of.day >= its trigger day, clamped to the length of the month
3. It has no execution event or processed log in as_of's calendar month

Rule 3 is the idempotency guard. Running the engine twice on the same day
never fires a schedule twice in one month.

Due schedules are returned in evaluation order: transfers, then income,
then payments; within a kind by trigger day, then id.
"""

from collections.abc import Mapping
from datetime import date
from typing import Any, Optional

import structlog

from budget_ledger.ledger.clock import effective_trigger_day, period_of
from budget_ledger.ledger.errors import InvalidScheduleError, ScheduleNotFoundError
from budget_ledger.ledger.events import EventStore
from budget_ledger.models.schedule import (
    Schedule,
    ScheduleKey,
    ScheduleKind,
    TransferSchedule,
    ValidationResult,
)
from budget_ledger.validation import ScheduleValidator


logger = structlog.get_logger(__name__)


EVALUATION_ORDER = {
    ScheduleKind.TRANSFER: 0,
    ScheduleKind.INCOME: 1,
    ScheduleKind.PAYMENT: 2,
}

_COUNTERS = {
    ScheduleKind.PAYMENT: "next_payment_schedule_id",
    ScheduleKind.INCOME: "next_income_schedule_id",
    ScheduleKind.TRANSFER: "next_transfer_schedule_id",
}


class ScheduleRegistry:
    """
    The set of recurring schedules.

    Schedules are stored in the same LedgerState document as the events,
    so they are persisted (and rolled back) together with them.
    """

    def __init__(
        self,
        events: EventStore,
        validator: Optional[ScheduleValidator] = None,
        require_transfer_before_payments: bool = False,
    ):
        self._events = events
        self._validator = validator or ScheduleValidator()
        self._require_transfer = require_transfer_before_payments

    @property
    def _schedules(self) -> list[Schedule]:
        return self._events.state.schedules

    def all(self, kind: Optional[ScheduleKind] = None) -> list[Schedule]:
        if kind is None:
            return list(self._schedules)
        return [s for s in self._schedules if s.kind == kind]

    def get(self, key: ScheduleKey) -> Optional[Schedule]:
        for schedule in self._schedules:
            if schedule.key == key:
                return schedule
        return None

    def next_id(self, kind: ScheduleKind) -> int:
        """
        The next id of this kind. Ids only go up, so a removed schedule's id
        (and the history recorded under it) is never handed out again.
        """
        used = {s.id for s in self.all(kind)} | self._events.schedule_ids_with_history(kind)
        return max(getattr(self._events.state, _COUNTERS[kind]), max(used, default=0) + 1)

    def retired_keys(self) -> set[ScheduleKey]:
        """Keys that recorded history refers to but no registered schedule holds."""
        registered = {s.key for s in self._schedules}
        return {
            ScheduleKey(kind=kind, id=schedule_id)
            for kind in ScheduleKind
            for schedule_id in self._events.schedule_ids_with_history(kind)
        } - registered

    # =========================================================================
    # CREATION
    # =========================================================================

    def validate(self, data: Any) -> ValidationResult:
        return self._validator.validate(
            data, existing=self._schedules, retired=self.retired_keys()
        )

    def add(self, data: Mapping[str, Any]) -> Schedule:
        """
        Create a schedule from a plain mapping.

        A missing id is assigned from the kind's id counter. An explicit id
        that recorded history still refers to is rejected.

        Raises:
            InvalidScheduleError: If the definition fails validation
        """
        payload = dict(data)
        kind = payload.get("kind")
        if "id" not in payload and kind in {k.value for k in ScheduleKind}:
            payload["id"] = self.next_id(ScheduleKind(kind))
        return self._register(payload)

    def add_schedule(self, schedule: Schedule) -> Schedule:
        """Register an already-built schedule model (validated again)."""
        return self._register(schedule)

    def _register(self, data: Any) -> Schedule:
        result = self.validate(data)
        if not result.is_valid:
            logger.info(
                "schedule_rejected",
                issues=[issue.message for issue in result.errors],
            )
            raise InvalidScheduleError(result.errors)
        schedule = result.schedule
        self._schedules.append(schedule)
        counter = _COUNTERS[schedule.kind]
        if schedule.id >= getattr(self._events.state, counter):
            setattr(self._events.state, counter, schedule.id + 1)
        logger.info("schedule_added", schedule=str(schedule.key))
        return schedule

    def remove(self, key: ScheduleKey) -> Schedule:
        """
        Remove a schedule. Its execution history stays in the event store.

        Raises:
            ScheduleNotFoundError: If no such schedule exists
        """
        schedule = self.get(key)
        if schedule is None:
            raise ScheduleNotFoundError(key)
        self._schedules.remove(schedule)
        return schedule

    def mark_executed(self, key: ScheduleKey, timestamp: str) -> None:
        """Record an execution on the schedule itself; completes one-shot transfers."""
        schedule = self.get(key)
        if schedule is None:
            raise ScheduleNotFoundError(key)
        schedule.last_executed = timestamp
        if isinstance(schedule, TransferSchedule) and not schedule.is_recurring:
            schedule.is_completed = True

    # =========================================================================
    # DUE CHECK
    # =========================================================================

    def is_due(self, schedule: Schedule, as_of: date) -> bool:
        if not schedule.is_active:
            return False
        if isinstance(schedule, TransferSchedule) and schedule.is_completed:
            return False
        if as_of.day < effective_trigger_day(schedule.trigger_day, as_of):
            return False
        return not self._events.has_execution_in_period(schedule.key, period_of(as_of))

    def due_schedules(self, as_of: date) -> list[Schedule]:
        """All schedules due on as_of, in evaluation order."""
        due = [s for s in self._schedules if self.is_due(s, as_of)]
        due.sort(key=lambda s: (
            EVALUATION_ORDER[s.kind],
            effective_trigger_day(s.trigger_day, as_of),
            s.id,
        ))

        if self._require_transfer:
            period = period_of(as_of)
            transfer_pending = any(s.kind == ScheduleKind.TRANSFER for s in due)
            if not transfer_pending and not self._events.transfer_executed_in(period):
                held = [s for s in due if s.kind == ScheduleKind.PAYMENT]
                if held:
                    logger.info(
                        "payments_held_until_transfer",
                        period=period,
                        held=len(held),
                    )
                due = [s for s in due if s.kind != ScheduleKind.PAYMENT]

        return due
