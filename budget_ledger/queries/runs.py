"""
Run Aggregation

A run is never stored. It is derived on every read by grouping the three
collections the engine writes to (transaction events, income events, the
processed log) on their run key: the batch id, or the raw timestamp for
records that predate batch ids.

ORDERING (history views rely on it):
- Runs with a parseable timestamp come first, newest first
- Runs whose timestamp does not parse come last, by raw string descending

This module only reads. It never mutates the event store.
"""

from collections.abc import Iterable
from decimal import Decimal
from typing import Optional
from uuid import UUID

from budget_ledger.ledger.clock import parse_timestamp
from budget_ledger.ledger.events import EventStore
from budget_ledger.models.ledger import (
    ExecutionEvent,
    ProcessedLogEntry,
    RunSummary,
    TransactionKind,
    TransactionRecord,
)
from budget_ledger.models.schedule import IncomeSchedule, ScheduleKind
from budget_ledger.services.accounts import AccountStoreInterface


DETAIL_SEPARATOR = " • "

TRANSACTION_KIND_LABELS = {
    TransactionKind.SCHEDULED: "Scheduled",
    TransactionKind.TRANSFER: "Transfer",
    TransactionKind.MANUAL: "Manual",
}


def _join(parts: Iterable[Optional[str]]) -> str:
    return DETAIL_SEPARATOR.join(part for part in parts if part)


class RunAggregator:
    """
    Groups execution records into runs.

    GUARANTEES:
    - Every record of one engine batch lands in exactly one RunSummary
    - Unparseable timestamps are tolerated (grouped by raw string)
    - Nothing is cached; every call reflects the current store
    """

    def __init__(
        self,
        events: EventStore,
        accounts: Optional[AccountStoreInterface] = None,
        currency_symbol: str = "£",
    ):
        self._events = events
        self._accounts = accounts
        self._currency = currency_symbol

    # =========================================================================
    # DETAIL LINES
    # =========================================================================

    def _money(self, amount: Decimal) -> str:
        return f"{self._currency}{amount:.2f}"

    def _account_label(self, account_id: Optional[int]) -> Optional[str]:
        if account_id is None:
            return None
        return self._accounts.account_name(account_id) if self._accounts else None

    def _income_schedule(self, schedule_id: int) -> Optional[IncomeSchedule]:
        for schedule in self._events.state.schedules:
            if schedule.kind == ScheduleKind.INCOME and schedule.id == schedule_id:
                return schedule
        return None

    def transaction_detail(self, record: TransactionRecord, event: ExecutionEvent) -> str:
        to_label = self._account_label(record.to_account_id)
        return _join([
            record.name or f"Transaction #{record.id}",
            self._money(event.amount),
            f"Vendor: {record.vendor}" if record.vendor else None,
            f"To: {to_label}" if to_label else None,
            f"Pot: {record.to_pot_name}" if record.to_pot_name else None,
            f"Type: {TRANSACTION_KIND_LABELS[record.kind]}",
        ])

    def income_detail(self, schedule_id: int, event: ExecutionEvent) -> str:
        schedule = self._income_schedule(schedule_id)
        if schedule is None:
            return _join([f"Income #{schedule_id}", self._money(event.amount)])
        account_label = self._account_label(schedule.account_id)
        return _join([
            schedule.description or f"Income #{schedule_id}",
            self._money(event.amount),
            f"Company: {schedule.company}" if schedule.company else None,
            f"Account: {account_label}" if account_label else None,
        ])

    def log_detail(self, entry: ProcessedLogEntry) -> str:
        account_label = self._account_label(entry.account_id)
        return _join([
            entry.name or f"Payment #{entry.payment_id}",
            self._money(entry.amount),
            f"Company: {entry.company}" if entry.company else None,
            f"Account: {account_label}" if account_label else None,
            f"Day: {entry.day}" if entry.day > 0 else None,
        ])

    # =========================================================================
    # GROUPING
    # =========================================================================

    def _summary_for(
        self,
        runs: dict[str, RunSummary],
        run_key: str,
        timestamp: str,
        batch_id: Optional[UUID],
    ) -> RunSummary:
        summary = runs.get(run_key)
        if summary is None:
            summary = RunSummary(
                run_key=run_key,
                timestamp=timestamp,
                batch_id=batch_id,
                executed_at=parse_timestamp(timestamp),
            )
            runs[run_key] = summary
        return summary

    def _group(self) -> dict[str, RunSummary]:
        runs: dict[str, RunSummary] = {}
        state = self._events.state

        for record in state.transactions:
            for event in record.events:
                summary = self._summary_for(runs, event.run_key, event.executed_at, event.batch_id)
                summary.transaction_events += 1
                summary.transaction_details.append(self.transaction_detail(record, event))

        for schedule_id, events in state.income_events.items():
            for event in events:
                summary = self._summary_for(runs, event.run_key, event.executed_at, event.batch_id)
                summary.income_events += 1
                summary.income_details.append(self.income_detail(schedule_id, event))

        for entry in state.processed_logs:
            summary = self._summary_for(runs, entry.run_key, entry.processed_at, entry.batch_id)
            summary.processed_logs += 1
            summary.log_details.append(self.log_detail(entry))

        return runs

    def list_runs(self) -> list[RunSummary]:
        """All runs, newest first; unparseable timestamps last."""
        runs = list(self._group().values())
        dated = [run for run in runs if run.executed_at is not None]
        undated = [run for run in runs if run.executed_at is None]
        dated.sort(key=lambda run: (run.executed_at, run.timestamp, run.run_key), reverse=True)
        undated.sort(key=lambda run: (run.timestamp, run.run_key), reverse=True)
        return dated + undated

    def get_run(self, key: str) -> Optional[RunSummary]:
        """Find a run by its run key (batch id) or raw timestamp."""
        runs = self._group()
        if key in runs:
            return runs[key]
        for run in runs.values():
            if run.timestamp == key:
                return run
        return None
