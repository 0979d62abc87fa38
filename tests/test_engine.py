"""
Tests for the execution engine.

Runs go through RecurringLedger.run_due so the guard, the stamper and the
storage write are exercised together. Schedules are registered straight
on the registry so the only storage write is the run's own.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from budget_ledger.ledger import EngineBusyError, PartialExecutionError, PersistenceError
from budget_ledger.ledger.engine import PROCESS_NAMES
from budget_ledger.models.audit import AuditEventType
from budget_ledger.models.ledger import OwnerKind, TransactionKind
from budget_ledger.models.schedule import BalanceRef, ScheduleKind

CURRENT = BalanceRef(account_id=1)
BILLS = BalanceRef(account_id=1, pot_name="Bills")
SAVINGS = BalanceRef(account_id=2)
HOLIDAY = BalanceRef(account_id=2, pot_name="Holiday")


class TestRunDue:
    """A normal run applies, records and persists every due schedule."""

    @pytest.mark.asyncio
    async def test_applies_balance_effects(
        self, ledger, accounts, payment_data, income_data, transfer_data
    ):
        """Payment debits, income credits, transfer moves between balances."""
        ledger.registry.add(payment_data())
        ledger.registry.add(income_data())
        ledger.registry.add(transfer_data())

        summary = await ledger.run_due(date(2024, 1, 15))

        assert summary.total_executed == 3
        assert accounts.get_balance(CURRENT) == Decimal("2890.01")
        assert accounts.get_balance(HOLIDAY) == Decimal("100.00")
        assert accounts.get_balance(SAVINGS) == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_nothing_due_writes_nothing(self, ledger, storage, payment_data):
        ledger.registry.add(payment_data(trigger_day=20))

        summary = await ledger.run_due(date(2024, 1, 15))

        assert summary.total_executed == 0
        assert storage.save_count == 0
        assert ledger.list_runs() == []

    @pytest.mark.asyncio
    async def test_same_day_rerun_is_idempotent(self, ledger, storage, accounts, payment_data):
        """Running twice on the same day never fires a schedule twice."""
        ledger.registry.add(payment_data())

        await ledger.run_due(date(2024, 1, 15))
        second = await ledger.run_due(date(2024, 1, 15))

        assert second.total_executed == 0
        assert storage.save_count == 1
        assert accounts.get_balance(CURRENT) == Decimal("990.01")
        assert len(ledger.events.transactions) == 1

    @pytest.mark.asyncio
    async def test_later_day_same_month_is_idempotent(self, ledger, accounts, payment_data):
        ledger.registry.add(payment_data())

        await ledger.run_due(date(2024, 1, 15))
        await ledger.run_due(date(2024, 1, 31))

        assert accounts.get_balance(CURRENT) == Decimal("990.01")

    @pytest.mark.asyncio
    async def test_fires_again_next_month(self, ledger, accounts, payment_data):
        ledger.registry.add(payment_data())

        await ledger.run_due(date(2024, 1, 15))
        summary = await ledger.run_due(date(2024, 2, 5))

        assert summary.payments_executed == 1
        assert accounts.get_balance(CURRENT) == Decimal("980.02")
        assert len(ledger.list_runs()) == 2

    @pytest.mark.asyncio
    async def test_run_shares_batch_identity(
        self, ledger, payment_data, income_data, transfer_data
    ):
        """Everything one run writes carries the same batch id and timestamp."""
        ledger.registry.add(payment_data())
        ledger.registry.add(income_data())
        ledger.registry.add(transfer_data())

        summary = await ledger.run_due(date(2024, 1, 15))

        events = [event for _, event in ledger.events.iter_events()]
        logs = ledger.events.processed_logs
        assert len(events) == 3
        assert {e.batch_id for e in events} == {summary.batch_id}
        assert {e.executed_at for e in events} == {summary.timestamp}
        assert [entry.batch_id for entry in logs] == [summary.batch_id]
        assert [entry.processed_at for entry in logs] == [summary.timestamp]

        runs = ledger.list_runs()
        assert len(runs) == 1
        assert runs[0].run_key == str(summary.batch_id)
        assert (runs[0].transaction_events, runs[0].income_events, runs[0].processed_logs) == (2, 1, 1)

    @pytest.mark.asyncio
    async def test_runs_get_distinct_timestamps(self, ledger, payment_data):
        """The fixed test clock never moves, yet each run has its own stamp."""
        ledger.registry.add(payment_data())

        first = await ledger.run_due(date(2024, 1, 15))
        second = await ledger.run_due(date(2024, 2, 15))

        assert first.timestamp != second.timestamp
        assert second.timestamp > first.timestamp
        assert first.batch_id != second.batch_id

    @pytest.mark.asyncio
    async def test_records_per_kind(self, ledger, payment_data, income_data, transfer_data):
        """Payments and transfers create transactions; income events sit on the schedule."""
        ledger.registry.add(payment_data())
        ledger.registry.add(income_data())
        ledger.registry.add(transfer_data())

        summary = await ledger.run_due(date(2024, 1, 15))

        payment_tx, transfer_tx = sorted(
            ledger.events.transactions, key=lambda t: t.schedule_kind.value
        )
        assert payment_tx.kind == TransactionKind.SCHEDULED
        assert payment_tx.vendor == "Netflix Ltd"
        assert payment_tx.date == "2024-01-05"
        assert payment_tx.from_account_id is None
        assert payment_tx.to_account_id == 1
        assert transfer_tx.kind == TransactionKind.TRANSFER
        assert transfer_tx.from_account_id == 1
        assert transfer_tx.to_pot_name == "Holiday"

        income_events = ledger.events.income_events(1)
        assert len(income_events) == 1
        assert income_events[0].amount == Decimal("2000.00")
        assert income_events[0].period == "2024-01"
        assert ledger.registry.get(summary.executed[0]).last_executed == summary.timestamp

    @pytest.mark.asyncio
    async def test_processed_log_only_for_payments(
        self, ledger, payment_data, income_data, transfer_data
    ):
        ledger.registry.add(payment_data())
        ledger.registry.add(income_data())
        ledger.registry.add(transfer_data())

        await ledger.run_due(date(2024, 1, 15))

        logs = ledger.events.processed_logs
        assert len(logs) == 1
        assert logs[0].payment_id == 1
        assert logs[0].day == 5
        assert logs[0].was_manual is True

    @pytest.mark.asyncio
    async def test_catch_up_is_automatic(self, ledger, payment_data):
        ledger.registry.add(payment_data())

        summary = await ledger.catch_up()

        assert summary.automatic is True
        assert summary.as_of == date(2024, 1, 15)
        assert ledger.events.processed_logs[0].was_manual is False
        assert ledger.execution_logs()[0].was_automatic is True

    @pytest.mark.asyncio
    async def test_one_shot_transfer_completes(self, ledger, accounts, transfer_data):
        schedule = ledger.registry.add(transfer_data(is_recurring=False))

        await ledger.run_due(date(2024, 1, 15))
        summary = await ledger.run_due(date(2024, 2, 15))

        assert ledger.registry.get(schedule.key).is_completed is True
        assert summary.total_executed == 0
        assert accounts.get_balance(HOLIDAY) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_execution_logs_per_process(
        self, ledger, payment_data, income_data, transfer_data
    ):
        """One history line per process that executed, newest first."""
        ledger.registry.add(payment_data())
        ledger.registry.add(payment_data(description="Spotify"))
        ledger.registry.add(income_data())
        ledger.registry.add(transfer_data())

        await ledger.run_due(date(2024, 1, 15))

        logs = ledger.execution_logs()
        assert [entry.process_name for entry in logs] == [
            PROCESS_NAMES[ScheduleKind.PAYMENT],
            PROCESS_NAMES[ScheduleKind.INCOME],
            PROCESS_NAMES[ScheduleKind.TRANSFER],
        ]
        assert logs[0].item_count == 2
        assert logs[0].was_automatic is False
        assert len(ledger.execution_logs("Scheduled Payments")) == 1

    @pytest.mark.asyncio
    async def test_execution_log_cap(self, make_ledger, storage, payment_data, income_data):
        ledger = make_ledger(storage, execution_log_limit=2)
        ledger.registry.add(payment_data())
        ledger.registry.add(income_data())

        await ledger.run_due(date(2024, 1, 15))
        await ledger.run_due(date(2024, 2, 15))

        logs = ledger.execution_logs()
        assert len(logs) == 2
        assert {entry.timestamp for entry in logs} == {ledger.list_runs()[0].timestamp}

    @pytest.mark.asyncio
    async def test_run_is_persisted(self, ledger, storage, payment_data):
        ledger.registry.add(payment_data())

        summary = await ledger.run_due(date(2024, 1, 15))

        stored = storage.stored
        assert stored.transactions[0].events[0].batch_id == summary.batch_id
        assert stored.schedules[0].last_executed == summary.timestamp


class TestRunFailures:
    """Per-schedule isolation and whole-batch rollback."""

    @pytest.mark.asyncio
    async def test_insufficient_funds_is_partial(
        self, ledger, storage, accounts, payment_data, transfer_data
    ):
        """The failing transfer is skipped; the payment is kept and saved."""
        payment = ledger.registry.add(payment_data())
        transfer = ledger.registry.add(transfer_data(
            account_id=2, pot_name="Holiday", to_account_id=1, to_pot_name=None,
        ))

        with pytest.raises(PartialExecutionError) as exc_info:
            await ledger.run_due(date(2024, 1, 15))

        error = exc_info.value
        assert error.succeeded == [payment.key]
        assert [f.key for f in error.failed] == [transfer.key]
        assert "Insufficient funds" in error.failed[0].reason

        assert accounts.get_balance(CURRENT) == Decimal("990.01")
        assert accounts.get_balance(HOLIDAY) == Decimal("0.00")
        assert storage.save_count == 1
        assert len(storage.stored.transactions) == 1
        assert ledger.registry.get(transfer.key).last_executed is None

    @pytest.mark.asyncio
    async def test_failed_schedule_stays_due(
        self, ledger, accounts, payment_data, transfer_data
    ):
        ledger.registry.add(transfer_data(
            account_id=2, pot_name="Holiday", to_account_id=1, to_pot_name=None,
        ))
        with pytest.raises(PartialExecutionError):
            await ledger.run_due(date(2024, 1, 15))

        accounts.apply_delta(HOLIDAY, Decimal("100"))
        summary = await ledger.run_due(date(2024, 1, 16))

        assert summary.transfers_executed == 1
        assert accounts.get_balance(HOLIDAY) == Decimal("0")

    @pytest.mark.asyncio
    async def test_missing_destination_reverses_source(self, ledger, accounts, transfer_data):
        """A delta that cannot land undoes the deltas already applied."""
        ledger.registry.add(transfer_data())
        accounts.get_account(2).pots = []

        with pytest.raises(PartialExecutionError):
            await ledger.run_due(date(2024, 1, 15))

        assert accounts.get_balance(CURRENT) == Decimal("1000.00")
        assert ledger.events.transactions == []

    @pytest.mark.asyncio
    async def test_payment_may_overdraw(self, ledger, accounts, payment_data):
        """Only transfer sources are funds-checked."""
        ledger.registry.add(payment_data(amount="250.00", pot_name="Bills"))

        await ledger.run_due(date(2024, 1, 15))

        assert accounts.get_balance(BILLS) == Decimal("-50.00")
        assert accounts.get_balance(CURRENT) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_storage_failure_rolls_back_everything(
        self, make_ledger, failing_storage, accounts, audit_storage,
        payment_data, income_data, transfer_data,
    ):
        ledger = make_ledger(failing_storage)
        ledger.registry.add(payment_data())
        ledger.registry.add(income_data())
        ledger.registry.add(transfer_data())
        before = ledger.events.snapshot()

        with pytest.raises(PersistenceError) as exc_info:
            await ledger.run_due(date(2024, 1, 15))

        assert exc_info.value.batch_id is not None
        assert accounts.get_balance(CURRENT) == Decimal("1000.00")
        assert accounts.get_balance(HOLIDAY) == Decimal("0.00")
        assert ledger.state.model_dump() == before.model_dump()
        assert ledger.busy is False

        rolled_back = [
            e for e in audit_storage.events if e.event_type == AuditEventType.RUN_ROLLED_BACK
        ]
        assert len(rolled_back) == 1
        assert rolled_back[0].correlation_id == exc_info.value.batch_id

    @pytest.mark.asyncio
    async def test_unexpected_error_rolls_back_batch(
        self, ledger, storage, accounts, audit_storage, monkeypatch, payment_data
    ):
        """An error outside the per-schedule failures undoes the whole batch."""
        ledger.registry.add(payment_data())
        ledger.registry.add(payment_data(description="Gym", amount="30.00", trigger_day=10))
        before = ledger.events.snapshot()
        apply_delta = accounts.apply_delta

        def flaky_apply_delta(ref, delta, require_funds=False):
            if delta == Decimal("-30.00"):
                raise RuntimeError("account service unavailable")
            return apply_delta(ref, delta, require_funds=require_funds)

        monkeypatch.setattr(accounts, "apply_delta", flaky_apply_delta)

        with pytest.raises(RuntimeError):
            await ledger.run_due(date(2024, 1, 15))

        assert accounts.get_balance(CURRENT) == Decimal("1000.00")
        assert ledger.state.model_dump() == before.model_dump()
        assert storage.save_count == 0
        assert ledger.busy is False
        assert audit_storage.events[-1].event_type == AuditEventType.RUN_ROLLED_BACK

        monkeypatch.setattr(accounts, "apply_delta", apply_delta)
        summary = await ledger.run_due(date(2024, 1, 15))
        assert summary.payments_executed == 2

    @pytest.mark.asyncio
    async def test_rerun_after_storage_recovers(
        self, make_ledger, failing_storage, accounts, payment_data
    ):
        ledger = make_ledger(failing_storage)
        ledger.registry.add(payment_data())

        with pytest.raises(PersistenceError):
            await ledger.run_due(date(2024, 1, 15))

        failing_storage.failing = False
        summary = await ledger.run_due(date(2024, 1, 15))

        assert summary.payments_executed == 1
        assert accounts.get_balance(CURRENT) == Decimal("990.01")


class TestRunConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_run_rejected(
        self, make_ledger, gated_storage, audit_storage, accounts, payment_data
    ):
        """A second run while one is persisting fails fast and changes nothing."""
        ledger = make_ledger(gated_storage)
        ledger.registry.add(payment_data())

        first = asyncio.create_task(ledger.run_due(date(2024, 1, 15)))
        await gated_storage.entered.wait()

        with pytest.raises(EngineBusyError):
            await ledger.run_due(date(2024, 1, 15))

        gated_storage.release.set()
        summary = await first

        assert summary.payments_executed == 1
        assert accounts.get_balance(CURRENT) == Decimal("990.01")
        assert len(ledger.list_runs()) == 1
        assert any(e.event_type == AuditEventType.BUSY_REJECTED for e in audit_storage.events)

    @pytest.mark.asyncio
    async def test_guard_released_after_run(self, ledger, payment_data):
        ledger.registry.add(payment_data())
        await ledger.run_due(date(2024, 1, 15))
        assert ledger.busy is False


class TestEventOwners:

    @pytest.mark.asyncio
    async def test_iter_events_by_owner_kind(self, ledger, payment_data, income_data):
        ledger.registry.add(payment_data())
        ledger.registry.add(income_data())

        await ledger.run_due(date(2024, 1, 15))

        assert len(list(ledger.events.iter_events(OwnerKind.TRANSACTION))) == 1
        assert len(list(ledger.events.iter_events(OwnerKind.INCOME))) == 1
