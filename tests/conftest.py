"""
Pytest configuration for Budget Ledger.

Provides fixtures for:
- An account store with two accounts and a pot in each
- Fixed clocks (no test depends on the wall clock)
- In-memory, gated and failing ledger storage
- A fully wired RecurringLedger
- Builders for schedule definitions
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from budget_ledger.audit import AuditLogger
from budget_ledger.config import LedgerSettings
from budget_ledger.ledger import FixedClock
from budget_ledger.models.ledger import LedgerState
from budget_ledger.orchestrator import RecurringLedger
from budget_ledger.services.accounts import Account, InMemoryAccountStore, Pot
from budget_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    StorageError,
)


class GatedStorage(InMemoryLedgerStorage):
    """Storage whose save() blocks until the test releases it."""

    def __init__(self, initial: Optional[LedgerState] = None):
        super().__init__(initial)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def save(self, state: LedgerState) -> None:
        self.entered.set()
        await self.release.wait()
        await super().save(state)


class FailingStorage(InMemoryLedgerStorage):
    """Storage whose save() raises while `failing` is set."""

    def __init__(self, initial: Optional[LedgerState] = None):
        super().__init__(initial)
        self.failing = True

    async def save(self, state: LedgerState) -> None:
        if self.failing:
            raise StorageError("disk full")
        await super().save(state)


@pytest.fixture
def accounts() -> InMemoryAccountStore:
    return InMemoryAccountStore([
        Account(
            id=1,
            name="Current",
            balance=Decimal("1000.00"),
            pots=[Pot(name="Bills", balance=Decimal("200.00"))],
        ),
        Account(
            id=2,
            name="Savings",
            balance=Decimal("500.00"),
            pots=[Pot(name="Holiday", balance=Decimal("0.00"))],
        ),
    ])


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 1, 15, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings(tmp_path) -> LedgerSettings:
    return LedgerSettings(
        data_path=tmp_path / "ledger_state.json",
        audit_log_path=tmp_path / "audit_log.jsonl",
        execution_log_limit=100,
        require_transfer_before_payments=False,
        currency_symbol="£",
        storage_retry_attempts=1,
    )


@pytest.fixture
def storage() -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def make_ledger(accounts, clock, settings, audit_storage):
    """Build a ledger around a given storage backend."""

    def _make(storage, **overrides) -> RecurringLedger:
        ledger_settings = settings.model_copy(update=overrides) if overrides else settings
        return RecurringLedger(
            accounts=accounts,
            storage=storage,
            clock=clock,
            audit_logger=AuditLogger(audit_storage),
            settings=ledger_settings,
        )

    return _make


@pytest.fixture
def ledger(make_ledger, storage) -> RecurringLedger:
    return make_ledger(storage)


@pytest.fixture
def payment_data():
    def _build(**overrides) -> dict:
        data = {
            "kind": "payment",
            "description": "Netflix",
            "amount": "9.99",
            "account_id": 1,
            "trigger_day": 5,
            "company": "Netflix Ltd",
            "payment_type": "card",
        }
        data.update(overrides)
        return data

    return _build


@pytest.fixture
def income_data():
    def _build(**overrides) -> dict:
        data = {
            "kind": "income",
            "description": "Salary",
            "amount": "2000.00",
            "account_id": 1,
            "trigger_day": 1,
            "company": "ACME",
            "income_id": 1,
        }
        data.update(overrides)
        return data

    return _build


@pytest.fixture
def transfer_data():
    def _build(**overrides) -> dict:
        data = {
            "kind": "transfer",
            "description": "Holiday fund",
            "amount": "100.00",
            "account_id": 1,
            "trigger_day": 2,
            "to_account_id": 2,
            "to_pot_name": "Holiday",
            "is_recurring": True,
        }
        data.update(overrides)
        return data

    return _build


@pytest.fixture
def gated_storage() -> GatedStorage:
    return GatedStorage()


@pytest.fixture
def failing_storage() -> FailingStorage:
    return FailingStorage()


LEGACY_T1 = "2024-03-01T09:00:00Z"
LEGACY_T2 = "2024-03-02T09:00:00Z"


@pytest.fixture
def legacy_state() -> LedgerState:
    """
    Ledger written before batch ids existed: two runs keyed by raw timestamp.

    T1 holds 2 transaction events, 1 income event and 2 processed logs;
    T2 holds 1 transaction event, 1 income event and 2 processed logs.
    """
    return LedgerState.model_validate({
        "schedules": [
            {"kind": "payment", "id": 1, "description": "Netflix", "amount": "9.99",
             "account_id": 1, "trigger_day": 5, "company": "Netflix Ltd", "payment_type": "card"},
            {"kind": "payment", "id": 2, "description": "Gym", "amount": "30.00",
             "account_id": 1, "trigger_day": 1},
            {"kind": "income", "id": 1, "description": "Salary", "amount": "2000.00",
             "account_id": 1, "trigger_day": 1, "company": "ACME", "income_id": 1},
            {"kind": "income", "id": 2, "description": "Rent from lodger", "amount": "400.00",
             "account_id": 2, "trigger_day": 2},
            {"kind": "transfer", "id": 1, "description": "Holiday fund", "amount": "100.00",
             "account_id": 1, "trigger_day": 2, "to_account_id": 2, "to_pot_name": "Holiday"},
        ],
        "transactions": [
            {"id": 1, "name": "Netflix", "vendor": "Netflix Ltd", "amount": "9.99",
             "date": "2024-03-01", "to_account_id": 1, "payment_type": "card",
             "schedule_kind": "payment", "schedule_id": 1,
             "events": [{"executed_at": LEGACY_T1, "amount": "9.99"}]},
            {"id": 2, "name": "Gym", "amount": "30.00", "date": "2024-03-01",
             "to_account_id": 1, "schedule_kind": "payment", "schedule_id": 2,
             "events": [{"executed_at": LEGACY_T1, "amount": "30.00"}]},
            {"id": 3, "name": "Holiday fund", "amount": "100.00", "date": "2024-03-02",
             "from_account_id": 1, "to_account_id": 2, "to_pot_name": "Holiday",
             "kind": "transfer", "schedule_kind": "transfer", "schedule_id": 1,
             "events": [{"executed_at": LEGACY_T2, "amount": "100.00"}]},
            {"id": 4, "name": "Coffee", "amount": "3.50", "date": "2024-03-01",
             "to_account_id": 1, "kind": "manual"},
        ],
        "income_events": {
            "1": [{"executed_at": LEGACY_T1, "amount": "2000.00"}],
            "2": [{"executed_at": LEGACY_T2, "amount": "400.00"}],
        },
        "processed_logs": [
            {"id": 1, "payment_id": 1, "name": "Netflix", "company": "Netflix Ltd",
             "amount": "9.99", "account_id": 1, "day": 5, "payment_type": "card",
             "processed_at": LEGACY_T1},
            {"id": 2, "payment_id": 2, "name": "Gym", "amount": "30.00",
             "account_id": 1, "day": 1, "processed_at": LEGACY_T1},
            {"id": 3, "payment_id": 3, "name": "Phone", "amount": "12.00",
             "account_id": 1, "day": 2, "processed_at": LEGACY_T2},
            {"id": 4, "payment_id": 4, "name": "Insurance", "amount": "20.00",
             "account_id": 2, "day": 2, "processed_at": LEGACY_T2},
        ],
        "next_transaction_id": 5,
        "next_processed_log_id": 5,
    })
