"""Account and pot balances consumed by the ledger."""

from budget_ledger.services.accounts.store import (
    Account,
    AccountNotFoundError,
    AccountStoreInterface,
    InMemoryAccountStore,
    InsufficientFundsError,
    Pot,
)

__all__ = [
    "Account",
    "AccountNotFoundError",
    "AccountStoreInterface",
    "InMemoryAccountStore",
    "InsufficientFundsError",
    "Pot",
]
