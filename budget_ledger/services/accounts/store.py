"""
Account / Pot Store

The ledger does not own balances. It reads and mutates them through this
small contract:

- get_balance(ref) -> Decimal
- apply_delta(ref, delta)
- account_exists(account_id)
- account_name(account_id)

A pot delta touches only the pot's balance. The account's own balance is
not rolled up from its pots.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from budget_ledger.models.schedule import BalanceRef


class AccountNotFoundError(Exception):
    """The referenced account or pot does not exist."""

    def __init__(self, ref: BalanceRef):
        self.ref = ref
        super().__init__(f"Unknown balance: {ref}")


class InsufficientFundsError(Exception):
    """A debit would take a balance below zero where that is not allowed."""

    def __init__(self, ref: BalanceRef, balance: Decimal, requested: Decimal):
        self.ref = ref
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient funds in {ref}: balance {balance}, requested {requested}"
        )


class Pot(BaseModel):
    """A named sub-balance inside an account."""
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    name: str = Field(..., min_length=1, max_length=100)
    balance: Decimal = Decimal("0")


class Account(BaseModel):
    """An account with an optional set of pots."""
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1, max_length=200)
    balance: Decimal = Decimal("0")
    pots: list[Pot] = Field(default_factory=list)

    def find_pot(self, name: str) -> Optional[Pot]:
        for pot in self.pots:
            if pot.name == name:
                return pot
        return None


class AccountStoreInterface(ABC):
    """Contract the ledger uses to read and mutate balances."""

    @abstractmethod
    def get_balance(self, ref: BalanceRef) -> Decimal:
        """
        Current balance of an account or pot.

        Raises:
            AccountNotFoundError: If the account or pot does not exist
        """
        pass

    @abstractmethod
    def apply_delta(
        self,
        ref: BalanceRef,
        delta: Decimal,
        require_funds: bool = False,
    ) -> Decimal:
        """
        Add a signed delta to a balance and return the new balance.

        Args:
            ref: The account or pot to change
            delta: Signed amount (negative debits)
            require_funds: Reject a debit that would go below zero

        Raises:
            AccountNotFoundError: If the account or pot does not exist
            InsufficientFundsError: If require_funds is set and the debit
                exceeds the balance
        """
        pass

    @abstractmethod
    def account_exists(self, account_id: int) -> bool:
        pass

    @abstractmethod
    def account_name(self, account_id: int) -> Optional[str]:
        pass


class InMemoryAccountStore(AccountStoreInterface):
    """
    Account store held in process memory.

    Persistence and change notification of balances belong to the host
    application; this implementation serves the ledger and its tests.
    """

    def __init__(self, accounts: Optional[list[Account]] = None):
        self._accounts: dict[int, Account] = {}
        for account in accounts or []:
            self.add_account(account)

    def add_account(self, account: Account) -> None:
        self._accounts[account.id] = account

    def get_account(self, account_id: int) -> Optional[Account]:
        return self._accounts.get(account_id)

    def _resolve(self, ref: BalanceRef) -> Account | Pot:
        account = self._accounts.get(ref.account_id)
        if account is None:
            raise AccountNotFoundError(ref)
        if ref.pot_name is None:
            return account
        pot = account.find_pot(ref.pot_name)
        if pot is None:
            raise AccountNotFoundError(ref)
        return pot

    def get_balance(self, ref: BalanceRef) -> Decimal:
        return self._resolve(ref).balance

    def apply_delta(
        self,
        ref: BalanceRef,
        delta: Decimal,
        require_funds: bool = False,
    ) -> Decimal:
        target = self._resolve(ref)
        new_balance = target.balance + delta
        if require_funds and delta < 0 and new_balance < 0:
            raise InsufficientFundsError(ref, target.balance, -delta)
        target.balance = new_balance
        return new_balance

    def account_exists(self, account_id: int) -> bool:
        return account_id in self._accounts

    def account_name(self, account_id: int) -> Optional[str]:
        account = self._accounts.get(account_id)
        return account.name if account else None
