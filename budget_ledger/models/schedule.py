"""
Schedule Models for Budget Ledger

A schedule is a standing instruction to move money on a monthly trigger day.
There are three kinds, modelled as a tagged union on the ``kind`` field:

- PaymentSchedule: debits its owning account (or pot) every month
- IncomeSchedule: credits its owning account every month
- TransferSchedule: moves money from one account/pot to another, either
  every month or once (one-shot)

Amounts are always stored as positive magnitudes. The direction of the
money is implied by the kind, never by the sign.
"""

from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS
# =============================================================================

class ScheduleKind(str, Enum):
    """The three flavours of recurring schedule."""
    PAYMENT = "payment"
    INCOME = "income"
    TRANSFER = "transfer"


# =============================================================================
# BALANCE REFERENCES
# =============================================================================

class BalanceRef(BaseModel):
    """
    Points at one balance: an account, or a pot inside an account.

    A blank pot name is normalised to None so "" and None address the
    same balance.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    account_id: int
    pot_name: Optional[str] = None

    @field_validator('pot_name', mode='before')
    @classmethod
    def normalise_pot(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def __str__(self) -> str:
        if self.pot_name:
            return f"account #{self.account_id} / pot {self.pot_name}"
        return f"account #{self.account_id}"


class ScheduleKey(BaseModel):
    """Identity of a schedule across the three kinds (ids are per kind)."""
    model_config = ConfigDict(frozen=True)

    kind: ScheduleKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind.value}#{self.id}"


# =============================================================================
# SCHEDULES
# =============================================================================

class _ScheduleBase(BaseModel):
    """Fields shared by every schedule kind."""
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: int = Field(
        ...,
        ge=1,
        description="Schedule id (unique within its kind)"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Human description shown in history views"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Magnitude moved on each execution"
    )
    account_id: int = Field(
        ...,
        description="Owning account (the source, for transfers)"
    )
    pot_name: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Owning pot inside the account, if any"
    )
    trigger_day: int = Field(
        ...,
        ge=1,
        le=31,
        description="Day of month on which the schedule becomes due"
    )
    is_active: bool = Field(
        default=True,
        description="Inactive schedules are never due"
    )
    last_executed: Optional[str] = Field(
        default=None,
        description="Batch timestamp of the most recent execution"
    )

    @property
    def key(self) -> ScheduleKey:
        return ScheduleKey(kind=self.kind, id=self.id)

    @property
    def owner(self) -> BalanceRef:
        return BalanceRef(account_id=self.account_id, pot_name=self.pot_name)


class PaymentSchedule(_ScheduleBase):
    """A recurring outgoing payment (bill, subscription, direct debit)."""

    kind: Literal[ScheduleKind.PAYMENT] = ScheduleKind.PAYMENT
    company: str = Field(
        default="",
        max_length=200,
        description="Who gets paid"
    )
    payment_type: Optional[str] = Field(
        default=None,
        max_length=50,
        description="e.g. 'direct_debit' or 'card'"
    )

    def balance_effects(self) -> list[tuple[BalanceRef, Decimal]]:
        return [(self.owner, -self.amount)]


class IncomeSchedule(_ScheduleBase):
    """A recurring incoming payment (salary, benefits)."""

    kind: Literal[ScheduleKind.INCOME] = ScheduleKind.INCOME
    company: str = Field(
        default="",
        max_length=200,
        description="Who pays"
    )
    income_id: Optional[int] = Field(
        default=None,
        description="The account income entry this schedule executes"
    )

    def balance_effects(self) -> list[tuple[BalanceRef, Decimal]]:
        return [(self.owner, self.amount)]


class TransferSchedule(_ScheduleBase):
    """
    A movement between two balances.

    One-shot transfers (is_recurring=False) are marked completed after their
    first execution and are never due again.
    """

    kind: Literal[ScheduleKind.TRANSFER] = ScheduleKind.TRANSFER
    to_account_id: int = Field(
        ...,
        description="Destination account"
    )
    to_pot_name: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Destination pot, if any"
    )
    is_recurring: bool = Field(
        default=True,
        description="False for a one-shot transfer"
    )
    is_completed: bool = Field(
        default=False,
        description="Set once a one-shot transfer has executed"
    )

    @property
    def destination(self) -> BalanceRef:
        return BalanceRef(account_id=self.to_account_id, pot_name=self.to_pot_name)

    @model_validator(mode='after')
    def validate_distinct_ends(self) -> 'TransferSchedule':
        """A transfer must move money somewhere else."""
        if self.owner == self.destination:
            raise ValueError("Transfer source and destination must differ")
        return self

    def balance_effects(self) -> list[tuple[BalanceRef, Decimal]]:
        return [(self.owner, -self.amount), (self.destination, self.amount)]


Schedule = Annotated[
    Union[PaymentSchedule, IncomeSchedule, TransferSchedule],
    Field(discriminator="kind"),
]

schedule_adapter: TypeAdapter[Schedule] = TypeAdapter(Schedule)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single problem found in a schedule definition."""

    field: str = Field(
        ...,
        description="Field with the issue ('schedule' for whole-record checks)"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'out_of_range', 'unknown_account', 'duplicate')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage schedule validation.

    Stage 1: Schema validation (types, ranges, required fields)
    Stage 2: Semantic validation (accounts exist, no conflicting schedules)
    """

    schema_valid: bool
    semantic_valid: bool
    schedule: Optional[Schedule] = Field(
        default=None,
        description="The parsed schedule, when schema validation passed"
    )
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]
