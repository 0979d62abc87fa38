"""
Two-Stage Schedule Validation

Schedules are validated once, when they are created. The due-date check
assumes every stored schedule is already valid and never re-validates.

STAGE 1 - SCHEMA VALIDATION:
- Kind is one of payment / income / transfer
- Trigger day in [1, 31], amount positive with at most two decimals
- Required fields present, text fields within length

STAGE 2 - SEMANTIC VALIDATION:
- Owner (and destination) account and pot exist
- Transfer source and destination differ
- No second pending one-shot transfer to the same destination
- No second income schedule for the same income on the same account
- Schedule id not already taken within its kind

Stage 2 only runs when stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues. It reports them.
"""

from collections.abc import Iterable
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from budget_ledger.models.schedule import (
    BalanceRef,
    IncomeSchedule,
    Schedule,
    ScheduleKey,
    ScheduleKind,
    TransferSchedule,
    ValidationIssue,
    ValidationResult,
    schedule_adapter,
)
from budget_ledger.services.accounts import (
    AccountNotFoundError,
    AccountStoreInterface,
)


_KIND_TAGS = {kind.value for kind in ScheduleKind}


def _issue_from_error(error: dict) -> ValidationIssue:
    """Turn one pydantic error into a ValidationIssue."""
    location = [str(part) for part in error.get("loc", ())]
    # Discriminated unions prefix the location with the tag
    if location and location[0] in _KIND_TAGS:
        location = location[1:]
    field = ".".join(location) or "schedule"
    return ValidationIssue(
        field=field,
        issue_type=error.get("type", "invalid"),
        message=f"{field}: {error.get('msg', 'invalid value')}",
        severity="error",
    )


class ScheduleValidator:
    """
    Validates schedule definitions through a two-stage pipeline.

    Stage 1: Schema validation (no collaborators needed)
    Stage 2: Semantic validation (needs the account store and the
             schedules already registered)
    """

    def __init__(
        self,
        accounts: Optional[AccountStoreInterface] = None,
    ):
        """
        Initialize validator.

        Args:
            accounts: Account store for existence checks.
                      If None, account checks are skipped.
        """
        self._accounts = accounts

    def _validate_schema(
        self,
        data: Any,
    ) -> tuple[Optional[Schedule], list[ValidationIssue]]:
        """Stage 1: parse the definition into a typed schedule."""
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json")
        try:
            return schedule_adapter.validate_python(data), []
        except ValidationError as e:
            return None, [_issue_from_error(err) for err in e.errors()]

    def _balance_exists(self, ref: BalanceRef) -> bool:
        try:
            self._accounts.get_balance(ref)
        except AccountNotFoundError:
            return False
        return True

    def _check_balance(self, field: str, ref: BalanceRef) -> list[ValidationIssue]:
        if self._accounts is None:
            return []
        if not self._accounts.account_exists(ref.account_id):
            return [ValidationIssue(
                field=field,
                issue_type="unknown_account",
                message=f"Account #{ref.account_id} not found",
                severity="error",
            )]
        if ref.pot_name is not None and not self._balance_exists(ref):
            return [ValidationIssue(
                field=field,
                issue_type="unknown_pot",
                message=f"Pot '{ref.pot_name}' not found in account #{ref.account_id}",
                severity="error",
            )]
        return []

    def _validate_semantic(
        self,
        schedule: Schedule,
        existing: list[Schedule],
        retired: set[ScheduleKey],
    ) -> tuple[bool, list[ValidationIssue]]:
        """Stage 2: checks against accounts and registered schedules."""
        issues = []

        issues.extend(self._check_balance("account_id", schedule.owner))

        if any(s.key == schedule.key for s in existing):
            issues.append(ValidationIssue(
                field="id",
                issue_type="duplicate",
                message=f"Schedule {schedule.key} already exists",
                severity="error",
            ))
        elif schedule.key in retired:
            issues.append(ValidationIssue(
                field="id",
                issue_type="duplicate",
                message=f"Schedule {schedule.key} has recorded history from a removed schedule",
                severity="error",
            ))

        if isinstance(schedule, TransferSchedule):
            issues.extend(self._check_balance("to_account_id", schedule.destination))

            if not schedule.is_recurring:
                pending = [
                    s for s in existing
                    if isinstance(s, TransferSchedule)
                    and not s.is_recurring
                    and s.is_active
                    and not s.is_completed
                    and s.destination == schedule.destination
                ]
                if pending:
                    issues.append(ValidationIssue(
                        field="to_account_id",
                        issue_type="duplicate",
                        message="A pending schedule already exists for this destination",
                        severity="error",
                    ))

        if isinstance(schedule, IncomeSchedule) and schedule.income_id is not None:
            already_scheduled = any(
                isinstance(s, IncomeSchedule)
                and s.account_id == schedule.account_id
                and s.income_id == schedule.income_id
                for s in existing
            )
            if already_scheduled:
                issues.append(ValidationIssue(
                    field="income_id",
                    issue_type="duplicate",
                    message="This income is already scheduled",
                    severity="error",
                ))

        if schedule.trigger_day > 28:
            issues.append(ValidationIssue(
                field="trigger_day",
                issue_type="short_month",
                message=(
                    f"Day {schedule.trigger_day} does not exist in every month; "
                    "the schedule fires on the last day of shorter months"
                ),
                severity="info",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(
        self,
        data: Any,
        existing: Iterable[Schedule] = (),
        retired: Iterable[ScheduleKey] = (),
    ) -> ValidationResult:
        """
        Run the full two-stage validation pipeline.

        Args:
            data: A mapping or a schedule model
            existing: Schedules already registered
            retired: Keys of removed schedules that recorded history still refers to

        Returns:
            ValidationResult with the parsed schedule and all issues found
        """
        schedule, issues = self._validate_schema(data)
        if schedule is None:
            return ValidationResult(
                schema_valid=False,
                semantic_valid=False,
                issues=issues,
            )

        semantic_valid, semantic_issues = self._validate_semantic(
            schedule, list(existing), set(retired)
        )
        return ValidationResult(
            schema_valid=True,
            semantic_valid=semantic_valid,
            schedule=schedule,
            issues=issues + semantic_issues,
        )
