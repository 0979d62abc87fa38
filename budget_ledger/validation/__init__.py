"""Schedule validation package."""

from budget_ledger.validation.validator import ScheduleValidator

__all__ = ["ScheduleValidator"]
