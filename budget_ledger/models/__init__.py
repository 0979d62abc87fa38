"""
Data Models Package

This package contains all Pydantic models used in the Budget Ledger system.
All data flowing through the ledger must conform to these schemas.
"""

from budget_ledger.models.schedule import (
    BalanceRef,
    IncomeSchedule,
    PaymentSchedule,
    Schedule,
    ScheduleKey,
    ScheduleKind,
    TransferSchedule,
    ValidationIssue,
    ValidationResult,
    schedule_adapter,
)
from budget_ledger.models.ledger import (
    EventOwner,
    ExecutionEvent,
    ExecutionLogEntry,
    ExecutionSummary,
    LedgerState,
    OwnerKind,
    ProcessedLogEntry,
    PurgeSummary,
    RunSummary,
    ScheduleFailure,
    TransactionKind,
    TransactionRecord,
)
from budget_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Schedule models
    "BalanceRef",
    "IncomeSchedule",
    "PaymentSchedule",
    "Schedule",
    "ScheduleKey",
    "ScheduleKind",
    "TransferSchedule",
    "schedule_adapter",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Ledger records
    "EventOwner",
    "ExecutionEvent",
    "ExecutionLogEntry",
    "ExecutionSummary",
    "LedgerState",
    "OwnerKind",
    "ProcessedLogEntry",
    "PurgeSummary",
    "RunSummary",
    "ScheduleFailure",
    "TransactionKind",
    "TransactionRecord",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
