"""
Audit Models for Budget Ledger

Every significant ledger action is logged for audit purposes:
1. Traceability of every run and every purge
2. Debugging information when a schedule fails to execute
3. History that survives purging of the execution records themselves

Audit logs are append-only. Purging execution history never touches them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every stage of a run and of a purge has its own event type.
    """
    # Schedule definitions
    SCHEDULE_ADDED = "schedule_added"
    SCHEDULE_REJECTED = "schedule_rejected"
    SCHEDULE_REMOVED = "schedule_removed"

    # Execution runs
    RUN_STARTED = "run_started"
    SCHEDULE_EXECUTED = "schedule_executed"
    SCHEDULE_FAILED = "schedule_failed"
    RUN_COMPLETED = "run_completed"
    RUN_ROLLED_BACK = "run_rolled_back"

    # Purges
    PURGE_COMPLETED = "purge_completed"
    PURGE_REJECTED = "purge_rejected"

    # Guard
    BUSY_REJECTED = "busy_rejected"

    # System events
    PERSISTENCE_FAILED = "persistence_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of the audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'schedule', 'run')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - the batch id of the run, when there is one
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (all events of one run)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_json_line(self) -> str:
        """Serialise as one line of the JSON-lines audit file."""
        return json.dumps(self.to_log_dict(), default=str)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.run_started(batch_id, as_of, automatic, 3)
        event = AuditEventBuilder.purge_completed("range", 5, 4, 2)
    """

    @staticmethod
    def schedule_added(
        schedule_key: str,
        description: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULE_ADDED,
            entity_type="schedule",
            entity_id=schedule_key,
            description=f"Schedule added: {description}",
            is_user_action=True,
        )

    @staticmethod
    def schedule_rejected(
        issues: list[dict],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="schedule",
            description=f"Schedule rejected with {len(issues)} issues",
            details={"issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def schedule_removed(
        schedule_key: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULE_REMOVED,
            entity_type="schedule",
            entity_id=schedule_key,
            description=f"Schedule removed: {schedule_key}",
            is_user_action=True,
        )

    @staticmethod
    def run_started(
        batch_id: UUID,
        as_of: str,
        automatic: bool,
        due_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RUN_STARTED,
            entity_type="run",
            entity_id=str(batch_id),
            correlation_id=batch_id,
            description=f"Run started with {due_count} due schedules",
            details={
                "as_of": as_of,
                "due_count": due_count,
            },
            is_user_action=not automatic,
        )

    @staticmethod
    def schedule_executed(
        batch_id: UUID,
        schedule_key: str,
        amount: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULE_EXECUTED,
            entity_type="schedule",
            entity_id=schedule_key,
            correlation_id=batch_id,
            description=f"Schedule executed: {schedule_key} ({amount})",
            details={"amount": amount},
        )

    @staticmethod
    def schedule_failed(
        batch_id: UUID,
        schedule_key: str,
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="schedule",
            entity_id=schedule_key,
            correlation_id=batch_id,
            description=f"Schedule failed: {schedule_key}",
            error_message=reason,
        )

    @staticmethod
    def run_completed(
        batch_id: UUID,
        timestamp: str,
        executed: int,
        failed: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RUN_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            entity_type="run",
            entity_id=str(batch_id),
            correlation_id=batch_id,
            description=f"Run completed: {executed} executed, {failed} failed",
            details={
                "timestamp": timestamp,
                "executed": executed,
                "failed": failed,
            },
        )

    @staticmethod
    def run_rolled_back(
        batch_id: UUID,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RUN_ROLLED_BACK,
            severity=AuditSeverity.ERROR,
            entity_type="run",
            entity_id=str(batch_id),
            correlation_id=batch_id,
            description="Run rolled back after persistence failure",
            error_message=error_message,
        )

    @staticmethod
    def purge_completed(
        scope: str,
        executions_removed: int,
        logs_removed: int,
        runs_affected: int,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PURGE_COMPLETED,
            entity_type="purge",
            description=(
                f"Purge by {scope}: {executions_removed} executions, "
                f"{logs_removed} logs across {runs_affected} runs"
            ),
            details={
                "scope": scope,
                "executions_removed": executions_removed,
                "logs_removed": logs_removed,
                "runs_affected": runs_affected,
                **(details or {}),
            },
            is_user_action=True,
        )

    @staticmethod
    def purge_rejected(
        reason: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PURGE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="purge",
            description="Purge rejected",
            error_message=reason,
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def busy_rejected(
        requested: str,
        in_flight: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUSY_REJECTED,
            severity=AuditSeverity.WARNING,
            description=f"{requested} rejected while {in_flight} is in flight",
            details={
                "requested": requested,
                "in_flight": in_flight,
            },
        )

    @staticmethod
    def persistence_failed(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERSISTENCE_FAILED,
            severity=AuditSeverity.ERROR,
            description=f"Persistence failed during {operation}",
            error_message=error_message,
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
