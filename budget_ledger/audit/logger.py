"""
Audit Logger

Every run, every schedule execution and every purge is logged. This gives:
1. Traceability of what each run did, keyed by its batch id
2. A history that survives purging of the execution records
3. Debugging detail when a schedule fails to execute

The audit logger:
- Is async so it can persist through the async storage layer
- Never breaks a ledger operation if logging fails
- Uses the run's batch id as the correlation id
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from budget_ledger.config import LoggingSettings, get_settings
from budget_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from budget_ledger.services.storage import AuditStorageInterface


def configure_logging(settings: Optional[LoggingSettings] = None) -> None:
    """Configure structlog (and the stdlib root level) from LOG_* settings."""
    settings = settings or get_settings().logging
    logging.basicConfig(format="%(message)s", level=settings.level)
    logging.getLogger().setLevel(settings.level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (JSON-lines file), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("budget_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_schedule_added(self, schedule_key: str, description: str) -> None:
        await self.log(AuditEventBuilder.schedule_added(schedule_key, description))

    async def log_schedule_rejected(self, issues: list[dict]) -> None:
        await self.log(AuditEventBuilder.schedule_rejected(issues))

    async def log_schedule_removed(self, schedule_key: str) -> None:
        await self.log(AuditEventBuilder.schedule_removed(schedule_key))

    async def log_run_started(
        self,
        batch_id: UUID,
        as_of: str,
        automatic: bool,
        due_count: int,
    ) -> None:
        """Log the start of a run, once the due schedules are known."""
        event = AuditEventBuilder.run_started(
            batch_id=batch_id,
            as_of=as_of,
            automatic=automatic,
            due_count=due_count,
        )
        await self.log(event)

    async def log_schedule_executed(
        self,
        batch_id: UUID,
        schedule_key: str,
        amount: str,
    ) -> None:
        await self.log(AuditEventBuilder.schedule_executed(batch_id, schedule_key, amount))

    async def log_schedule_failed(
        self,
        batch_id: UUID,
        schedule_key: str,
        reason: str,
    ) -> None:
        await self.log(AuditEventBuilder.schedule_failed(batch_id, schedule_key, reason))

    async def log_run_completed(
        self,
        batch_id: UUID,
        timestamp: str,
        executed: int,
        failed: int,
    ) -> None:
        """Log a run that was persisted (possibly with failed schedules)."""
        event = AuditEventBuilder.run_completed(
            batch_id=batch_id,
            timestamp=timestamp,
            executed=executed,
            failed=failed,
        )
        await self.log(event)

    async def log_run_rolled_back(self, batch_id: UUID, error_message: str) -> None:
        await self.log(AuditEventBuilder.run_rolled_back(batch_id, error_message))

    async def log_purge_completed(
        self,
        scope: str,
        executions_removed: int,
        logs_removed: int,
        runs_affected: int,
        details: Optional[dict] = None,
    ) -> None:
        event = AuditEventBuilder.purge_completed(
            scope=scope,
            executions_removed=executions_removed,
            logs_removed=logs_removed,
            runs_affected=runs_affected,
            details=details,
        )
        await self.log(event)

    async def log_purge_rejected(self, reason: str, details: Optional[dict] = None) -> None:
        await self.log(AuditEventBuilder.purge_rejected(reason, details))

    async def log_busy_rejected(self, requested: str, in_flight: str) -> None:
        await self.log(AuditEventBuilder.busy_rejected(requested, in_flight))

    async def log_persistence_failed(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.persistence_failed(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    The engine uses one per run as the run's batch id, so every event,
    processed log and audit record of the run carries it.
    """
    return uuid4()
