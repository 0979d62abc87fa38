"""
JSON File Storage Implementation

The ledger state lives in one local JSON document, and audit events in an
append-only JSON-lines file next to it.

TRADEOFFS:
- The whole document is rewritten on every save (fine for personal data)
- No multi-process locking (the ledger is single-writer by design)
- Writes go to a temporary file that atomically replaces the old one, so a
  crash mid-write leaves the previous state intact

The implementation follows the abstract interface, so we can swap to
SQLite later without changing ledger logic.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from budget_ledger.config import get_settings
from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import LedgerState
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerStorageInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)


class JsonFileClient:
    """
    Low-level file access wrapper.

    Handles directory creation, atomic replacement and retry logic for
    writes.
    """

    def __init__(
        self,
        path: Path,
        retry_attempts: Optional[int] = None,
    ):
        self._path = Path(path)
        if retry_attempts is None:
            retry_attempts = get_settings().ledger.storage_retry_attempts
        self._retry_attempts = retry_attempts

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_directory(self) -> None:
        directory = self._path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConnectionError(f"Cannot create storage directory {directory}: {e}")

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
            retry=retry_if_exception_type(OSError),
            reraise=True,
        )

    def read_text(self) -> Optional[str]:
        """Read the whole file, or None if it does not exist yet."""
        try:
            return self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {self._path}: {e}")
        except UnicodeDecodeError as e:
            raise StorageError(f"{self._path} is not valid UTF-8: {e}") from e

    def _replace_once(self, payload: str) -> None:
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent,
            prefix=f".{self._path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def replace_text(self, payload: str) -> None:
        """Atomically replace the file contents."""
        self._ensure_directory()
        try:
            for attempt in self._retrying():
                with attempt:
                    self._replace_once(payload)
        except OSError as e:
            raise StorageError(f"Failed to write {self._path}: {e}")

    def append_line(self, line: str) -> None:
        """Append one line (used by the JSON-lines audit log)."""
        self._ensure_directory()
        try:
            for attempt in self._retrying():
                with attempt:
                    with self._path.open("a", encoding="utf-8") as handle:
                        handle.write(line.rstrip("\n") + "\n")
        except OSError as e:
            raise StorageError(f"Failed to append to {self._path}: {e}")


class JsonFileLedgerStorage(LedgerStorageInterface):
    """
    JSON file implementation of ledger storage.

    The full LedgerState is serialised with pydantic; every field of every
    schedule, event and log entry round-trips.
    """

    def __init__(self, client: Optional[JsonFileClient] = None):
        self._client = client or JsonFileClient(get_settings().ledger.data_path)

    @property
    def path(self) -> Path:
        return self._client.path

    def _decode(self, raw: str) -> LedgerState:
        try:
            return LedgerState.model_validate_json(raw)
        except ValidationError as e:
            raise StorageError(f"Stored ledger state is malformed: {e}")

    async def load(self) -> LedgerState:
        """Load the ledger document (empty state if it does not exist)."""
        raw = await asyncio.to_thread(self._client.read_text)
        if raw is None or not raw.strip():
            return LedgerState()
        return self._decode(raw)

    async def save(self, state: LedgerState) -> None:
        """Atomically replace the ledger document."""
        payload = state.model_dump_json(indent=2)
        await asyncio.to_thread(self._client.replace_text, payload)
        logger.debug(
            "ledger_state_saved",
            path=str(self._client.path),
            transactions=len(state.transactions),
            processed_logs=len(state.processed_logs),
        )


class JsonLinesAuditStorage(AuditStorageInterface):
    """
    JSON-lines implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[JsonFileClient] = None):
        self._client = client or JsonFileClient(get_settings().ledger.audit_log_path)

    def _read_events(self) -> list[AuditEvent]:
        raw = self._client.read_text()
        if not raw:
            return []
        events = []
        for line_number, line in enumerate(raw.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                events.append(AuditEvent.model_validate_json(line))
            except ValidationError:
                logger.warning(
                    "audit_line_skipped",
                    path=str(self._client.path),
                    line=line_number,
                )
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            await asyncio.to_thread(self._client.append_line, event.to_json_line())
            return True
        except StorageError as e:
            # Audit logging must not break the ledger operation being audited
            logger.warning("audit_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID, oldest first."""
        events = await asyncio.to_thread(self._read_events)
        related = [e for e in events if e.correlation_id == correlation_id]
        related.sort(key=lambda e: e.timestamp)
        return related

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events, newest first."""
        events = await asyncio.to_thread(self._read_events)
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
