"""Active operation registry: in-flight renewals, cancellation tokens, retention."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from renewal.errors import ConflictError
from renewal.operation import RenewalOperation

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    operation: RenewalOperation
    token: threading.Event = field(default_factory=threading.Event)
    released_at: Optional[datetime] = None


class ActiveOperationRegistry:
    """Map operation id → cancellation token and live RenewalOperation.

    The index lock only guards dictionary membership. Operation state is
    protected by each operation's own lock, so unrelated renewals never wait
    on each other.
    """

    def __init__(self, retention_seconds: int = 300):
        self.retention = timedelta(seconds=retention_seconds)
        self._entries: dict[str, _Entry] = {}
        self._by_connection: dict[str, str] = {}
        self._index_lock = threading.Lock()

    def claim(self, operation: RenewalOperation) -> threading.Event:
        """Register ``operation``; reject when its connection already has an active one."""
        with self._index_lock:
            current_id = self._by_connection.get(operation.connection_id)
            if current_id:
                current = self._entries.get(current_id)
                if current and not current.operation.is_terminal:
                    raise ConflictError(
                        f"A renewal is already in progress for connection {operation.connection_id}",
                        details={"operation_id": current_id},
                    )
            entry = _Entry(operation=operation)
            self._entries[operation.id] = entry
            self._by_connection[operation.connection_id] = operation.id
        logger.info("Registered operation %s for connection %s",
                    operation.id, operation.connection_id)
        return entry.token

    def release(self, operation_id: str) -> None:
        """Mark the operation finished; it stays visible until retention expires."""
        with self._index_lock:
            entry = self._entries.get(operation_id)
            if entry is None:
                return
            entry.released_at = datetime.now(timezone.utc)
            if self._by_connection.get(entry.operation.connection_id) == operation_id:
                del self._by_connection[entry.operation.connection_id]

    def cancel(self, operation_id: str) -> bool:
        """Set the cancellation token. False when unknown or already terminal."""
        with self._index_lock:
            entry = self._entries.get(operation_id)
        if entry is None or entry.operation.is_terminal:
            return False
        entry.token.set()
        logger.info("Cancellation requested for operation %s", operation_id)
        return True

    def get(self, operation_id: str) -> Optional[RenewalOperation]:
        with self._index_lock:
            entry = self._entries.get(operation_id)
        return entry.operation if entry else None

    def token(self, operation_id: str) -> Optional[threading.Event]:
        with self._index_lock:
            entry = self._entries.get(operation_id)
        return entry.token if entry else None

    def active_for_connection(self, connection_id: str) -> Optional[RenewalOperation]:
        with self._index_lock:
            op_id = self._by_connection.get(str(connection_id))
            entry = self._entries.get(op_id) if op_id else None
        if entry and not entry.operation.is_terminal:
            return entry.operation
        return None

    def for_connection(self, connection_id: str) -> list[RenewalOperation]:
        """Active plus retained operations of one connection, newest first."""
        ops = [op for op in self.list_all() if op.connection_id == str(connection_id)]
        return sorted(ops, key=lambda op: op.started_at, reverse=True)

    def list_active(self) -> list[RenewalOperation]:
        return [op for op in self.list_all() if not op.is_terminal]

    def list_all(self) -> list[RenewalOperation]:
        with self._index_lock:
            return [e.operation for e in self._entries.values()]

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop terminal records older than the retention window."""
        now = now or datetime.now(timezone.utc)
        removed = 0
        with self._index_lock:
            for op_id, entry in list(self._entries.items()):
                if entry.released_at and now - entry.released_at >= self.retention:
                    del self._entries[op_id]
                    removed += 1
        if removed:
            logger.debug("Purged %d expired operation record(s)", removed)
        return removed
