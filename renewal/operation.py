"""Renewal operation record: status, progress, log lines and manual DNS details."""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class OperationStatus(str, Enum):
    """States of the renewal state machine, in forward order."""

    PENDING = "pending"
    GENERATING_CSR = "generating_csr"
    CREATING_ACCOUNT = "creating_account"
    REQUESTING_CERTIFICATE = "requesting_certificate"
    CREATING_DNS_CHALLENGE = "creating_dns_challenge"
    WAITING_DNS_PROPAGATION = "waiting_dns_propagation"
    WAITING_MANUAL_DNS = "waiting_manual_dns"
    COMPLETING_VALIDATION = "completing_validation"
    DOWNLOADING_CERTIFICATE = "downloading_certificate"
    UPLOADING_CERTIFICATE = "uploading_certificate"
    RESTARTING_SERVICE = "restarting_service"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationStatus.COMPLETED, OperationStatus.FAILED)


# Progress target for each state. FAILED keeps whatever progress was reached.
STATUS_PROGRESS = {
    OperationStatus.PENDING: 0,
    OperationStatus.GENERATING_CSR: 10,
    OperationStatus.CREATING_ACCOUNT: 15,
    OperationStatus.REQUESTING_CERTIFICATE: 20,
    OperationStatus.CREATING_DNS_CHALLENGE: 30,
    OperationStatus.WAITING_DNS_PROPAGATION: 50,
    OperationStatus.WAITING_MANUAL_DNS: 50,
    OperationStatus.COMPLETING_VALIDATION: 70,
    OperationStatus.DOWNLOADING_CERTIFICATE: 80,
    OperationStatus.UPLOADING_CERTIFICATE: 90,
    OperationStatus.RESTARTING_SERVICE: 95,
    OperationStatus.COMPLETED: 100,
}

CREATED_BY_SYSTEM = "system"


@dataclass
class ManualDNSEntry:
    """TXT record an operator has to publish by hand."""

    record_name: str
    record_value: str
    instructions: str = ""

    def to_dict(self) -> dict:
        return {
            "recordName": self.record_name,
            "recordValue": self.record_value,
            "instructions": self.instructions,
        }


@dataclass
class RenewalOperation:
    """One end-to-end run of the renewal state machine for a connection.

    Mutations go through ``transition``/``add_log``/``fail`` so the per-entry
    lock keeps admin reads consistent with the worker thread's writes.
    """

    connection_id: str
    created_by: str = "user"
    environment: str = "staging"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: OperationStatus = OperationStatus.PENDING
    progress: int = 0
    message: str = "Renewal queued"
    logs: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    manual_dns_entry: Optional[ManualDNSEntry] = None
    cancelled: bool = False
    connection_name: str = ""
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def add_log(self, line: str) -> str:
        stamped = f"[{datetime.now(timezone.utc).isoformat(timespec='seconds')}] {line}"
        with self._lock:
            self.logs.append(stamped)
        return stamped

    def transition(
        self,
        status: OperationStatus,
        message: str,
        manual_dns_entry: Optional[ManualDNSEntry] = None,
    ) -> None:
        """Move to ``status``; progress only ever moves forward."""
        with self._lock:
            if self.status.is_terminal:
                raise RuntimeError(f"Operation {self.id} already {self.status.value}")
            self.status = status
            self.progress = max(self.progress, STATUS_PROGRESS.get(status, self.progress))
            self.message = message
            # Entry only exists while waiting for the operator
            self.manual_dns_entry = (
                manual_dns_entry if status == OperationStatus.WAITING_MANUAL_DNS else None
            )
            if status.is_terminal:
                self.ended_at = datetime.now(timezone.utc)

    def fail(self, error: BaseException, cancelled: bool = False) -> None:
        with self._lock:
            if self.status.is_terminal:
                return
            self.cancelled = cancelled
            self.error = str(error) or error.__class__.__name__
            self.error_type = error.__class__.__name__
            self.status = OperationStatus.FAILED
            self.message = "Renewal cancelled" if cancelled else f"Renewal failed: {self.error}"
            self.manual_dns_entry = None
            self.ended_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        """Serialize operation to the shape used by the API and event stream."""
        with self._lock:
            return {
                "operationId": self.id,
                "connectionId": self.connection_id,
                "connectionName": self.connection_name,
                "status": self.status.value,
                "progress": self.progress,
                "message": self.message,
                "logs": list(self.logs),
                "startedAt": self.started_at.isoformat(),
                "endedAt": self.ended_at.isoformat() if self.ended_at else None,
                "error": self.error,
                "errorType": self.error_type,
                "manualDNSEntry": self.manual_dns_entry.to_dict() if self.manual_dns_entry else None,
                "createdBy": self.created_by,
                "cancelled": self.cancelled,
                "environment": self.environment,
            }
