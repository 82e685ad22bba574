"""
Certificate Renewal Engine.

Connection model and store, renewal operations, the active operation
registry and the progress broadcaster. The orchestrator lives in
``renewal.orchestrator``.
"""

from renewal.broadcaster import ProgressBroadcaster
from renewal.connection import Connection, validate_connection
from renewal.connection_store import ConnectionStore
from renewal.operation import OperationStatus, RenewalOperation
from renewal.registry import ActiveOperationRegistry

__all__ = [
    "ActiveOperationRegistry", "Connection", "ConnectionStore", "OperationStatus",
    "ProgressBroadcaster", "RenewalOperation", "validate_connection",
]
