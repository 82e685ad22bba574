"""Connection store: persistent storage and CRUD for managed connections."""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from renewal.connection import ApplicationType, Connection

logger = logging.getLogger(__name__)


class ConnectionStore:
    """JSON-file registry of connections.

    Renewal worker threads write result fields back concurrently with API
    requests, so every mutation holds the store lock.
    """

    def __init__(self, storage_path: str = "data/connections.json"):
        self._path = Path(storage_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connections: dict[str, Connection] = {}
        self._lock = threading.RLock()
        self._load()

    # ---- CRUD ----

    def add(self, connection: Connection) -> Connection:
        """Add a connection to the store."""
        with self._lock:
            connection.created_at = datetime.now(timezone.utc)
            connection.updated_at = datetime.now(timezone.utc)
            self._connections[connection.id] = connection
            self._save()
        return connection

    def update(self, connection_id: str, **fields) -> Optional[Connection]:
        """Update fields on an existing connection."""
        with self._lock:
            connection = self._connections.get(connection_id)
            if not connection:
                return None
            for key, value in fields.items():
                if hasattr(connection, key):
                    setattr(connection, key, value)
            connection.updated_at = datetime.now(timezone.utc)
            self._save()
            return connection

    def remove(self, connection_id: str) -> bool:
        """Remove a connection from the store."""
        with self._lock:
            if connection_id in self._connections:
                del self._connections[connection_id]
                self._save()
                return True
            return False

    def get(self, connection_id: str) -> Optional[Connection]:
        """Get a connection by ID."""
        with self._lock:
            return self._connections.get(str(connection_id))

    def list_all(self) -> list[Connection]:
        """Return all connections."""
        with self._lock:
            return list(self._connections.values())

    # ---- Filters ----

    def by_application_type(self, app_type: ApplicationType) -> list[Connection]:
        return [c for c in self.list_all() if c.application_type == app_type]

    def auto_renew_enabled(self) -> list[Connection]:
        return [c for c in self.list_all() if c.is_enabled and c.auto_renew]

    # ---- Persistence ----

    def _save(self) -> None:
        """Save store to disk."""
        data = [c.to_dict() for c in self._connections.values()]
        self._path.write_text(json.dumps(data, indent=2, default=str))

    def _load(self) -> None:
        """Load store from disk."""
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text())
            for item in data:
                connection = Connection.from_dict(item)
                self._connections[connection.id] = connection
        except (json.JSONDecodeError, KeyError, ValueError) as exc:
            logger.error("Failed to load connections from %s: %s", self._path, exc)
