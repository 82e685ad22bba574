"""Progress broadcaster: fan out operation transitions to subscribers.

Topics are ``connection:<id>`` for one connection's viewers and ``admin`` for
the system-wide feed. Every subscriber owns a bounded queue; publishing never
blocks and a full queue simply drops the event for that subscriber.
"""

import itertools
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from renewal.operation import OperationStatus, RenewalOperation

logger = logging.getLogger(__name__)

ADMIN_TOPIC = "admin"

EVENT_OPERATION_UPDATE = "operation:update"
EVENT_SNAPSHOT = "connection:operations"
ADMIN_STARTED = "admin:renewal:started"
ADMIN_UPDATED = "admin:renewal:updated"
ADMIN_COMPLETED = "admin:renewal:completed"
ADMIN_CANCELLED = "admin:renewal:cancelled"


def connection_topic(connection_id: str) -> str:
    return f"connection:{connection_id}"


@dataclass
class Event:
    name: str
    topic: str
    data: dict


@dataclass
class Subscription:
    """Handle returned by ``subscribe``; read events with ``get``."""

    topics: frozenset
    maxsize: int = 100
    id: int = 0
    dropped: int = 0
    _queue: queue.Queue = field(init=False, repr=False)

    def __post_init__(self):
        self._queue = queue.Queue(maxsize=self.maxsize)

    def offer(self, event: Event) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next event, or None when ``timeout`` elapses."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None


class ProgressBroadcaster:
    """Thread-safe publish/subscribe for renewal progress."""

    def __init__(self, snapshot_source: Optional[Callable[[], Iterable[RenewalOperation]]] = None):
        self._subscribers: dict[int, Subscription] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._snapshot_source = snapshot_source

    def set_snapshot_source(self, source: Callable[[], Iterable[RenewalOperation]]) -> None:
        self._snapshot_source = source

    # ── Subscriptions ────────────────────────────────────────────

    def subscribe(self, topics: Iterable[str], maxsize: int = 100) -> Subscription:
        sub = Subscription(topics=frozenset(topics), maxsize=maxsize, id=next(self._ids))
        with self._lock:
            self._subscribers[sub.id] = sub
        logger.debug("Subscriber %d joined %s", sub.id, sorted(sub.topics))
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.pop(subscription.id, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    # ── Publishing ───────────────────────────────────────────────

    def publish(self, topic: str, name: str, data: dict) -> int:
        """Deliver to every subscriber of ``topic``. Returns delivered count."""
        event = Event(name=name, topic=topic, data=data)
        with self._lock:
            targets = [s for s in self._subscribers.values() if topic in s.topics]
        delivered = 0
        for sub in targets:
            if sub.offer(event):
                delivered += 1
            else:
                logger.debug("Dropped %s for slow subscriber %d", name, sub.id)
        return delivered

    def publish_operation(self, operation: RenewalOperation, admin_event: str = ADMIN_UPDATED) -> None:
        """Publish one transition to the connection topic and the admin feed.

        Never raises: a broken subscriber must not fail the renewal.
        """
        try:
            payload = operation.to_dict()
            self.publish(connection_topic(operation.connection_id), EVENT_OPERATION_UPDATE, payload)
            self.publish(ADMIN_TOPIC, admin_event, payload)
        except Exception:
            logger.exception("Failed to broadcast operation %s", operation.id)

    @staticmethod
    def admin_event_for(operation: RenewalOperation) -> str:
        if operation.status == OperationStatus.PENDING:
            return ADMIN_STARTED
        if operation.status.is_terminal:
            return ADMIN_CANCELLED if operation.cancelled else ADMIN_COMPLETED
        return ADMIN_UPDATED

    # ── Reconnect support ────────────────────────────────────────

    def snapshot(self, connection_id: Optional[str] = None) -> list[dict]:
        """Full current state of active operations, optionally for one connection."""
        if self._snapshot_source is None:
            return []
        ops = [op for op in self._snapshot_source() if not op.is_terminal]
        if connection_id is not None:
            ops = [op for op in ops if op.connection_id == str(connection_id)]
        return [op.to_dict() for op in ops]
