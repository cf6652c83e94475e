"""
Event Streaming - In-memory pub/sub for resource watch events.

Watch sources (the in-memory store or the Kubernetes watch) publish here;
the controller and the SSE endpoint subscribe.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of watch events. Values match the Kubernetes watch API."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class ResourceEvent:
    """Event emitted when a record in the store changes."""

    event_type: EventType
    kind: str
    namespace: str
    name: str
    resource_data: Dict[str, Any]
    owner_references: List[Dict[str, Any]] = field(default_factory=list)
    timestamp: str = ""

    def to_sse(self) -> str:
        """Format the event as an SSE message."""
        data = {
            "event_type": self.event_type.value,
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
            "owner_references": self.owner_references,
            "resource_data": self.resource_data,
            "timestamp": self.timestamp,
        }
        return f"event: {self.event_type.value}\ndata: {json.dumps(data)}\n\n"

    @classmethod
    def from_record(
        cls,
        event_type: EventType,
        record: Dict[str, Any],
    ) -> "ResourceEvent":
        """
        Create an event from a manifest-shaped record.

        Args:
            event_type: The type of event.
            record: The record as stored, including ``kind`` and ``metadata``.

        Returns:
            A new ResourceEvent instance.
        """
        metadata = record.get("metadata") or {}
        return cls(
            event_type=event_type,
            kind=record.get("kind", ""),
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
            resource_data=record,
            owner_references=list(metadata.get("ownerReferences") or []),
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )


class EventSubscription:
    """
    Async iterator over one subscriber's queue.

    A ``None`` sentinel on the queue ends iteration.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        filter_fn: Optional[Callable[[ResourceEvent], bool]] = None,
    ):
        self._queue = queue
        self._filter_fn = filter_fn

    def __aiter__(self) -> AsyncIterator[ResourceEvent]:
        return self

    async def __anext__(self) -> ResourceEvent:
        while True:
            event = await self._queue.get()

            if event is None:
                raise StopAsyncIteration

            if self._filter_fn is None or self._filter_fn(event):
                return event


class EventBus:
    """
    In-memory pub/sub event bus.

    Each subscriber gets its own bounded ``asyncio.Queue``. Publishing never
    blocks: events for a full subscriber are dropped and logged.
    """

    def __init__(self, queue_size: int = 1024):
        self._queue_size = queue_size
        self._subscribers: Dict[str, asyncio.Queue] = {}

    def publish(self, event: ResourceEvent) -> None:
        """Publish an event to all current subscribers."""
        for subscriber_id, queue in list(self._subscribers.items()):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Dropped {event.event_type.value} event for "
                    f"{event.kind} {event.namespace}/{event.name}: "
                    f"subscriber {subscriber_id} queue full"
                )

    def subscribe(
        self,
        filter_fn: Optional[Callable[[ResourceEvent], bool]] = None,
    ) -> Tuple[str, EventSubscription]:
        """
        Subscribe to events.

        Args:
            filter_fn: Optional predicate; only matching events are yielded.

        Returns:
            A tuple of ``(subscriber_id, EventSubscription)``.
        """
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[subscriber_id] = queue

        logger.debug(f"New event subscriber: {subscriber_id}")
        return subscriber_id, EventSubscription(queue, filter_fn)

    def unsubscribe(self, subscriber_id: str) -> None:
        """Remove a subscriber and end its iteration."""
        queue = self._subscribers.pop(subscriber_id, None)
        if queue is None:
            return

        try:
            queue.put_nowait(None)
        except asyncio.QueueFull:
            # Make room for the sentinel
            queue.get_nowait()
            queue.put_nowait(None)
        logger.debug(f"Unsubscribed: {subscriber_id}")

    def close(self) -> None:
        """Unsubscribe everyone."""
        for subscriber_id in list(self._subscribers):
            self.unsubscribe(subscriber_id)

    def subscriber_count(self) -> int:
        """Return the current number of subscribers."""
        return len(self._subscribers)
