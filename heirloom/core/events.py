"""Event bus for real-time deployment updates via SSE."""
import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel


class EventType(str, Enum):
    """Event types published by the ledger and the application."""
    # Deployment events
    DEPLOYMENT_RELEASED = "deployment_released"
    DEPLOYMENT_ROLLED_BACK = "deployment_rolled_back"
    DEPLOYMENTS_PRUNED = "deployments_pruned"

    # System events
    SYSTEM_INFO = "system_info"
    SYSTEM_ERROR = "system_error"


class Event(BaseModel):
    """Event model for broadcasting to clients."""
    id: str
    type: EventType
    timestamp: str
    data: dict[str, Any]

    @classmethod
    def create(cls, event_type: EventType, data: dict[str, Any]) -> "Event":
        """Create a new event with auto-generated ID and timestamp."""
        return cls(
            id=str(uuid4()),
            type=event_type,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            data=data,
        )


class EventBus:
    """
    Event bus for broadcasting deployment updates.

    Events are kept in a bounded history and broadcast to every
    subscribed queue.
    """

    def __init__(self, max_history: int = 100):
        """Initialize the event bus."""
        self._subscribers: list[asyncio.Queue] = []
        self._history: list[Event] = []
        self._max_history = max_history
        self._lock = asyncio.Lock()

    async def subscribe(self) -> asyncio.Queue:
        """
        Subscribe to events.

        Returns a queue that will receive all future events.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_history)
        async with self._lock:
            self._subscribers.append(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        async with self._lock:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    async def publish(self, event_type: EventType, data: dict[str, Any]) -> Event:
        """
        Publish an event to all subscribers.

        Args:
            event_type: The type of event
            data: Event payload data

        Returns:
            The created event
        """
        event = Event.create(event_type, data)

        async with self._lock:
            self._history.append(event)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]

            for queue in self._subscribers:
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    # Slow consumer
                    pass

        return event

    async def get_history(self, limit: int = 50, event_types: list[EventType] | None = None) -> list[Event]:
        """
        Get recent event history.

        Args:
            limit: Maximum number of events to return
            event_types: Optional filter for specific event types

        Returns:
            List of recent events, newest first
        """
        async with self._lock:
            events = self._history.copy()

        if event_types:
            events = [e for e in events if e.type in event_types]

        return list(reversed(events[-limit:]))

    @property
    def subscriber_count(self) -> int:
        """Get the current number of subscribers."""
        return len(self._subscribers)
