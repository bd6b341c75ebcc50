"""Event bus implementation for decoupled event handling."""

import logging
from enum import Enum
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Dict
from typing import Set

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Standardized event types for the system.

    Values double as the push message ``type`` delivered to clients.
    """

    # Sync engine events
    SYNC_COMPLETED = "sync_completed"
    OPERATION_QUEUED = "offline_operation_queued"
    PRESENCE_UPDATED = "presence_update"

    # System events
    SYSTEM_STATUS = "system_status"


class EventBus:
    """Central event bus for publishing and subscribing to events."""

    def __init__(self):
        """Initialize an empty event bus."""
        self._subscribers: Dict[EventType, Set[Callable[[Dict[str, Any]], Awaitable[None]]]] = {}

    async def publish(self, event_type: EventType, data: Dict[str, Any]) -> None:
        """Publish an event to all subscribers.

        A failing subscriber is logged and skipped; the remaining subscribers
        still receive the event.

        Args:
            event_type: The type of event being published
            data: Event payload data
        """
        if event_type not in self._subscribers:
            return

        logger.debug(f"Publishing event {event_type} with data: {data}")

        for callback in list(self._subscribers[event_type]):
            try:
                await callback(data)
            except Exception as e:
                logger.error(f"Error in event handler for {event_type}: {str(e)}")

    def subscribe(self, event_type: EventType, callback: Callable[[Dict[str, Any]], Awaitable[None]]) -> None:
        """Subscribe to an event type.

        Args:
            event_type: The event type to subscribe to
            callback: Async callback function to handle the event
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = set()

        self._subscribers[event_type].add(callback)
        logger.debug(f"Added subscriber for event {event_type}")

    def unsubscribe(self, event_type: EventType, callback: Callable[[Dict[str, Any]], Awaitable[None]]) -> None:
        """Unsubscribe from an event type.

        Args:
            event_type: The event type to unsubscribe from
            callback: The callback function to remove
        """
        if event_type in self._subscribers:
            self._subscribers[event_type].discard(callback)
            logger.debug(f"Removed subscriber for event {event_type}")

            # Clean up empty subscriber sets
            if not self._subscribers[event_type]:
                del self._subscribers[event_type]

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers.get(event_type, ()))


# Global event bus instance
event_bus = EventBus()
