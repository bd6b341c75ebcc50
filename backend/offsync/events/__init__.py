"""In-process event bus used to decouple the sync engine from push fan-out."""

from offsync.events.event_bus import EventBus
from offsync.events.event_bus import EventType
from offsync.events.event_bus import event_bus

__all__ = ["EventBus", "EventType", "event_bus"]
