"""Event publishing helpers.

Publishing never raises: a push that cannot be delivered must not undo or
interrupt durable sync work, so failures are logged and dropped here.
"""

import asyncio
import logging
from typing import Any
from typing import Dict

from offsync.events import EventType
from offsync.events import event_bus

logger = logging.getLogger(__name__)

# Track fire-and-forget tasks so shutdown can drain them
_active_tasks: set = set()


async def publish_event(event_type: EventType, data: Dict[str, Any]) -> None:
    """Publish *data* to every subscriber of *event_type*.

    Usage:
        await publish_event(EventType.SYNC_COMPLETED, {"user_id": 7, ...})
    """
    try:
        await event_bus.publish(event_type, data)
    except Exception as e:
        logger.error(f"Failed to publish event {event_type}: {e}")


def publish_event_fire_and_forget(event_type: EventType, data: Dict[str, Any]) -> None:
    """Schedule publication without awaiting it.

    The task is tracked until it finishes.  Requires a running event loop.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.error(f"Cannot publish fire-and-forget event {event_type} - no running event loop")
        return

    task = loop.create_task(publish_event(event_type, data))
    _active_tasks.add(task)
    task.add_done_callback(_active_tasks.discard)


async def shutdown_event_publisher(timeout: float = 10.0) -> None:
    """Wait for in-flight fire-and-forget publications, cancelling stragglers."""
    if not _active_tasks:
        return

    logger.info(f"Waiting for {len(_active_tasks)} active event publishing tasks to complete")
    pending_tasks = list(_active_tasks)

    try:
        await asyncio.wait_for(asyncio.gather(*pending_tasks, return_exceptions=True), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Timeout waiting for {len(_active_tasks)} event publishing tasks, cancelling them")
        for task in list(_active_tasks):
            if not task.done():
                task.cancel()


def get_active_task_count() -> int:
    return len(_active_tasks)


__all__ = [
    "publish_event",
    "publish_event_fire_and_forget",
    "shutdown_event_publisher",
    "get_active_task_count",
]
