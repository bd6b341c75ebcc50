"""Topic-based WebSocket connection manager.

Every live session is subscribed to its user's personal topic (``user:{id}``)
and optionally to the broadcast-only ``system`` topic.  EventBus events from
the push notifier are wrapped in an :class:`Envelope` and relayed to the
subscribers of the matching topic.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any
from typing import Dict
from typing import Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from offsync.config import get_settings
from offsync.constants import SYSTEM_TOPIC
from offsync.constants import user_topic
from offsync.events import EventType
from offsync.events import event_bus
from offsync.schemas.push import Envelope
from offsync.schemas.push import is_envelope

logger = logging.getLogger(__name__)


class TopicConnectionManager:
    """Manages WebSocket connections with topic-based subscriptions."""

    SEND_TIMEOUT = 1.0  # seconds per send
    QUEUE_SIZE = 100  # per-connection back-pressure limit
    HEARTBEAT_INTERVAL = 30.0
    HEARTBEAT_TIMEOUT = 60.0

    def __init__(self):
        # All maps are guarded by `_lock`
        self.active_connections: Dict[str, WebSocket] = {}
        self.client_queues: Dict[str, asyncio.Queue] = {}
        self.writer_tasks: Dict[str, asyncio.Task] = {}
        self.topic_subscriptions: Dict[str, Set[str]] = {}
        self.client_topics: Dict[str, Set[str]] = {}
        self.client_users: Dict[str, int | None] = {}

        # Last pong per client, read by the heartbeat watchdog
        self._last_pong: Dict[str, float] = {}

        # Created lazily so tests running several event loops get a fresh lock
        self._lock: asyncio.Lock | None = None
        self._lock_loop_id: int | None = None

        self._cleanup_task: asyncio.Task | None = None

        self._setup_event_handlers()

    def _get_lock(self) -> asyncio.Lock:
        """Get lock for current event loop, creating new one if needed."""
        try:
            current_loop_id = id(asyncio.get_running_loop())
            if self._lock is None or self._lock_loop_id != current_loop_id:
                self._lock = asyncio.Lock()
                self._lock_loop_id = current_loop_id
            return self._lock
        except RuntimeError:
            if self._lock is None:
                self._lock = asyncio.Lock()
            return self._lock

    def _setup_event_handlers(self) -> None:
        event_bus.subscribe(EventType.SYNC_COMPLETED, self._handle_user_event)
        event_bus.subscribe(EventType.OPERATION_QUEUED, self._handle_user_event)
        event_bus.subscribe(EventType.PRESENCE_UPDATED, self._handle_broadcast_event)

    async def connect(
        self,
        client_id: str,
        websocket: WebSocket,
        user_id: int | None = None,
        *,
        auto_system: bool = False,
    ) -> None:
        """Register a new client connection.

        The socket is subscribed to its user's personal topic; *auto_system*
        also attaches it to the ``system`` broadcast topic.
        """
        async with self._get_lock():
            self.active_connections[client_id] = websocket
            self.client_topics[client_id] = set()
            self.client_users[client_id] = user_id
            self._last_pong[client_id] = time.time()

            # Unbounded under TESTING: the TestClient producer can outrun the
            # writer coroutine and trip QueueFull spuriously.
            queue_size = 0 if get_settings().testing else self.QUEUE_SIZE
            self.client_queues[client_id] = asyncio.Queue(maxsize=queue_size)
            self.writer_tasks[client_id] = asyncio.create_task(
                self._writer(client_id, websocket, self.client_queues[client_id])
            )

        if user_id is not None:
            await self.subscribe_to_topic(client_id, user_topic(user_id))
        if auto_system:
            await self.subscribe_to_topic(client_id, SYSTEM_TOPIC)

        logger.info("Client %s connected (user=%s)", client_id, user_id)

        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def disconnect(self, client_id: str) -> None:
        async with self._get_lock():
            if client_id in self.active_connections:
                self.client_users.pop(client_id, None)
                del self.active_connections[client_id]

                writer_task = self.writer_tasks.pop(client_id, None)
                if writer_task is not None and not writer_task.done():
                    writer_task.cancel()

                self.client_queues.pop(client_id, None)

                for topic in self.client_topics.pop(client_id, set()):
                    subscribers = self.topic_subscriptions.get(topic)
                    if subscribers is not None:
                        subscribers.discard(client_id)
                        if not subscribers:
                            del self.topic_subscriptions[topic]

                logger.info("Client %s disconnected", client_id)

            self._last_pong.pop(client_id, None)

    def record_pong(self, client_id: str) -> None:
        self._last_pong[client_id] = time.time()

    async def subscribe_to_topic(self, client_id: str, topic: str) -> None:
        async with self._get_lock():
            self.topic_subscriptions.setdefault(topic, set()).add(client_id)
            self.client_topics.setdefault(client_id, set()).add(topic)
        logger.info("Client %s subscribed to topic %s", client_id, topic)

    async def unsubscribe_from_topic(self, client_id: str, topic: str) -> None:
        async with self._get_lock():
            if topic in self.topic_subscriptions:
                self.topic_subscriptions[topic].discard(client_id)
                if not self.topic_subscriptions[topic]:
                    del self.topic_subscriptions[topic]
            if client_id in self.client_topics:
                self.client_topics[client_id].discard(topic)
        logger.info("Client %s unsubscribed from topic %s", client_id, topic)

    def sessions_for_user(self, user_id: int) -> list[str]:
        return sorted(cid for cid, uid in self.client_users.items() if uid == user_id)

    # ------------------------------------------------------------------
    # Queue-based writer for back-pressure safety
    # ------------------------------------------------------------------

    async def _writer(self, client_id: str, websocket: WebSocket, queue: asyncio.Queue) -> None:
        try:
            while True:
                payload = await queue.get()
                try:
                    await asyncio.wait_for(websocket.send_json(payload), timeout=self.SEND_TIMEOUT)
                except asyncio.TimeoutError:
                    logger.warning("Send timeout for client %s, disconnecting", client_id)
                    await self.disconnect(client_id)
                    return
                except Exception as e:
                    logger.warning("Send error for client %s: %s, disconnecting", client_id, e)
                    await self.disconnect(client_id)
                    return
                finally:
                    queue.task_done()
        except asyncio.CancelledError:
            logger.debug("Writer task for client %s cancelled", client_id)

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    async def _cleanup_loop(self) -> None:
        """Ping clients periodically and drop sockets that stopped answering."""
        try:
            while True:
                await asyncio.sleep(self.HEARTBEAT_INTERVAL)

                ping_message = Envelope.create(message_type="ping", topic=SYSTEM_TOPIC, data={}).model_dump()
                async with self._get_lock():
                    client_queues = dict(self.client_queues)

                for client_id, queue in client_queues.items():
                    try:
                        queue.put_nowait(ping_message)
                    except asyncio.QueueFull:
                        logger.warning("Ping queue full for client %s, disconnecting", client_id)
                        asyncio.create_task(self.disconnect(client_id))

                now = time.time()
                async with self._get_lock():
                    stale = [cid for cid, ts in self._last_pong.items() if now - ts > self.HEARTBEAT_TIMEOUT]

                for cid in stale:
                    logger.warning("Client %s timed out (no pong), closing", cid)
                    ws = self.active_connections.get(cid)
                    if ws is not None:
                        try:
                            await ws.close(code=4408, reason="Heartbeat timeout")
                        except Exception as e:  # noqa: BLE001
                            logger.debug("Close failed for client %s: %s", cid, e)
                    await self.disconnect(cid)

        except asyncio.CancelledError:
            logger.info("TopicConnectionManager cleanup task cancelled")

    async def shutdown(self) -> None:
        """Cancel the heartbeat and writer tasks and close every socket."""
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass

        async with self._get_lock():
            for task in self.writer_tasks.values():
                if not task.done():
                    task.cancel()
            for client_id, ws in self.active_connections.items():
                try:
                    await ws.close()
                except Exception as e:  # noqa: BLE001
                    logger.debug("Close failed for client %s: %s", client_id, e)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def broadcast_to_topic(self, topic: str, message: Dict[str, Any]) -> None:
        """Queue *message* (an envelope dict) for every subscriber of *topic*."""
        async with self._get_lock():
            if topic not in self.topic_subscriptions:
                logger.debug("broadcast_to_topic: no subscribers for topic %s", topic)
                return
            client_queues = {client_id: self.client_queues.get(client_id) for client_id in self.topic_subscriptions[topic]}

        if not is_envelope(message):
            logger.error("broadcast_to_topic: Invalid message format - envelope required")
            raise ValueError("Message must be in envelope format")

        for client_id, queue in client_queues.items():
            if queue is None:
                continue
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Queue full for client %s, disconnecting due to back-pressure", client_id)
                asyncio.create_task(self.disconnect(client_id))

        if get_settings().testing:
            # Let assertions right after a broadcast observe the sends
            await asyncio.gather(
                *(asyncio.wait_for(q.join(), timeout=1.0) for q in client_queues.values() if q is not None),
                return_exceptions=True,
            )

    async def _handle_user_event(self, data: Dict[str, Any]) -> None:
        """Relay a per-user notifier event to the user's personal topic."""
        user_id = data.get("user_id")
        if user_id is None:
            return

        topic = user_topic(user_id)
        envelope = Envelope.create(
            message_type=data["event_type"],
            topic=topic,
            data=jsonable_encoder(data.get("data") or {}),
            user_id=user_id,
        )
        await self.broadcast_to_topic(topic, envelope.model_dump())

    async def _handle_broadcast_event(self, data: Dict[str, Any]) -> None:
        """Relay a broadcast notifier event to the ``system`` topic."""
        envelope = Envelope.create(
            message_type=data["event_type"],
            topic=SYSTEM_TOPIC,
            data=jsonable_encoder(data.get("data") or {}),
        )
        await self.broadcast_to_topic(SYSTEM_TOPIC, envelope.model_dump())


topic_manager = TopicConnectionManager()
