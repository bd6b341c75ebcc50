"""WebSocket routing module.

Clients connect once per session and receive push envelopes for their own
user topic plus the ``system`` broadcast topic.  Inbound messages are limited
to heartbeat replies and explicit topic (un)subscriptions.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any
from typing import Dict
from typing import Optional

from fastapi import APIRouter
from fastapi import WebSocket
from fastapi import WebSocketDisconnect

from offsync.constants import SYSTEM_TOPIC
from offsync.constants import WS_ENDPOINT
from offsync.constants import user_topic
from offsync.dependencies.auth import USER_HEADER
from offsync.dependencies.auth import resolve_ws_user
from offsync.schemas.push import Envelope
from offsync.websocket.manager import topic_manager

router = APIRouter()
logger = logging.getLogger(__name__)


def _error(message: str) -> Dict[str, Any]:
    return Envelope.create(message_type="error", topic=SYSTEM_TOPIC, data={"error": message}).model_dump()


def _allowed_topic(topic: str, user_id: int) -> bool:
    # Sessions only ever see their own user topic and the broadcast topic
    return topic in (SYSTEM_TOPIC, user_topic(user_id))


async def dispatch_message(client_id: str, user_id: int, websocket: WebSocket, message: Dict[str, Any]) -> None:
    message_type = str(message.get("type", "")).lower()

    if message_type == "ping":
        topic_manager.record_pong(client_id)
        await websocket.send_json(Envelope.create(message_type="pong", topic=SYSTEM_TOPIC, data={}).model_dump())
        return

    if message_type == "pong":
        topic_manager.record_pong(client_id)
        return

    if message_type in ("subscribe", "unsubscribe"):
        topics = message.get("topics") or []
        rejected = [t for t in topics if not isinstance(t, str) or not _allowed_topic(t, user_id)]
        if rejected:
            await websocket.send_json(_error(f"Topic(s) not allowed: {', '.join(map(str, rejected))}"))
            return
        for topic in topics:
            if message_type == "subscribe":
                await topic_manager.subscribe_to_topic(client_id, topic)
            else:
                await topic_manager.unsubscribe_from_topic(client_id, topic)
        return

    await websocket.send_json(_error(f"Unknown message type: {message_type or '<missing>'}"))


@router.websocket(WS_ENDPOINT)
async def websocket_endpoint(websocket: WebSocket, user_id: Optional[str] = None):
    """Push channel for one client session."""
    client_id = str(uuid.uuid4())
    resolved_user = resolve_ws_user(user_id, websocket.headers.get(USER_HEADER))

    if resolved_user is None:
        logger.info("WebSocket auth failed – closing connection for client %s", client_id)
        await websocket.close(code=4401, reason="Unauthorized")
        return

    try:
        await websocket.accept()
        await topic_manager.connect(client_id, websocket, resolved_user, auto_system=True)

        while True:
            raw_data = await websocket.receive_text()
            try:
                data = json.loads(raw_data)
            except json.JSONDecodeError as e:
                logger.warning(f"Invalid JSON from client {client_id}: {e}")
                await websocket.send_json(_error("Invalid JSON payload"))
                continue
            if not isinstance(data, dict):
                await websocket.send_json(_error("Message must be a JSON object"))
                continue
            await dispatch_message(client_id, resolved_user, websocket, data)

    except WebSocketDisconnect:
        logger.info(f"WebSocket connection closed for client {client_id}")
    finally:
        await topic_manager.disconnect(client_id)
