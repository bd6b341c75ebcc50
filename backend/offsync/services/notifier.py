"""Push Notifier.

Turns engine outcomes into push messages.  Per-user messages go out on the
event bus (the WebSocket manager relays them to every live session of the
user) and are also kept in the key-value store for a retention window so a
reconnecting client can catch up.  Presence changes are broadcast.

Delivery is best-effort: nothing here raises into the caller.
"""

import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from offsync.events import EventType
from offsync.events.publisher import publish_event
from offsync.schemas.schemas import SyncResult
from offsync.services.kv_store import KeyValueStore
from offsync.utils.time import utc_now

logger = logging.getLogger(__name__)


def _message_key(user_id: int, seq: int) -> str:
    return f"push:{user_id}:{seq:012d}"


class PushNotifier:
    def __init__(self, kv_store: KeyValueStore, retention_seconds: int = 24 * 60 * 60):
        self.kv_store = kv_store
        self.retention_seconds = retention_seconds

    @staticmethod
    def build_message(event_type: EventType, data: Dict[str, Any], user_id: Optional[int]) -> Dict[str, Any]:
        return {
            "type": EventType(event_type).value,
            "data": data,
            "timestamp": utc_now().isoformat(),
            "user_id": user_id,
        }

    def _remember(self, user_id: int, message: Dict[str, Any]) -> None:
        try:
            seq = self.kv_store.incr(f"push_seq:{user_id}")
            self.kv_store.set(_message_key(user_id, seq), message, ttl=self.retention_seconds)
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Could not store push message for user {user_id}: {e}")

    async def notify_user(self, user_id: int, event_type: EventType, data: Dict[str, Any]) -> Dict[str, Any]:
        """Deliver *data* to every live session of *user_id*."""
        message = self.build_message(event_type, data, user_id)
        self._remember(user_id, message)
        await publish_event(
            event_type,
            {"event_type": EventType(event_type).value, "user_id": user_id, "data": data},
        )
        return message

    async def broadcast(self, event_type: EventType, data: Dict[str, Any]) -> Dict[str, Any]:
        message = self.build_message(event_type, data, None)
        await publish_event(
            event_type,
            {"event_type": EventType(event_type).value, "user_id": None, "data": data},
        )
        return message

    # ------------------------------------------------------------------
    # message families
    # ------------------------------------------------------------------

    async def sync_completed(self, user_id: int, result: SyncResult) -> None:
        data = {
            "ops_processed": result.ops_processed,
            "conflicts_resolved": result.conflicts_resolved,
            "duration_ms": result.duration_ms,
            "sync_token": result.sync_token,
        }
        if result.selective_data is not None:
            data["selective_data"] = result.selective_data
        await self.notify_user(user_id, EventType.SYNC_COMPLETED, data)

    async def operation_queued(self, user_id: int, operation_id: str, operation_type: str, table_name: str, record_id: str):
        await self.notify_user(
            user_id,
            EventType.OPERATION_QUEUED,
            {
                "operation_id": operation_id,
                "operation_type": operation_type,
                "table_name": table_name,
                "record_id": record_id,
            },
        )

    async def presence_update(self, user_id: int, is_online: bool) -> None:
        await self.broadcast(
            EventType.PRESENCE_UPDATED,
            {"user_id": user_id, "status": "online" if is_online else "offline"},
        )

    # ------------------------------------------------------------------
    # catch-up
    # ------------------------------------------------------------------

    def recent_messages(self, user_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        """Messages still inside the retention window, newest first."""
        keys = sorted(self.kv_store.keys(f"push:{user_id}:"), reverse=True)
        messages = []
        for key in keys[: max(limit, 0)]:
            message = self.kv_store.get(key)
            if message is not None:
                messages.append(message)
        return messages


__all__ = ["PushNotifier"]
