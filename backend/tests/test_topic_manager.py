"""Tests for relaying notifier events to WebSocket sessions."""

from unittest.mock import AsyncMock

import pytest

from offsync.events import EventType
from offsync.events import event_bus
from offsync.websocket.manager import TopicConnectionManager


@pytest.fixture
async def manager():
    mgr = TopicConnectionManager()
    yield mgr
    await mgr.shutdown()
    event_bus.unsubscribe(EventType.SYNC_COMPLETED, mgr._handle_user_event)
    event_bus.unsubscribe(EventType.OPERATION_QUEUED, mgr._handle_user_event)
    event_bus.unsubscribe(EventType.PRESENCE_UPDATED, mgr._handle_broadcast_event)


def _socket():
    ws = AsyncMock()
    ws.send_json = AsyncMock()
    return ws


def _sent(ws):
    return [call.args[0] for call in ws.send_json.await_args_list]


@pytest.mark.asyncio
class TestTopicConnectionManager:
    async def test_user_event_reaches_every_session_of_the_user(self, manager):
        phone, laptop, stranger = _socket(), _socket(), _socket()
        await manager.connect("phone", phone, 7)
        await manager.connect("laptop", laptop, 7)
        await manager.connect("other", stranger, 8)

        await manager._handle_user_event(
            {"event_type": "sync_completed", "user_id": 7, "data": {"ops_processed": 1}}
        )

        for ws in (phone, laptop):
            (envelope,) = _sent(ws)
            assert envelope["type"] == "sync_completed"
            assert envelope["topic"] == "user:7"
            assert envelope["user_id"] == 7
            assert envelope["data"] == {"ops_processed": 1}
            assert envelope["v"] == 1
        assert _sent(stranger) == []
        assert manager.sessions_for_user(7) == ["laptop", "phone"]

    async def test_broadcast_goes_to_system_subscribers(self, manager):
        subscribed, quiet = _socket(), _socket()
        await manager.connect("a", subscribed, 7, auto_system=True)
        await manager.connect("b", quiet, 8)

        await manager._handle_broadcast_event(
            {"event_type": "presence_update", "user_id": None, "data": {"user_id": 7, "status": "online"}}
        )

        (envelope,) = _sent(subscribed)
        assert envelope["topic"] == "system"
        assert envelope["user_id"] is None
        assert envelope["data"]["status"] == "online"
        assert _sent(quiet) == []

    async def test_disconnect_removes_subscriptions(self, manager):
        ws = _socket()
        await manager.connect("a", ws, 7, auto_system=True)

        await manager.disconnect("a")

        assert manager.topic_subscriptions == {}
        assert manager.sessions_for_user(7) == []
        await manager._handle_user_event({"event_type": "sync_completed", "user_id": 7, "data": {}})
        assert _sent(ws) == []

    async def test_broadcast_requires_envelope(self, manager):
        await manager.connect("a", _socket(), 7)

        with pytest.raises(ValueError):
            await manager.broadcast_to_topic("user:7", {"type": "raw"})

    async def test_failed_send_drops_session(self, manager):
        ws = _socket()
        ws.send_json.side_effect = RuntimeError("socket gone")
        await manager.connect("a", ws, 7)

        await manager._handle_user_event({"event_type": "sync_completed", "user_id": 7, "data": {}})

        assert "a" not in manager.active_connections
