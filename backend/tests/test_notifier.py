"""Tests for push message construction, fan-out and catch-up retention."""

import pytest

from offsync.events import EventType
from offsync.schemas.schemas import SyncResult
from offsync.services.kv_store import KeyValueStore
from offsync.services.notifier import PushNotifier


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier(clock):
    return PushNotifier(KeyValueStore(timer=clock), retention_seconds=60)


@pytest.mark.asyncio
class TestPushNotifier:
    async def test_user_message_shape(self, notifier, captured_events):
        message = await notifier.notify_user(7, EventType.OPERATION_QUEUED, {"operation_id": "a"})

        assert message["type"] == "offline_operation_queued"
        assert message["user_id"] == 7
        assert message["data"] == {"operation_id": "a"}
        assert "timestamp" in message
        assert captured_events == [
            {"event_type": "offline_operation_queued", "user_id": 7, "data": {"operation_id": "a"}}
        ]

    async def test_sync_completed_payload(self, notifier, captured_events):
        result = SyncResult(
            ops_processed=2,
            conflicts_resolved=1,
            duration_ms=5,
            sync_token="tok",
            selective_data={"products": []},
        )

        await notifier.sync_completed(7, result)

        data = captured_events[0]["data"]
        assert data["ops_processed"] == 2
        assert data["conflicts_resolved"] == 1
        assert data["sync_token"] == "tok"
        assert data["selective_data"] == {"products": []}

    async def test_presence_is_broadcast_and_not_retained(self, notifier, captured_events):
        await notifier.presence_update(7, False)

        assert captured_events == [
            {"event_type": "presence_update", "user_id": None, "data": {"user_id": 7, "status": "offline"}}
        ]
        assert notifier.recent_messages(7) == []

    async def test_recent_messages_newest_first(self, notifier):
        for n in range(3):
            await notifier.notify_user(7, EventType.OPERATION_QUEUED, {"n": n})
        await notifier.notify_user(8, EventType.OPERATION_QUEUED, {"n": 99})

        assert [m["data"]["n"] for m in notifier.recent_messages(7)] == [2, 1, 0]
        assert [m["data"]["n"] for m in notifier.recent_messages(7, limit=2)] == [2, 1]

    async def test_retention_window(self, notifier, clock):
        await notifier.notify_user(7, EventType.OPERATION_QUEUED, {"n": 1})
        clock.now = 30
        await notifier.notify_user(7, EventType.OPERATION_QUEUED, {"n": 2})

        clock.now = 61
        assert [m["data"]["n"] for m in notifier.recent_messages(7)] == [2]

        clock.now = 91
        assert notifier.recent_messages(7) == []
