"""HTTP and WebSocket surface of the sync engine."""

import pytest
from starlette.websockets import WebSocketDisconnect

import offsync.dependencies.auth as auth

BASE = "/api/v1/sync"
HEADERS = {"X-User-Id": "7"}


def _create(record_id, data, table="products", **extra):
    return {"operation_type": "create", "table_name": table, "record_id": record_id, "data": data, **extra}


class TestQueueEndpoints:
    def test_queue_and_list(self, client):
        response = client.post(f"{BASE}/queue", json=_create("1", {"name": "A", "price": 2}), headers=HEADERS)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["operation_id"]

        listed = client.get(f"{BASE}/operations", params={"status": "pending"}, headers=HEADERS).json()
        assert [op["operation_id"] for op in listed] == [body["operation_id"]]
        assert client.get(f"{BASE}/status", headers=HEADERS).json()["pending_operations_count"] == 1

    def test_duplicate_operation_id(self, client):
        op = _create("1", {"title": "x"}, table="notes", operation_id="dup-1")

        first = client.post(f"{BASE}/queue", json=op, headers=HEADERS)
        second = client.post(f"{BASE}/queue", json=op, headers=HEADERS)

        assert first.json() == second.json()
        assert len(client.get(f"{BASE}/operations", headers=HEADERS).json()) == 1

    @pytest.mark.parametrize(
        "payload,kind",
        [
            (_create("1", {"title": "x"}, table="Bad-Kind"), "bad_kind"),
            ({"operation_type": "upsert", "table_name": "notes", "record_id": "1", "data": {}}, "bad_kind"),
            (_create("abc", {"name": "A", "price": 1}), "bad_record_id"),
            (_create("1", {"name": "A"}), "bad_payload"),
            ({"operation_type": "create", "table_name": "notes"}, "bad_input"),
        ],
    )
    def test_rejects_malformed_operations(self, client, payload, kind):
        response = client.post(f"{BASE}/queue", json=payload, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == kind

    def test_users_are_isolated(self, client):
        client.post(f"{BASE}/queue", json=_create("1", {"title": "x"}, table="notes"), headers=HEADERS)

        other = client.get(f"{BASE}/operations", headers={"X-User-Id": "8"}).json()
        assert other == []


class TestSessionEndpoints:
    def test_sync_applies_queue(self, client):
        client.post(f"{BASE}/queue", json=_create("1", {"name": "A", "price": 2}), headers=HEADERS)

        result = client.post(f"{BASE}/sync", headers=HEADERS).json()

        assert result["ops_processed"] == 1
        assert result["ok"] is True
        assert result["sync_type"] == "incremental"
        status = client.get(f"{BASE}/status", headers=HEADERS).json()
        assert status["pending_operations_count"] == 0
        assert status["last_sync_token"] == result["sync_token"]

        history = client.get(f"{BASE}/history", headers=HEADERS).json()
        assert [h["sync_token"] for h in history] == [result["sync_token"]]

    def test_selective_and_full_bodies(self, client, seed_product):
        seed_product(3, name="A")

        selective = client.post(f"{BASE}/sync", json={"since": "2000-01-01T00:00:00Z"}, headers=HEADERS).json()
        full = client.post(f"{BASE}/sync", json={"full": True}, headers=HEADERS).json()

        assert selective["sync_type"] == "selective"
        assert [p["id"] for p in selective["selective_data"]["products"]] == [3]
        assert full["sync_type"] == "full"

    def test_force_marks_online(self, client):
        client.post(f"{BASE}/offline", headers=HEADERS)

        client.post(f"{BASE}/force", headers=HEADERS)

        assert client.get(f"{BASE}/status", headers=HEADERS).json()["is_online"] is True

    def test_presence_changes(self, client):
        first = client.post(f"{BASE}/offline", headers=HEADERS).json()
        again = client.post(f"{BASE}/offline", headers=HEADERS).json()

        assert first == {"user_id": 7, "is_online": False, "changed": True}
        assert again["changed"] is False

    def test_recent_messages(self, client):
        client.post(f"{BASE}/queue", json=_create("1", {"title": "x"}, table="notes"), headers=HEADERS)
        client.post(f"{BASE}/sync", headers=HEADERS)

        messages = client.get(f"{BASE}/messages", headers=HEADERS).json()

        assert [m["type"] for m in messages] == ["sync_completed", "offline_operation_queued"]


class TestConflictEndpoints:
    @pytest.fixture
    def held_conflict(self, client, seed_product):
        seed_product(5, name="Srv", price=9, version=2)
        client.post(
            f"{BASE}/queue",
            json={
                "operation_type": "update",
                "table_name": "products",
                "record_id": "5",
                "data": {"name": "Cli"},
                "base_version": 1,
                "conflict_strategy": "manual",
            },
            headers=HEADERS,
        )
        client.post(f"{BASE}/sync", headers=HEADERS)
        (conflict,) = client.get(f"{BASE}/conflicts", params={"status": "pending"}, headers=HEADERS).json()
        return conflict

    def test_manual_conflict_listed_and_analyzed(self, client, held_conflict):
        assert held_conflict["conflict_type"] == "version_mismatch"

        analysis = client.get(f"{BASE}/conflicts/{held_conflict['id']}/analysis", headers=HEADERS).json()
        assert "name" in analysis["conflicting_fields"]

        stats = client.get(f"{BASE}/conflicts/stats", headers=HEADERS).json()
        assert stats["pending"] == 1

    def test_resolve(self, client, held_conflict):
        response = client.post(
            f"{BASE}/conflicts/{held_conflict['id']}/resolve", json={"strategy": "client_wins"}, headers=HEADERS
        )

        assert response.status_code == 200
        assert response.json()["resolved_data"]["name"] == "Cli"
        assert client.get(f"{BASE}/status", headers=HEADERS).json()["conflicts_count"] == 0

        again = client.post(
            f"{BASE}/conflicts/{held_conflict['id']}/resolve", json={"strategy": "client_wins"}, headers=HEADERS
        )
        assert again.status_code == 400

    def test_resolve_rejects_bad_strategy(self, client, held_conflict):
        response = client.post(
            f"{BASE}/conflicts/{held_conflict['id']}/resolve", json={"strategy": "coin_flip"}, headers=HEADERS
        )

        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "bad_strategy"

    def test_ignore(self, client, held_conflict):
        ignored = client.post(f"{BASE}/conflicts/{held_conflict['id']}/ignore", headers=HEADERS).json()

        assert ignored["status"] == "ignored"
        failed = client.get(f"{BASE}/operations", params={"status": "failed"}, headers=HEADERS).json()
        assert len(failed) == 1

    def test_unknown_conflict(self, client):
        response = client.get(f"{BASE}/conflicts/999/analysis", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["detail"]["kind"] == "not_found"

    def test_conflicts_of_other_users_are_hidden(self, client, held_conflict):
        response = client.post(f"{BASE}/conflicts/{held_conflict['id']}/ignore", headers={"X-User-Id": "8"})

        assert response.status_code == 404


class TestIdentity:
    def test_dev_user_when_auth_disabled(self, client):
        assert client.get(f"{BASE}/status").json()["user_id"] == 1

    def test_missing_identity_rejected(self, client, monkeypatch):
        monkeypatch.setattr(auth, "AUTH_DISABLED", False)

        assert client.get(f"{BASE}/status").status_code == 401
        assert client.get(f"{BASE}/status", headers={"X-User-Id": "nope"}).status_code == 401
        assert client.get(f"{BASE}/status", headers=HEADERS).status_code == 200


class TestWebSocket:
    def test_ping_pong(self, client):
        with client.websocket_connect("/api/ws?user_id=7") as ws:
            ws.send_json({"type": "ping"})
            reply = ws.receive_json()

        assert reply["type"] == "pong"
        assert reply["topic"] == "system"

    def test_foreign_topic_rejected(self, client):
        with client.websocket_connect("/api/ws?user_id=7") as ws:
            ws.send_json({"type": "subscribe", "topics": ["user:8"]})
            reply = ws.receive_json()

        assert reply["type"] == "error"
        assert "user:8" in reply["data"]["error"]

    def test_invalid_json(self, client):
        with client.websocket_connect("/api/ws?user_id=7") as ws:
            ws.send_text("{not json")
            reply = ws.receive_json()

        assert reply["data"]["error"] == "Invalid JSON payload"

    def test_unauthenticated_socket_closed(self, client, monkeypatch):
        monkeypatch.setattr(auth, "AUTH_DISABLED", False)

        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect("/api/ws") as ws:
                ws.receive_json()

        assert excinfo.value.code == 4401
