"""Tests for the record store gateway (typed kinds and the generic side table)."""

from datetime import datetime
from datetime import timedelta

import pytest

from offsync.errors import BadKindError
from offsync.errors import BadPayloadError
from offsync.errors import BadRecordIdError
from offsync.errors import NotFoundError
from offsync.errors import StoreError
from offsync.models.enums import OperationType
from offsync.models.models import GenericRecord
from offsync.models.models import Order
from offsync.models.models import Product
from offsync.services import record_gateway as gw
from offsync.services.record_gateway import RecordGateway


@pytest.fixture
def gateway():
    return RecordGateway()


class TestValidation:
    @pytest.mark.parametrize("kind", ["products", "notes", "a", "field_notes_2"])
    def test_valid_kinds(self, kind):
        assert gw.validate_kind(kind) == kind

    @pytest.mark.parametrize("kind", ["", "Products", "1notes", "bad-kind", "x" * 64, None, 5])
    def test_invalid_kinds(self, kind):
        with pytest.raises(BadKindError):
            gw.validate_kind(kind)

    def test_record_ids(self):
        assert gw.parse_record_id("products", "42") == 42
        assert gw.parse_record_id("products", " 7 ") == 7
        assert gw.parse_record_id("notes", "abc-1") == "abc-1"

        for bad in ("", "   ", "-1", "4.2", "abc"):
            with pytest.raises(BadRecordIdError):
                gw.parse_record_id("products", bad)
        with pytest.raises(BadRecordIdError):
            gw.parse_record_id("notes", "")

    def test_create_fills_defaults(self):
        values = gw.validate("products", OperationType.CREATE, {"name": "A", "price": 1, "unknown": "dropped"})

        assert values["stock"] == 0
        assert values["is_active"] is True
        assert "unknown" not in values

    def test_update_keeps_only_sent_fields(self):
        assert gw.validate("products", OperationType.UPDATE, {"price": 3}) == {"price": 3.0}

    def test_invalid_payloads(self):
        with pytest.raises(BadPayloadError):
            gw.validate("products", OperationType.CREATE, {"name": "A"})
        with pytest.raises(BadPayloadError):
            gw.validate("products", OperationType.UPDATE, {"price": -1})
        with pytest.raises(BadPayloadError):
            gw.validate("orders", OperationType.CREATE, None)
        with pytest.raises(BadPayloadError):
            gw.validate("notes", OperationType.CREATE, ["not", "a", "mapping"])

    def test_delete_needs_no_payload(self):
        assert gw.validate("products", OperationType.DELETE, None) == {}

    def test_prepare_stamps_timestamps(self):
        now = datetime(2026, 1, 1, 12, 0, 0)

        created = gw.prepare(OperationType.CREATE, {"a": 1}, now)
        updated = gw.prepare(OperationType.UPDATE, {"a": 1}, now)

        assert created == {"a": 1, "created_at": now, "updated_at": now}
        assert updated == {"a": 1, "updated_at": now}


class TestTypedWrites:
    def test_create_update_delete(self, gateway, db_session):
        gateway.apply(db_session, OperationType.CREATE, "products", "10", {"name": "A", "price": 2})
        db_session.commit()
        assert db_session.get(Product, 10).name == "A"

        gateway.apply(db_session, OperationType.UPDATE, "products", "10", {"price": 3})
        db_session.commit()
        product = db_session.get(Product, 10)
        assert (product.name, product.price) == ("A", 3)

        gateway.apply(db_session, OperationType.DELETE, "products", "10", None)
        db_session.commit()
        assert db_session.get(Product, 10) is None

    def test_update_missing_record(self, gateway, db_session):
        with pytest.raises(NotFoundError):
            gateway.apply(db_session, OperationType.UPDATE, "orders", "1", {"status": "shipped"})

    def test_unique_violation_is_store_error(self, gateway, db_session):
        payload = {"order_number": "ORD-1", "customer_id": 3, "total_amount": 10}
        gateway.apply(db_session, OperationType.CREATE, "orders", "1", payload)
        db_session.commit()

        with pytest.raises(StoreError):
            gateway.apply(db_session, OperationType.CREATE, "orders", "2", payload)
        db_session.rollback()

        assert db_session.query(Order).count() == 1

    def test_snapshot(self, gateway, db_session):
        assert gateway.snapshot(db_session, "products", "10") is None

        gateway.apply(db_session, OperationType.CREATE, "products", "10", {"name": "A", "price": 2})
        db_session.commit()

        snapshot = gateway.snapshot(db_session, "products", "10")
        assert snapshot["name"] == "A"
        assert "created_at" not in snapshot
        assert "id" not in snapshot

    def test_snapshot_omits_null_columns(self, gateway, db_session):
        gateway.apply(db_session, OperationType.CREATE, "products", "10", {"name": "A", "price": 2})
        db_session.commit()

        snapshot = gateway.snapshot(db_session, "products", "10")

        assert "description" not in snapshot
        assert "sku" not in snapshot
        assert "category_id" not in snapshot
        assert snapshot["price"] == 2


class TestGenericWrites:
    def test_generic_lifecycle(self, gateway, db_session):
        gateway.apply(db_session, OperationType.CREATE, "notes", "n-1", {"title": "a", "tags": ["x"]})
        db_session.commit()
        assert gateway.snapshot(db_session, "notes", "n-1") == {"title": "a", "tags": ["x"]}

        # Updates replace the whole document
        gateway.apply(db_session, OperationType.UPDATE, "notes", "n-1", {"title": "b"})
        db_session.commit()
        assert gateway.snapshot(db_session, "notes", "n-1") == {"title": "b"}

        gateway.apply(db_session, OperationType.DELETE, "notes", "n-1", None)
        db_session.commit()
        assert db_session.query(GenericRecord).count() == 0

    def test_kinds_are_separate_namespaces(self, gateway, db_session):
        gateway.apply(db_session, OperationType.CREATE, "notes", "1", {"k": "note"})
        gateway.apply(db_session, OperationType.CREATE, "tasks", "1", {"k": "task"})
        db_session.commit()

        assert gateway.snapshot(db_session, "notes", "1") == {"k": "note"}
        assert gateway.snapshot(db_session, "tasks", "1") == {"k": "task"}

    def test_delete_missing_generic(self, gateway, db_session):
        with pytest.raises(NotFoundError):
            gateway.apply(db_session, OperationType.DELETE, "notes", "nope", None)


class TestChangedSince:
    def test_filters_on_updated_at(self, gateway, db_session):
        t0 = datetime(2026, 5, 1, 12, 0, 0)
        db_session.add_all(
            [
                Product(id=3, name="new", price=1, created_at=t0, updated_at=t0 + timedelta(seconds=10)),
                Product(id=4, name="old", price=1, created_at=t0, updated_at=t0 - timedelta(seconds=10)),
            ]
        )
        db_session.commit()

        changed = gateway.changed_since(db_session, "products", t0)

        assert [row["id"] for row in changed] == [3]
        assert changed[0]["name"] == "new"
        assert changed[0]["updated_at"] == (t0 + timedelta(seconds=10)).isoformat()
        assert len(gateway.changed_since(db_session, "products", None)) == 2
