"""Tests for the background retry pass over failed operations."""

from datetime import timedelta

import pytest

from offsync.models.enums import OperationStatus
from offsync.models.models import Product
from offsync.models.sync import OfflineOperation
from offsync.models.sync import SyncStatus

USER = 7


async def _fail_one(engine, seed_product, operation_id="op-dup"):
    """Queue a create that collides with an existing SKU and let it fail once."""
    seed_product(1, name="Holder", sku="SKU-1")
    await engine.enqueue(
        USER,
        {
            "operation_id": operation_id,
            "operation_type": "create",
            "table_name": "products",
            "record_id": "2",
            "data": {"name": "Clash", "price": 5, "sku": "SKU-1"},
        },
    )
    result = await engine.sync_all(USER)
    assert result.ops_failed == 1


def _op(db, operation_id="op-dup"):
    db.expire_all()
    return db.query(OfflineOperation).filter(OfflineOperation.operation_id == operation_id).one()


@pytest.mark.asyncio
class TestRetryLoop:
    async def test_failed_operation_succeeds_on_retry(self, make_sync_engine, db_session, seed_product):
        engine = make_sync_engine(sync_retry_base_delay_seconds=0)
        await _fail_one(engine, seed_product)

        holder = db_session.get(Product, 1)
        holder.sku = None
        db_session.commit()

        stats = await engine.run_retry_tick()

        assert stats["retried"] == 1
        assert stats["completed"] == 1
        op = _op(db_session)
        assert op.status == OperationStatus.COMPLETED
        assert op.retry_count == 1
        assert op.error_message is None
        assert db_session.get(Product, 2).sku == "SKU-1"

    async def test_retry_budget_is_respected(self, make_sync_engine, db_session, seed_product):
        engine = make_sync_engine(sync_retry_base_delay_seconds=0, sync_max_retries=5)
        await _fail_one(engine, seed_product)

        for attempt in range(1, 6):
            stats = await engine.run_retry_tick()
            assert stats["retried"] == 1
            assert stats["failed"] == 1
            assert _op(db_session).retry_count == attempt

        stats = await engine.run_retry_tick()

        assert stats["retried"] == 0
        op = _op(db_session)
        assert op.status == OperationStatus.FAILED
        assert op.retry_count == 5
        assert engine.list_pending(USER) == []
        assert engine.get_sync_status(USER).pending_operations_count == 0

    async def test_backoff_delays_retry(self, make_sync_engine, db_session, seed_product):
        engine = make_sync_engine(sync_retry_base_delay_seconds=60)
        await _fail_one(engine, seed_product)

        stats = await engine.run_retry_tick()
        assert stats["retried"] == 0

        # First retry waits one base delay after the failure
        op = _op(db_session)
        op.updated_at = op.updated_at - timedelta(seconds=61)
        db_session.commit()

        stats = await engine.run_retry_tick()
        assert stats["retried"] == 1

    async def test_offline_users_are_skipped(self, make_sync_engine, db_session, seed_product):
        engine = make_sync_engine(sync_retry_base_delay_seconds=0)
        await _fail_one(engine, seed_product)
        await engine.set_offline(USER)

        stats = await engine.run_retry_tick()

        assert stats["retried"] == 0
        assert stats["skipped_users"] == 1
        assert _op(db_session).status == OperationStatus.FAILED

    async def test_busy_users_are_skipped(self, make_sync_engine, db_session, seed_product):
        engine = make_sync_engine(sync_retry_base_delay_seconds=0)
        await _fail_one(engine, seed_product)

        assert await engine.locks.try_acquire(USER) is True
        try:
            stats = await engine.run_retry_tick()
        finally:
            engine.locks.release(USER)

        assert stats["skipped_users"] == 1
        assert _op(db_session).retry_count == 0

    async def test_retry_keeps_pending_count_consistent(self, make_sync_engine, db_session, seed_product):
        engine = make_sync_engine(sync_retry_base_delay_seconds=0)
        await _fail_one(engine, seed_product)

        await engine.run_retry_tick()

        db_session.expire_all()
        status = db_session.query(SyncStatus).filter(SyncStatus.user_id == USER).one()
        assert status.pending_operations_count == 0

    async def test_shutdown_cancels_owned_tasks(self, sync_engine):
        await sync_engine.run_retry_tick()
        assert sync_engine.active_task_count == 0

        await sync_engine.shutdown()
        assert sync_engine.active_task_count == 0


async def _strand(engine, db, *, age_seconds, operation_id="op-stuck"):
    """Queue a create and leave it taken but never applied, *age_seconds* ago."""
    await engine.enqueue(
        USER,
        {
            "operation_id": operation_id,
            "operation_type": "create",
            "table_name": "products",
            "record_id": "3",
            "data": {"name": "Stuck", "price": 1},
        },
    )
    op = _op(db, operation_id)
    engine.queue.mark_processing(db, op)
    op.updated_at = op.updated_at - timedelta(seconds=age_seconds)
    db.commit()


@pytest.mark.asyncio
class TestStrandedOperations:
    async def test_stale_processing_is_reclaimed_and_applied(self, make_sync_engine, db_session):
        engine = make_sync_engine(sync_processing_lease_seconds=300)
        await _strand(engine, db_session, age_seconds=301)

        stats = await engine.run_retry_tick()

        assert stats["reclaimed"] == 1
        assert stats["retried"] == 1
        assert stats["completed"] == 1
        op = _op(db_session, "op-stuck")
        assert op.status == OperationStatus.COMPLETED
        assert op.retry_count == 1
        assert db_session.get(Product, 3).name == "Stuck"
        assert engine.get_sync_status(USER).pending_operations_count == 0

    async def test_recent_processing_is_left_alone(self, make_sync_engine, db_session):
        engine = make_sync_engine(sync_processing_lease_seconds=300)
        await _strand(engine, db_session, age_seconds=10)

        stats = await engine.run_retry_tick()

        assert stats["reclaimed"] == 0
        assert _op(db_session, "op-stuck").status == OperationStatus.PROCESSING

    async def test_exhausted_budget_stays_failed(self, make_sync_engine, db_session):
        engine = make_sync_engine(sync_processing_lease_seconds=300, sync_max_retries=0)
        await _strand(engine, db_session, age_seconds=301)

        stats = await engine.run_retry_tick()

        assert stats["reclaimed"] == 1
        assert stats["retried"] == 0
        op = _op(db_session, "op-stuck")
        assert op.status == OperationStatus.FAILED
        assert op.error_message == "internal: abandoned while processing"

    async def test_operation_held_by_manual_conflict_is_not_reclaimed(
        self, make_sync_engine, db_session, seed_product
    ):
        engine = make_sync_engine(sync_processing_lease_seconds=300)
        seed_product(5, name="Srv", price=9, version=2)
        await engine.enqueue(
            USER,
            {
                "operation_id": "op-held",
                "operation_type": "update",
                "table_name": "products",
                "record_id": "5",
                "data": {"name": "Cli"},
                "base_version": 1,
                "conflict_strategy": "manual",
            },
        )
        await engine.sync_all(USER)
        op = _op(db_session, "op-held")
        op.updated_at = op.updated_at - timedelta(seconds=301)
        db_session.commit()

        stats = await engine.run_retry_tick()

        assert stats["reclaimed"] == 0
        assert _op(db_session, "op-held").status == OperationStatus.PROCESSING

    async def test_user_with_session_in_flight_is_not_reclaimed(self, make_sync_engine, db_session):
        engine = make_sync_engine(sync_processing_lease_seconds=300)
        await _strand(engine, db_session, age_seconds=301)

        async with engine.locks.lock(USER):
            stats = await engine.run_retry_tick()

        assert stats["reclaimed"] == 0
        assert _op(db_session, "op-stuck").status == OperationStatus.PROCESSING
