"""Durable per-user FIFO of offline operations.

Status lifecycle::

    (new) --enqueue--> pending --take--> processing --ok--> completed
                          ^                   |
                          |                   +--fail--> failed
                          +------ retry (retry_count + 1) ----+

Every transition keeps ``sync_status.pending_operations_count`` in step:
leaving ``pending`` decrements it, entering ``pending`` increments it.
"""

import logging
from datetime import datetime
from datetime import timedelta
from typing import List
from typing import Optional

from sqlalchemy.orm import Session

from offsync.crud import crud
from offsync.errors import BadInputError
from offsync.errors import BadPayloadError
from offsync.errors import InvalidTransition
from offsync.models.enums import ConflictStatus
from offsync.models.enums import OperationStatus
from offsync.models.enums import OperationType
from offsync.models.sync import OfflineOperation
from offsync.models.sync import SyncConflict
from offsync.schemas.schemas import OperationCreate
from offsync.services import record_gateway as gateway
from offsync.utils.ids import generate_operation_id
from offsync.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

_ALLOWED = {
    OperationStatus.PENDING: {OperationStatus.PROCESSING},
    OperationStatus.PROCESSING: {OperationStatus.COMPLETED, OperationStatus.FAILED},
    OperationStatus.FAILED: {OperationStatus.PENDING},
    OperationStatus.COMPLETED: set(),
}

_ONE_TICK = timedelta(microseconds=1)


class OperationQueue:
    def __init__(self, default_max_retries: int = 5):
        self.default_max_retries = default_max_retries

    # ------------------------------------------------------------------
    # enqueue
    # ------------------------------------------------------------------

    def validate(self, op: OperationCreate) -> str:
        """Reject malformed operations before anything is persisted.

        Returns the canonical record id: well-known kinds store the integer
        key in decimal form so ``"042"`` and ``"42"`` address one record.
        """
        gateway.validate_kind(op.table_name)
        record_id = str(gateway.parse_record_id(op.table_name, op.record_id))
        if op.operation_type in (OperationType.CREATE, OperationType.UPDATE):
            if not op.data:
                raise BadPayloadError(f"{op.operation_type.value} on {op.table_name} requires a non-empty payload")
            gateway.validate(op.table_name, op.operation_type, op.data)
        if op.operation_id is not None and not op.operation_id.strip():
            raise BadInputError("operation_id must not be blank")
        return record_id

    def enqueue(self, db: Session, user_id: int, op: OperationCreate) -> tuple[OfflineOperation, bool]:
        """Append *op* to the user's queue.

        Returns ``(row, created)``.  Re-submitting an ``operation_id`` the user
        already queued returns the existing row with ``created=False``.
        """
        record_id = self.validate(op)

        if op.operation_id:
            existing = crud.get_operation(db, user_id, op.operation_id.strip())
            if existing is not None:
                logger.debug(f"Duplicate operation_id {op.operation_id} from user {user_id}, returning existing")
                return existing, False

        now = utc_now_naive()
        # Keep arrival order strictly increasing even when two enqueues land
        # in the same clock tick.
        last = (
            db.query(OfflineOperation.created_at)
            .filter(OfflineOperation.user_id == user_id)
            .order_by(OfflineOperation.created_at.desc())
            .limit(1)
            .scalar()
        )
        if last is not None and now <= last:
            now = last + _ONE_TICK

        row = OfflineOperation(
            user_id=user_id,
            operation_id=(op.operation_id or "").strip() or generate_operation_id(),
            operation_type=op.operation_type,
            table_name=op.table_name,
            record_id=record_id,
            data=op.data,
            status=OperationStatus.PENDING,
            retry_count=0,
            max_retries=self.default_max_retries if op.max_retries is None else op.max_retries,
            conflict_strategy=op.conflict_strategy,
            base_version=op.base_version,
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        crud.adjust_counts(db, user_id, pending=+1)
        db.flush()

        logger.info(
            f"Queued {row.operation_type.value} {row.table_name}/{row.record_id} "
            f"as {row.operation_id} for user {user_id}"
        )
        return row, True

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    @staticmethod
    def pending_for(db: Session, user_id: int, limit: Optional[int] = None) -> List[OfflineOperation]:
        return crud.list_operations(db, user_id, status=OperationStatus.PENDING, limit=limit)

    @staticmethod
    def retryable(db: Session, now: datetime, base_delay: timedelta) -> List[OfflineOperation]:
        """Failed operations whose retry budget and backoff both allow another attempt.

        The wait before attempt ``n + 1`` is ``(n + 1) * base_delay`` measured
        from the last status change.
        """
        candidates = (
            db.query(OfflineOperation)
            .filter(
                OfflineOperation.status == OperationStatus.FAILED,
                OfflineOperation.retry_count < OfflineOperation.max_retries,
            )
            .order_by(OfflineOperation.created_at.asc(), OfflineOperation.operation_id.asc())
            .all()
        )
        return [op for op in candidates if op.updated_at <= now - (op.retry_count + 1) * base_delay]

    @staticmethod
    def stale_processing(db: Session, now: datetime, lease: timedelta) -> List[OfflineOperation]:
        """``processing`` operations untouched for longer than *lease*.

        These were abandoned between the take and the apply transaction.
        Operations held by a pending conflict are waiting on a decision and
        are not stale.
        """
        held = (
            db.query(SyncConflict.id)
            .filter(
                SyncConflict.user_id == OfflineOperation.user_id,
                SyncConflict.operation_id == OfflineOperation.operation_id,
                SyncConflict.status == ConflictStatus.PENDING,
            )
            .correlate(OfflineOperation)
            .exists()
        )
        return (
            db.query(OfflineOperation)
            .filter(
                OfflineOperation.status == OperationStatus.PROCESSING,
                OfflineOperation.updated_at <= now - lease,
                ~held,
            )
            .order_by(OfflineOperation.created_at.asc(), OfflineOperation.operation_id.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    @staticmethod
    def _transition(db: Session, op: OfflineOperation, target: OperationStatus) -> None:
        current = OperationStatus(op.status)
        if target not in _ALLOWED[current]:
            raise InvalidTransition(op.operation_id, current.value, target.value)

        delta = 0
        if current == OperationStatus.PENDING:
            delta -= 1
        if target == OperationStatus.PENDING:
            delta += 1
        if delta:
            crud.adjust_counts(db, op.user_id, pending=delta)

        op.status = target
        op.updated_at = utc_now_naive()

    def mark_processing(self, db: Session, op: OfflineOperation) -> None:
        self._transition(db, op, OperationStatus.PROCESSING)

    def mark_completed(self, db: Session, op: OfflineOperation) -> None:
        self._transition(db, op, OperationStatus.COMPLETED)
        op.error_message = None
        op.processed_at = op.updated_at

    def mark_failed(self, db: Session, op: OfflineOperation, error_message: str) -> None:
        self._transition(db, op, OperationStatus.FAILED)
        op.error_message = error_message
        op.processed_at = op.updated_at

    def reset_for_retry(self, db: Session, op: OfflineOperation) -> None:
        """``failed -> pending`` with one more attempt used up."""
        if OperationStatus(op.status) == OperationStatus.FAILED and op.retry_count >= op.max_retries:
            raise InvalidTransition(op.operation_id, "failed", "pending (retry budget exhausted)")
        self._transition(db, op, OperationStatus.PENDING)
        op.retry_count = (op.retry_count or 0) + 1
        op.error_message = None


__all__ = ["OperationQueue"]
