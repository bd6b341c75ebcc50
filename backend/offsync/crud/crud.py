"""Query helpers for the sync bookkeeping tables.

Services own the state machine; these helpers only read and write rows.  None
of them commit – callers run inside ``db_session()``.
"""

from typing import List
from typing import Optional

from sqlalchemy.orm import Session

from offsync.models.enums import ConflictStatus
from offsync.models.enums import OperationStatus
from offsync.models.sync import OfflineOperation
from offsync.models.sync import SyncConflict
from offsync.models.sync import SyncHistory
from offsync.models.sync import SyncStatus

# ---------------------------------------------------------------------------
# Sync status
# ---------------------------------------------------------------------------


def get_sync_status(db: Session, user_id: int) -> Optional[SyncStatus]:
    return db.query(SyncStatus).filter(SyncStatus.user_id == user_id).one_or_none()


def get_or_create_sync_status(db: Session, user_id: int) -> SyncStatus:
    """Return the user's status row, creating a default one (online, zero counts)."""
    status = get_sync_status(db, user_id)
    if status is None:
        status = SyncStatus(
            user_id=user_id,
            pending_operations_count=0,
            conflicts_count=0,
            is_online=True,
        )
        db.add(status)
        db.flush()
    return status


def adjust_counts(db: Session, user_id: int, *, pending: int = 0, conflicts: int = 0) -> SyncStatus:
    """Apply a delta to the maintained counters.  Counts never go negative."""
    status = get_or_create_sync_status(db, user_id)
    if pending:
        status.pending_operations_count = max(0, (status.pending_operations_count or 0) + pending)
    if conflicts:
        status.conflicts_count = max(0, (status.conflicts_count or 0) + conflicts)
    return status


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def get_operation(db: Session, user_id: int, operation_id: str) -> Optional[OfflineOperation]:
    return (
        db.query(OfflineOperation)
        .filter(OfflineOperation.user_id == user_id, OfflineOperation.operation_id == operation_id)
        .one_or_none()
    )


def list_operations(
    db: Session,
    user_id: int,
    status: Optional[OperationStatus] = None,
    limit: Optional[int] = None,
) -> List[OfflineOperation]:
    """Return a user's operations in FIFO order (``created_at``, then ``operation_id``)."""
    query = db.query(OfflineOperation).filter(OfflineOperation.user_id == user_id)
    if status is not None:
        query = query.filter(OfflineOperation.status == status)
    query = query.order_by(OfflineOperation.created_at.asc(), OfflineOperation.operation_id.asc())
    if limit:
        query = query.limit(limit)
    return query.all()


def count_operations(db: Session, user_id: int, status: OperationStatus) -> int:
    return (
        db.query(OfflineOperation)
        .filter(OfflineOperation.user_id == user_id, OfflineOperation.status == status)
        .count()
    )


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


def get_conflict(db: Session, user_id: int, conflict_id: int) -> Optional[SyncConflict]:
    return (
        db.query(SyncConflict)
        .filter(SyncConflict.id == conflict_id, SyncConflict.user_id == user_id)
        .one_or_none()
    )


def list_conflicts(
    db: Session,
    user_id: int,
    status: Optional[ConflictStatus] = None,
    limit: Optional[int] = None,
) -> List[SyncConflict]:
    query = db.query(SyncConflict).filter(SyncConflict.user_id == user_id)
    if status is not None:
        query = query.filter(SyncConflict.status == status)
    query = query.order_by(SyncConflict.created_at.desc(), SyncConflict.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def list_conflicts_for_sweep(db: Session, user_id: int) -> List[SyncConflict]:
    """Pending conflicts in creation order (the sweep resolves oldest first)."""
    return (
        db.query(SyncConflict)
        .filter(SyncConflict.user_id == user_id, SyncConflict.status == ConflictStatus.PENDING)
        .order_by(SyncConflict.created_at.asc(), SyncConflict.id.asc())
        .all()
    )


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------


def add_history(db: Session, entry: SyncHistory) -> SyncHistory:
    db.add(entry)
    db.flush()
    return entry


def list_history(db: Session, user_id: int, limit: Optional[int] = None) -> List[SyncHistory]:
    query = (
        db.query(SyncHistory)
        .filter(SyncHistory.user_id == user_id)
        .order_by(SyncHistory.created_at.desc(), SyncHistory.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()
