"""Offline sync bookkeeping tables.

These tables hold everything the engine needs to replay client mutations:
the per-user operation queue, recorded conflicts, per-record versions, the
per-user sync status row and the append-only sync journal.

Note: ``user_id`` columns carry no foreign key.  The caller identity comes
from the authentication layer and does not have to exist as a ``users``
record (that table is itself a synchronisable record kind).
"""

from sqlalchemy import JSON
from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import UniqueConstraint

from offsync.database import Base
from offsync.models.enums import ConflictStatus
from offsync.models.enums import ConflictType
from offsync.models.enums import ModifiedBy
from offsync.models.enums import OperationStatus
from offsync.models.enums import OperationType
from offsync.models.enums import ResolutionStrategy
from offsync.models.enums import SyncType
from offsync.utils.time import utc_now_naive


def _enum(enum_cls, name: str) -> SAEnum:
    # Store the *value* ("pending") rather than the member name ("PENDING").
    return SAEnum(
        enum_cls,
        native_enum=False,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class OfflineOperation(Base):
    """A queued create/update/delete from a client.

    ``operation_id`` uniqueness is scoped per user so a client retrying an
    enqueue with the same id gets the existing row back.
    """

    __tablename__ = "offline_operations"
    __table_args__ = (
        UniqueConstraint("user_id", "operation_id", name="uq_offline_operations_user_op"),
        # FIFO drain: (user, status) filter ordered by arrival
        Index("ix_offline_operations_user_status_created", "user_id", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    operation_id = Column(String(64), nullable=False, index=True)

    operation_type = Column(_enum(OperationType, "operation_type_enum"), nullable=False)
    table_name = Column(String(63), nullable=False)
    record_id = Column(String, nullable=False)
    data = Column(JSON, nullable=True)

    status = Column(
        _enum(OperationStatus, "operation_status_enum"),
        nullable=False,
        default=OperationStatus.PENDING,
    )
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=5)
    error_message = Column(Text, nullable=True)

    # Optional client hints ------------------------------------------------
    # Strategy to use if this operation hits a conflict (None = default per
    # conflict type) and the record version the client last observed.
    conflict_strategy = Column(_enum(ResolutionStrategy, "op_conflict_strategy_enum"), nullable=True)
    base_version = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now_naive)
    updated_at = Column(DateTime, nullable=False, default=utc_now_naive)
    processed_at = Column(DateTime, nullable=True)


class SyncConflict(Base):
    __tablename__ = "sync_conflicts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    # Operation that triggered the conflict
    operation_id = Column(String(64), nullable=True, index=True)

    table_name = Column(String(63), nullable=False)
    record_id = Column(String, nullable=False)
    conflict_type = Column(_enum(ConflictType, "conflict_type_enum"), nullable=False)
    local_data = Column(JSON, nullable=True)
    server_data = Column(JSON, nullable=True)

    resolution_strategy = Column(_enum(ResolutionStrategy, "resolution_strategy_enum"), nullable=True)
    status = Column(
        _enum(ConflictStatus, "conflict_status_enum"),
        nullable=False,
        default=ConflictStatus.PENDING,
        index=True,
    )
    resolved_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now_naive)
    resolved_at = Column(DateTime, nullable=True)


class DataVersion(Base):
    """Per-record version entry.  Only :class:`VersionRegistry.bump` writes it."""

    __tablename__ = "data_versions"
    __table_args__ = (UniqueConstraint("user_id", "table_name", "record_id", name="uq_data_versions_user_table_record"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    table_name = Column(String(63), nullable=False)
    record_id = Column(String, nullable=False)

    version = Column(Integer, nullable=False, default=1)
    last_modified_by = Column(_enum(ModifiedBy, "modified_by_enum"), nullable=False, default=ModifiedBy.SERVER)
    last_modified_at = Column(DateTime, nullable=False, default=utc_now_naive)
    # Digest of identity + version (divergence detection)
    checksum = Column(String(32), nullable=False)
    # Digest of the committed payload alone (equality-of-content queries)
    content_checksum = Column(String(32), nullable=True)


class SyncStatus(Base):
    __tablename__ = "sync_status"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, unique=True, index=True)

    pending_operations_count = Column(Integer, nullable=False, default=0)
    conflicts_count = Column(Integer, nullable=False, default=0)

    is_online = Column(Boolean, nullable=False, default=True)
    last_online_at = Column(DateTime, nullable=True)

    last_sync_token = Column(String(64), nullable=True)
    last_sync_at = Column(DateTime, nullable=True)
    last_sync_ok = Column(Boolean, nullable=True)
    last_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now_naive)
    updated_at = Column(DateTime, nullable=False, default=utc_now_naive, onupdate=utc_now_naive)


class SyncHistory(Base):
    """Append-only journal of sync sessions."""

    __tablename__ = "sync_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    sync_type = Column(_enum(SyncType, "sync_type_enum"), nullable=False)

    operations_processed = Column(Integer, nullable=False, default=0)
    conflicts_resolved = Column(Integer, nullable=False, default=0)
    duration_ms = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False, default=True)
    error = Column(Text, nullable=True)
    sync_token = Column(String(64), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now_naive, index=True)


__all__ = ["OfflineOperation", "SyncConflict", "DataVersion", "SyncStatus", "SyncHistory"]
