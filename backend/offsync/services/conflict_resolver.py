"""Conflict detection and resolution.

Detection compares a queued operation against the authoritative record and
its version entry.  Resolution turns ``(local_data, server_data, strategy)``
into the payload that is actually written.

Merge rules (``merge`` strategy), applied to every non-null client key in
sorted key order:

* key missing on the server          -> client value
* equal by canonical JSON            -> server value
* both mappings or arrays            -> server value
* both strings                       -> longer one, server on a tie
* both numbers (booleans excluded)   -> larger one, server on a tie
* both booleans                      -> ``True`` wins
* anything else (mixed types, nulls) -> server value
"""

import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from offsync.errors import BadStrategyError
from offsync.models.enums import ConflictStatus
from offsync.models.enums import ConflictType
from offsync.models.enums import ModifiedBy
from offsync.models.enums import OperationType
from offsync.models.enums import ResolutionStrategy
from offsync.models.enums import Severity
from offsync.models.sync import DataVersion
from offsync.models.sync import OfflineOperation
from offsync.models.sync import SyncConflict
from offsync.schemas.schemas import ConflictAnalysis
from offsync.schemas.schemas import ConflictStatistics
from offsync.utils.json_helpers import digest
from offsync.utils.json_helpers import json_equal
from offsync.utils.json_helpers import version_checksum
from offsync.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

DEFAULT_STRATEGIES: Dict[ConflictType, ResolutionStrategy] = {
    ConflictType.VERSION_MISMATCH: ResolutionStrategy.SERVER_WINS,
    ConflictType.CONCURRENT_EDIT: ResolutionStrategy.MERGE,
    ConflictType.DELETED_MODIFIED: ResolutionStrategy.SERVER_WINS,
}

_DESCRIPTIONS = {
    ConflictType.VERSION_MISMATCH: (
        "Version mismatch detected for record {record} in table {table}. {count} fields have conflicting values."
    ),
    ConflictType.CONCURRENT_EDIT: (
        "Concurrent edit detected for record {record} in table {table}. {count} fields were modified simultaneously."
    ),
    ConflictType.DELETED_MODIFIED: "Record {record} in table {table} was deleted on server but modified on client.",
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _tie_break(server_value: Any, client_value: Any) -> Any:
    if isinstance(server_value, (dict, list)) or isinstance(client_value, (dict, list)):
        return server_value
    if isinstance(server_value, bool) and isinstance(client_value, bool):
        return server_value or client_value
    if isinstance(server_value, str) and isinstance(client_value, str):
        return client_value if len(client_value) > len(server_value) else server_value
    if _is_number(server_value) and _is_number(client_value):
        return client_value if client_value > server_value else server_value
    return server_value


def session_digest(op: OfflineOperation, entry: DataVersion) -> str:
    """Digest the client's view of a record for comparison with ``entry.checksum``.

    A client that reports the version it last observed (``base_version``) is
    compared on identity + version, so it agrees with the stored checksum
    exactly when nothing changed since.  Without a base version only the
    payload itself is available, which never matches an identity checksum.
    """
    if op.base_version is not None:
        return version_checksum(op.table_name, op.record_id, op.base_version, ModifiedBy(entry.last_modified_by).value)
    return digest(op.data or {})


class ConflictResolver:
    # ------------------------------------------------------------------
    # detection
    # ------------------------------------------------------------------

    @staticmethod
    def detect(
        op: OfflineOperation,
        server_data: Optional[Dict[str, Any]],
        entry: Optional[DataVersion],
        session_edits: Optional[Dict[tuple, str]] = None,
    ) -> Optional[ConflictType]:
        """Classify divergence for *op*, or ``None`` when it can be applied as is.

        *session_edits* maps ``(table_name, record_id)`` to the payload digest
        of updates already applied earlier in the same sync session.
        """
        op_type = OperationType(op.operation_type)

        if op_type == OperationType.UPDATE:
            if server_data is None:
                return ConflictType.DELETED_MODIFIED
            previous = (session_edits or {}).get((op.table_name, op.record_id))
            if previous is not None and previous != digest(op.data or {}):
                return ConflictType.CONCURRENT_EDIT
            if entry is not None and session_digest(op, entry) != entry.checksum:
                return ConflictType.VERSION_MISMATCH
            return None

        if op_type == OperationType.DELETE and entry is not None:
            modified_by_client = ModifiedBy(entry.last_modified_by) == ModifiedBy.CLIENT
            if modified_by_client and (op.base_version is None or entry.version > op.base_version):
                return ConflictType.DELETED_MODIFIED

        return None

    @staticmethod
    def default_strategy(conflict_type: ConflictType) -> ResolutionStrategy:
        return DEFAULT_STRATEGIES[ConflictType(conflict_type)]

    # ------------------------------------------------------------------
    # resolution
    # ------------------------------------------------------------------

    @staticmethod
    def merge(local_data: Optional[Dict[str, Any]], server_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        merged: Dict[str, Any] = dict(server_data or {})
        local_data = local_data or {}
        for key in sorted(local_data):
            client_value = local_data[key]
            if client_value is None:
                continue
            if key not in merged:
                merged[key] = client_value
                continue
            server_value = merged[key]
            if json_equal(server_value, client_value):
                continue
            merged[key] = _tie_break(server_value, client_value)
        return dict(sorted(merged.items()))

    def resolve(
        self,
        local_data: Optional[Dict[str, Any]],
        server_data: Optional[Dict[str, Any]],
        strategy: ResolutionStrategy,
    ) -> Dict[str, Any]:
        try:
            strategy = ResolutionStrategy(strategy)
        except ValueError as exc:
            raise BadStrategyError(f"unknown resolution strategy: {strategy!r}") from exc

        if strategy == ResolutionStrategy.CLIENT_WINS:
            return dict(local_data or {})
        if strategy == ResolutionStrategy.MERGE:
            return self.merge(local_data, server_data)
        # server_wins and manual both fall back to the server copy
        return dict(server_data or {})

    def record(
        self,
        db: Session,
        op: OfflineOperation,
        conflict_type: ConflictType,
        server_data: Optional[Dict[str, Any]],
    ) -> SyncConflict:
        """Persist a new pending conflict triggered by *op*."""
        conflict = SyncConflict(
            user_id=op.user_id,
            operation_id=op.operation_id,
            table_name=op.table_name,
            record_id=op.record_id,
            conflict_type=conflict_type,
            local_data=dict(op.data or {}),
            server_data=dict(server_data or {}),
            status=ConflictStatus.PENDING,
        )
        db.add(conflict)
        db.flush()
        logger.info(
            f"Conflict {conflict.id} ({ConflictType(conflict_type).value}) on "
            f"{op.table_name}/{op.record_id} for user {op.user_id}"
        )
        return conflict

    def settle(self, conflict: SyncConflict, strategy: ResolutionStrategy) -> Dict[str, Any]:
        """Resolve *conflict* in place with *strategy* and return the resolved payload.

        ``manual`` stores the server copy as a provisional result and leaves
        the conflict pending.
        """
        strategy = ResolutionStrategy(strategy)
        resolved = self.resolve(conflict.local_data, conflict.server_data, strategy)
        conflict.resolution_strategy = strategy
        conflict.resolved_data = resolved
        if strategy != ResolutionStrategy.MANUAL:
            conflict.status = ConflictStatus.RESOLVED
            conflict.resolved_at = utc_now_naive()
        return resolved

    @staticmethod
    def ignore(conflict: SyncConflict) -> None:
        conflict.status = ConflictStatus.IGNORED
        conflict.resolved_at = utc_now_naive()

    # ------------------------------------------------------------------
    # analysis
    # ------------------------------------------------------------------

    @staticmethod
    def conflicting_fields(local_data: Optional[Dict[str, Any]], server_data: Optional[Dict[str, Any]]) -> List[str]:
        local_data = local_data or {}
        server_data = server_data or {}
        fields = [key for key in local_data if key in server_data and not json_equal(local_data[key], server_data[key])]
        fields.extend(key for key in server_data if key not in local_data)
        return sorted(set(fields))

    @staticmethod
    def severity(field_count: int) -> Severity:
        if field_count == 0:
            return Severity.LOW
        if field_count <= 2:
            return Severity.MEDIUM
        if field_count <= 5:
            return Severity.HIGH
        return Severity.CRITICAL

    def analyze(self, conflict: SyncConflict) -> ConflictAnalysis:
        conflict_type = ConflictType(conflict.conflict_type)
        fields = self.conflicting_fields(conflict.local_data, conflict.server_data)
        description = _DESCRIPTIONS[conflict_type].format(
            record=conflict.record_id,
            table=conflict.table_name,
            count=len(fields),
        )
        return ConflictAnalysis(
            conflict_id=conflict.id,
            conflicting_fields=fields,
            severity=self.severity(len(fields)),
            recommended_strategy=self.default_strategy(conflict_type),
            description=description,
        )

    @staticmethod
    def statistics(db: Session, user_id: int) -> ConflictStatistics:
        stats = ConflictStatistics()

        rows = (
            db.query(SyncConflict.status, func.count(SyncConflict.id))
            .filter(SyncConflict.user_id == user_id)
            .group_by(SyncConflict.status)
            .all()
        )
        for status, count in rows:
            setattr(stats, ConflictStatus(status).value, count)
            stats.total += count

        for conflict_type, count in (
            db.query(SyncConflict.conflict_type, func.count(SyncConflict.id))
            .filter(SyncConflict.user_id == user_id)
            .group_by(SyncConflict.conflict_type)
            .all()
        ):
            stats.by_type[ConflictType(conflict_type).value] = count

        for strategy, count in (
            db.query(SyncConflict.resolution_strategy, func.count(SyncConflict.id))
            .filter(SyncConflict.user_id == user_id, SyncConflict.resolution_strategy.isnot(None))
            .group_by(SyncConflict.resolution_strategy)
            .all()
        ):
            stats.by_strategy[ResolutionStrategy(strategy).value] = count

        return stats


__all__ = ["ConflictResolver", "DEFAULT_STRATEGIES", "session_digest"]
