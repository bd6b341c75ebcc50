"""Sync Orchestrator.

Drives sync sessions for one user at a time:

1. load the user's pending operations in arrival order
2. per operation: take it, detect and resolve conflicts, then apply the write,
   bump the record version and complete the operation in one transaction
3. sweep pending conflicts that have a deterministic resolution
4. finalise the sync status row and append a journal entry
5. push ``sync_completed`` to the user's live sessions

The engine also hosts the presence switch, the background retry pass for
failed operations and the conflict-management entry points.  Background work
runs as tasks owned by the engine and is cancelled by :meth:`shutdown`.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import timedelta
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

import offsync.database as _db
from offsync.config import Settings
from offsync.config import get_settings
from offsync.constants import WELL_KNOWN_KINDS
from offsync.crud import crud
from offsync.database import db_session
from offsync.errors import BadInputError
from offsync.errors import BadKindError
from offsync.errors import BadStrategyError
from offsync.errors import NotFoundError
from offsync.errors import StoreError
from offsync.errors import SyncError
from offsync.models.enums import ConflictStatus
from offsync.models.enums import ConflictType
from offsync.models.enums import ModifiedBy
from offsync.models.enums import OperationStatus
from offsync.models.enums import OperationType
from offsync.models.enums import ResolutionStrategy
from offsync.models.enums import SyncType
from offsync.models.sync import OfflineOperation
from offsync.models.sync import SyncConflict
from offsync.models.sync import SyncHistory
from offsync.schemas.schemas import ConflictAnalysis
from offsync.schemas.schemas import ConflictStatistics
from offsync.schemas.schemas import OperationCreate
from offsync.schemas.schemas import SyncResult
from offsync.schemas.schemas import SyncStatusOut
from offsync.services import presence
from offsync.services.conflict_resolver import ConflictResolver
from offsync.services.kv_store import KeyValueStore
from offsync.services.notifier import PushNotifier
from offsync.services.operation_queue import OperationQueue
from offsync.services.record_gateway import RecordGateway
from offsync.services.user_locks import UserLockManager
from offsync.services.version_registry import VersionRegistry
from offsync.utils.ids import generate_sync_token
from offsync.utils.json_helpers import digest
from offsync.utils.json_helpers import set_json_field
from offsync.utils.time import to_naive_utc
from offsync.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

# Per-operation outcomes
COMPLETED = "completed"
FAILED = "failed"
DEFERRED = "deferred"  # waiting on a manual conflict decision
SKIPPED = "skipped"


@dataclass
class _SessionState:
    """Mutable state of one sync session, only touched under the user's lock."""

    # (table_name, record_id) -> payload digest of updates applied this session
    edits: Dict[tuple, str] = field(default_factory=dict)
    completed: int = 0
    failed: int = 0
    deferred: int = 0
    conflicts_resolved: int = 0

    def count(self, outcome: str) -> None:
        if outcome == COMPLETED:
            self.completed += 1
        elif outcome == FAILED:
            self.failed += 1
        elif outcome == DEFERRED:
            self.deferred += 1


@dataclass
class _Plan:
    """What step 3 of an operation has to write, decided in step 2."""

    write: Optional[OperationType]
    conflict_resolved: bool = False


def _effective_write(
    op_type: OperationType,
    conflict_type: Optional[ConflictType],
    strategy: Optional[ResolutionStrategy],
    resolved: Optional[Dict[str, Any]],
) -> Optional[OperationType]:
    """Map an operation plus its conflict outcome to the write actually performed.

    ``None`` means the operation completes without touching the record.
    """
    if conflict_type != ConflictType.DELETED_MODIFIED:
        return op_type
    if op_type == OperationType.UPDATE:
        # Record is gone server-side: recreate it only if something survived
        # resolution (client_wins / merge), otherwise the deletion stands.
        return OperationType.CREATE if resolved else None
    if op_type == OperationType.DELETE:
        return OperationType.DELETE if strategy == ResolutionStrategy.CLIENT_WINS else None
    return op_type


class SyncEngine:
    def __init__(
        self,
        session_factory: Any = None,
        *,
        settings: Optional[Settings] = None,
        kv_store: Optional[KeyValueStore] = None,
        notifier: Optional[PushNotifier] = None,
        locks: Optional[UserLockManager] = None,
    ):
        settings = settings or get_settings()
        self._session_factory = session_factory
        self.batch_limit = settings.sync_batch_limit or None
        self.retry_base_delay = timedelta(seconds=settings.sync_retry_base_delay_seconds)
        self.processing_lease = timedelta(seconds=settings.sync_processing_lease_seconds)

        self.kv_store = kv_store or KeyValueStore(maxsize=settings.kv_max_entries)
        self.notifier = notifier or PushNotifier(self.kv_store, settings.push_retention_seconds)
        self.locks = locks or UserLockManager()
        self.queue = OperationQueue(default_max_retries=settings.sync_max_retries)
        self.gateway = RecordGateway()
        self.registry = VersionRegistry()
        self.resolver = ConflictResolver()

        self._tasks: set[asyncio.Task] = set()

    @property
    def session_factory(self):
        # Resolved lazily so tests that swap the module-level factory are honoured
        return self._session_factory or _db.default_session_factory

    # ------------------------------------------------------------------
    # Operation queue
    # ------------------------------------------------------------------

    async def enqueue(self, user_id: int, op: Union[OperationCreate, Dict[str, Any]]) -> OfflineOperation:
        """Queue an operation and return the stored row (existing row for a duplicate id)."""
        if not isinstance(op, OperationCreate):
            try:
                op = OperationCreate.model_validate(op)
            except ValidationError as exc:
                if any(err["loc"] and err["loc"][0] == "operation_type" for err in exc.errors()):
                    raise BadKindError("operation_type must be one of create, update, delete") from exc
                raise BadInputError(f"malformed operation: {exc.error_count()} validation error(s)") from exc

        try:
            with db_session(self.session_factory) as db:
                row, created = self.queue.enqueue(db, user_id, op)
        except SQLAlchemyError as exc:
            raise StoreError(f"could not queue operation: {exc}") from exc

        if created:
            await self.notifier.operation_queued(
                user_id,
                row.operation_id,
                OperationType(row.operation_type).value,
                row.table_name,
                row.record_id,
            )
        return row

    def list_pending(self, user_id: int, limit: Optional[int] = None) -> List[OfflineOperation]:
        with db_session(self.session_factory) as db:
            return self.queue.pending_for(db, user_id, limit=limit)

    def list_operations(
        self, user_id: int, status: Optional[OperationStatus] = None, limit: Optional[int] = None
    ) -> List[OfflineOperation]:
        with db_session(self.session_factory) as db:
            return crud.list_operations(db, user_id, status=status, limit=limit)

    # ------------------------------------------------------------------
    # Sync sessions
    # ------------------------------------------------------------------

    async def sync_all(self, user_id: int, *, timeout: Optional[float] = None) -> SyncResult:
        return await self._run_session(user_id, SyncType.INCREMENTAL, timeout=timeout)

    async def sync_selective(self, user_id: int, since: datetime, *, timeout: Optional[float] = None) -> SyncResult:
        if since is None:
            raise BadInputError("since is required for a selective sync")
        return await self._run_session(user_id, SyncType.SELECTIVE, since=to_naive_utc(since), timeout=timeout)

    async def sync_full(self, user_id: int, *, timeout: Optional[float] = None) -> SyncResult:
        """Like :meth:`sync_all` but the completion carries every well-known record."""
        return await self._run_session(user_id, SyncType.FULL, timeout=timeout)

    async def force_sync(self, user_id: int, *, timeout: Optional[float] = None) -> SyncResult:
        await self.set_online(user_id)
        return await self.sync_all(user_id, timeout=timeout)

    async def _run_session(
        self,
        user_id: int,
        sync_type: SyncType,
        *,
        since: Optional[datetime] = None,
        timeout: Optional[float] = None,
    ) -> SyncResult:
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        async with self.locks.lock(user_id):
            t0 = time.monotonic()
            state = _SessionState()
            token = generate_sync_token()
            selective_data = None
            cancelled = False

            try:
                with db_session(self.session_factory) as db:
                    pending = [op.id for op in self.queue.pending_for(db, user_id, limit=self.batch_limit)]
                logger.info(f"Sync {sync_type.value} for user {user_id}: {len(pending)} pending operations")

                for op_pk in pending:
                    # Safe point: between operations, never inside one
                    await asyncio.sleep(0)
                    if deadline is not None and loop.time() >= deadline:
                        cancelled = True
                        break
                    state.count(self._process_operation(user_id, op_pk, state))

                if not cancelled:
                    state.conflicts_resolved += self._sweep_conflicts(user_id)
                    if sync_type == SyncType.SELECTIVE:
                        selective_data = self._collect_records(since)
                    elif sync_type == SyncType.FULL:
                        selective_data = self._collect_records(None)

            except asyncio.CancelledError:
                self._finalize(user_id, sync_type, token, state, t0, ok=False, error="cancelled")
                raise
            except SQLAlchemyError as exc:
                self._finalize(user_id, sync_type, token, state, t0, ok=False, error=f"store_error: {exc}")
                raise StoreError(f"sync session failed: {exc}") from exc
            except SyncError as exc:
                self._finalize(user_id, sync_type, token, state, t0, ok=False, error=f"{exc.kind}: {exc}")
                raise

            result = self._finalize(
                user_id,
                sync_type,
                token,
                state,
                t0,
                ok=not cancelled,
                error="cancelled" if cancelled else None,
            )
            result.selective_data = selective_data
            result.cancelled = cancelled

        if not cancelled:
            await self.notifier.sync_completed(user_id, result)
        return result

    def _finalize(
        self,
        user_id: int,
        sync_type: SyncType,
        token: str,
        state: _SessionState,
        t0: float,
        *,
        ok: bool,
        error: Optional[str],
    ) -> SyncResult:
        duration_ms = int((time.monotonic() - t0) * 1000)
        result = SyncResult(
            ops_processed=state.completed,
            ops_failed=state.failed,
            conflicts_resolved=state.conflicts_resolved,
            duration_ms=duration_ms,
            sync_token=token,
            sync_type=sync_type,
            ok=ok,
        )
        try:
            with db_session(self.session_factory) as db:
                status = crud.get_or_create_sync_status(db, user_id)
                status.last_sync_token = token
                status.last_sync_at = utc_now_naive()
                status.last_sync_ok = ok
                status.last_sync_error = error
                crud.add_history(
                    db,
                    SyncHistory(
                        user_id=user_id,
                        sync_type=sync_type,
                        operations_processed=state.completed,
                        conflicts_resolved=state.conflicts_resolved,
                        duration_ms=duration_ms,
                        success=ok,
                        error=error,
                        sync_token=token,
                    ),
                )
        except SQLAlchemyError as exc:
            # The session outcome is still returned / raised to the caller
            logger.error(f"Could not journal sync session {token} for user {user_id}: {exc}")
        return result

    def _collect_records(self, since: Optional[datetime]) -> Dict[str, List[Dict[str, Any]]]:
        with db_session(self.session_factory) as db:
            return {kind: self.gateway.changed_since(db, kind, since) for kind in WELL_KNOWN_KINDS}

    # ------------------------------------------------------------------
    # Per-operation path (shared by sessions and the retry loop)
    # ------------------------------------------------------------------

    def _process_operation(self, user_id: int, op_pk: int, state: _SessionState) -> str:
        """Take, reconcile and apply one operation.  Never raises for per-op failures."""
        with db_session(self.session_factory) as db:
            op = db.get(OfflineOperation, op_pk)
            if op is None or op.user_id != user_id or OperationStatus(op.status) != OperationStatus.PENDING:
                return SKIPPED
            self.queue.mark_processing(db, op)
            edit_key = (op.table_name, op.record_id)
            local_digest = digest(op.data or {})
            is_update = OperationType(op.operation_type) == OperationType.UPDATE

        try:
            with db_session(self.session_factory) as db:
                op = db.get(OfflineOperation, op_pk)
                plan = self._reconcile(db, op, state)

            if plan is None:
                return DEFERRED
            if plan.conflict_resolved:
                state.conflicts_resolved += 1

            with db_session(self.session_factory) as db:
                op = db.get(OfflineOperation, op_pk)
                self._apply_and_complete(db, op, plan.write)

        except SyncError as exc:
            logger.warning(f"Operation {op_pk} for user {user_id} failed: {exc.kind}: {exc}")
            self._fail(op_pk, f"{exc.kind}: {exc}")
            return FAILED
        except SQLAlchemyError as exc:
            logger.warning(f"Operation {op_pk} for user {user_id} failed in the store: {exc}")
            self._fail(op_pk, f"store_error: {exc}")
            return FAILED
        except Exception as exc:  # noqa: BLE001 – programmer error, keep the session alive
            logger.exception(f"Internal error while processing operation {op_pk} for user {user_id}")
            self._fail(op_pk, f"internal: {exc}")
            return FAILED

        if is_update:
            state.edits[edit_key] = local_digest
        return COMPLETED

    def _reconcile(self, db, op: OfflineOperation, state: _SessionState) -> Optional[_Plan]:
        """Detect and resolve a conflict for *op*.

        Returns the write plan, or ``None`` when a manual decision is needed
        (the operation then stays ``processing`` and the conflict ``pending``).
        """
        op_type = OperationType(op.operation_type)
        if op_type == OperationType.CREATE:
            return _Plan(write=op_type)

        server_data = self.gateway.snapshot(db, op.table_name, op.record_id)
        entry = self.registry.get(db, op.user_id, op.table_name, op.record_id)
        conflict_type = self.resolver.detect(op, server_data, entry, state.edits)
        if conflict_type is None:
            return _Plan(write=op_type)

        conflict = self.resolver.record(db, op, conflict_type, server_data)
        strategy = ResolutionStrategy(op.conflict_strategy or self.resolver.default_strategy(conflict_type))
        resolved = self.resolver.settle(conflict, strategy)

        if conflict.status == ConflictStatus.PENDING:
            crud.adjust_counts(db, op.user_id, conflicts=+1)
            logger.info(f"Conflict {conflict.id} awaits a manual decision; operation {op.operation_id} on hold")
            return None

        set_json_field(op, "data", resolved)
        return _Plan(
            write=_effective_write(op_type, conflict_type, strategy, resolved),
            conflict_resolved=True,
        )

    def _apply_and_complete(self, db, op: OfflineOperation, write: Optional[OperationType]) -> None:
        """Store write, version bump and status change – one transaction."""
        if write is not None:
            self.gateway.apply(db, write, op.table_name, op.record_id, op.data)
        self.registry.bump(db, op.user_id, op.table_name, op.record_id, op.data, ModifiedBy.SERVER)
        self.queue.mark_completed(db, op)

    def _fail(self, op_pk: int, message: str) -> None:
        try:
            with db_session(self.session_factory) as db:
                op = db.get(OfflineOperation, op_pk)
                if op is not None and OperationStatus(op.status) == OperationStatus.PROCESSING:
                    self.queue.mark_failed(db, op, message)
        except SQLAlchemyError as exc:
            logger.error(f"Could not mark operation {op_pk} as failed: {exc}")

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def _sweep_conflicts(self, user_id: int) -> int:
        """Resolve pending conflicts that have no strategy yet with their default.

        Conflicts explicitly on ``manual`` are left for a human decision.
        """
        with db_session(self.session_factory) as db:
            candidates = [c.id for c in crud.list_conflicts_for_sweep(db, user_id) if c.resolution_strategy is None]

        resolved = 0
        for conflict_id in candidates:
            try:
                self._settle_conflict(user_id, conflict_id, None)
                resolved += 1
            except SyncError as exc:
                logger.warning(f"Sweep could not resolve conflict {conflict_id} for user {user_id}: {exc}")
        return resolved

    def _settle_conflict(
        self,
        user_id: int,
        conflict_id: int,
        strategy: Optional[ResolutionStrategy],
    ) -> SyncConflict:
        """Resolve a pending conflict and finish the operation waiting on it, if any."""
        with db_session(self.session_factory) as db:
            conflict = crud.get_conflict(db, user_id, conflict_id)
            if conflict is None:
                raise NotFoundError(f"conflict {conflict_id} not found")
            if ConflictStatus(conflict.status) != ConflictStatus.PENDING:
                raise BadInputError(f"conflict {conflict_id} is already {ConflictStatus(conflict.status).value}")

            conflict_type = ConflictType(conflict.conflict_type)
            strategy = ResolutionStrategy(strategy or self.resolver.default_strategy(conflict_type))
            if strategy == ResolutionStrategy.MANUAL:
                raise BadStrategyError("manual is not a resolving strategy")

            resolved = self.resolver.settle(conflict, strategy)
            crud.adjust_counts(db, user_id, conflicts=-1)

            op = crud.get_operation(db, user_id, conflict.operation_id) if conflict.operation_id else None
            waiting_pk = None
            write = None
            if op is not None and OperationStatus(op.status) == OperationStatus.PROCESSING:
                set_json_field(op, "data", resolved)
                waiting_pk = op.id
                write = _effective_write(OperationType(op.operation_type), conflict_type, strategy, resolved)

        if waiting_pk is not None:
            try:
                with db_session(self.session_factory) as db:
                    op = db.get(OfflineOperation, waiting_pk)
                    self._apply_and_complete(db, op, write)
            except (SyncError, SQLAlchemyError) as exc:
                kind = exc.kind if isinstance(exc, SyncError) else "store_error"
                logger.warning(f"Operation behind conflict {conflict_id} failed: {kind}: {exc}")
                self._fail(waiting_pk, f"{kind}: {exc}")

        return conflict

    async def resolve_conflict(self, user_id: int, conflict_id: int, strategy: ResolutionStrategy) -> Dict[str, Any]:
        """Resolve *conflict_id* with *strategy* and return the resolved data."""
        try:
            strategy = ResolutionStrategy(strategy)
        except ValueError as exc:
            raise BadStrategyError(f"unknown resolution strategy: {strategy!r}") from exc

        async with self.locks.lock(user_id):
            conflict = self._settle_conflict(user_id, conflict_id, strategy)
        return dict(conflict.resolved_data or {})

    async def ignore_conflict(self, user_id: int, conflict_id: int) -> SyncConflict:
        """Drop a pending conflict; an operation waiting on it is marked failed."""
        async with self.locks.lock(user_id):
            with db_session(self.session_factory) as db:
                conflict = crud.get_conflict(db, user_id, conflict_id)
                if conflict is None:
                    raise NotFoundError(f"conflict {conflict_id} not found")
                if ConflictStatus(conflict.status) != ConflictStatus.PENDING:
                    raise BadInputError(f"conflict {conflict_id} is already {ConflictStatus(conflict.status).value}")

                self.resolver.ignore(conflict)
                crud.adjust_counts(db, user_id, conflicts=-1)

                op = crud.get_operation(db, user_id, conflict.operation_id) if conflict.operation_id else None
                if op is not None and OperationStatus(op.status) == OperationStatus.PROCESSING:
                    self.queue.mark_failed(db, op, f"conflict {conflict_id} ignored")
        return conflict

    def list_conflicts(
        self, user_id: int, status: Optional[ConflictStatus] = None, limit: Optional[int] = None
    ) -> List[SyncConflict]:
        with db_session(self.session_factory) as db:
            return crud.list_conflicts(db, user_id, status=status, limit=limit)

    def analyze_conflict(self, user_id: int, conflict_id: int) -> ConflictAnalysis:
        with db_session(self.session_factory) as db:
            conflict = crud.get_conflict(db, user_id, conflict_id)
            if conflict is None:
                raise NotFoundError(f"conflict {conflict_id} not found")
            return self.resolver.analyze(conflict)

    def conflict_statistics(self, user_id: int) -> ConflictStatistics:
        with db_session(self.session_factory) as db:
            return self.resolver.statistics(db, user_id)

    # ------------------------------------------------------------------
    # Status, journal, presence
    # ------------------------------------------------------------------

    def get_sync_status(self, user_id: int) -> SyncStatusOut:
        with db_session(self.session_factory) as db:
            status = crud.get_sync_status(db, user_id)
            if status is None:
                return SyncStatusOut(user_id=user_id)
            return SyncStatusOut.model_validate(status)

    def list_sync_history(self, user_id: int, limit: Optional[int] = None) -> List[SyncHistory]:
        with db_session(self.session_factory) as db:
            return crud.list_history(db, user_id, limit=limit)

    async def set_online(self, user_id: int) -> bool:
        return await self._set_presence(user_id, True)

    async def set_offline(self, user_id: int) -> bool:
        return await self._set_presence(user_id, False)

    async def _set_presence(self, user_id: int, online: bool) -> bool:
        with db_session(self.session_factory) as db:
            changed = presence.set_presence(db, user_id, online)
        if changed:
            await self.notifier.presence_update(user_id, online)
        return changed

    def recent_messages(self, user_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        return self.notifier.recent_messages(user_id, limit)

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    async def retry_failed_operations(self) -> Dict[str, int]:
        """One pass of the retry loop.

        Operations left ``processing`` past the lease (a crash between the
        take and the apply transaction) are failed first and retried in the
        same pass.  Offline users and users with a session in flight are
        skipped; their operations stay ``failed`` until a later pass.
        Per-operation errors only surface in logs and on the operation itself.
        """
        stats = {"retried": 0, COMPLETED: 0, FAILED: 0, DEFERRED: 0, "skipped_users": 0, "reclaimed": 0}

        try:
            with db_session(self.session_factory) as db:
                now = utc_now_naive()
                reclaimed = self._reclaim_stale(db, now)
                stats["reclaimed"] = len(reclaimed)
                due = {op.id: op for op in self.queue.retryable(db, now, self.retry_base_delay)}
                due.update((op.id, op) for op in reclaimed if op.retry_count < op.max_retries)
                ordered = sorted(due.values(), key=lambda op: (op.created_at, op.operation_id))
                candidates = [(op.user_id, op.id) for op in ordered]
        except SQLAlchemyError as exc:
            logger.error(f"Retry pass could not load failed operations: {exc}")
            return stats

        by_user: Dict[int, List[int]] = {}
        for user_id, op_pk in candidates:
            by_user.setdefault(user_id, []).append(op_pk)

        for user_id, op_pks in by_user.items():
            await asyncio.sleep(0)

            with db_session(self.session_factory) as db:
                online = presence.is_online(db, user_id)
            if not online:
                stats["skipped_users"] += 1
                continue

            async with self.locks.try_lock(user_id) as acquired:
                if not acquired:
                    stats["skipped_users"] += 1
                    continue

                state = _SessionState()
                for op_pk in op_pks:
                    if not self._reset_for_retry(user_id, op_pk):
                        continue
                    stats["retried"] += 1
                    outcome = self._process_operation(user_id, op_pk, state)
                    if outcome in stats:
                        stats[outcome] += 1

        if stats["retried"]:
            logger.info(f"Retry pass: {stats}")
        return stats

    def _reclaim_stale(self, db, now: datetime) -> List[OfflineOperation]:
        """Fail operations stranded in ``processing`` so the retry path picks them up.

        Users with a session in flight are left alone; their operations are
        still being worked on.
        """
        stale = [
            op
            for op in self.queue.stale_processing(db, now, self.processing_lease)
            if not self.locks.is_locked(op.user_id)
        ]
        for op in stale:
            self.queue.mark_failed(db, op, "internal: abandoned while processing")
            logger.warning(f"Reclaimed operation {op.operation_id} of user {op.user_id} stuck in processing")
        return stale

    def _reset_for_retry(self, user_id: int, op_pk: int) -> bool:
        try:
            with db_session(self.session_factory) as db:
                op = db.get(OfflineOperation, op_pk)
                if op is None or op.user_id != user_id or OperationStatus(op.status) != OperationStatus.FAILED:
                    return False
                if op.retry_count >= op.max_retries:
                    return False
                self.queue.reset_for_retry(db, op)
                return True
        except SQLAlchemyError as exc:
            logger.error(f"Could not reset operation {op_pk} for retry: {exc}")
            return False

    # ------------------------------------------------------------------
    # Background task ownership
    # ------------------------------------------------------------------

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_retry_tick(self) -> Dict[str, int]:
        """Entry point for the scheduler: run a retry pass as an engine-owned task."""
        return await self.spawn(self.retry_failed_operations())

    @property
    def active_task_count(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} sync background task(s)")


# Process-wide engine used by the HTTP layer and the retry scheduler
sync_engine = SyncEngine()


def get_sync_engine() -> SyncEngine:
    """FastAPI dependency returning the process-wide engine (overridable in tests)."""
    return sync_engine


__all__ = ["SyncEngine", "sync_engine", "get_sync_engine"]
