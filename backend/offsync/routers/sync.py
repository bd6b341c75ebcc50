"""
Router for offline sync endpoints.

Every route acts on the calling user (see ``get_current_user_id``) and
delegates to the process-wide :class:`SyncEngine`.
"""

import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi import status

from offsync.constants import SYNC_PREFIX
from offsync.dependencies.auth import get_current_user_id
from offsync.errors import SyncError
from offsync.models.enums import ConflictStatus
from offsync.models.enums import OperationStatus
from offsync.schemas.schemas import Conflict
from offsync.schemas.schemas import ConflictAnalysis
from offsync.schemas.schemas import ConflictStatistics
from offsync.schemas.schemas import EnqueueResponse
from offsync.schemas.schemas import Operation
from offsync.schemas.schemas import PresenceResponse
from offsync.schemas.schemas import ResolveConflictResponse
from offsync.schemas.schemas import SyncHistoryEntry
from offsync.schemas.schemas import SyncRequest
from offsync.schemas.schemas import SyncResult
from offsync.schemas.schemas import SyncStatusOut
from offsync.services.sync_engine import SyncEngine
from offsync.services.sync_engine import get_sync_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix=SYNC_PREFIX, tags=["sync"])

_STATUS_BY_KIND = {
    "bad_input": status.HTTP_400_BAD_REQUEST,
    "bad_kind": status.HTTP_400_BAD_REQUEST,
    "bad_payload": status.HTTP_400_BAD_REQUEST,
    "bad_record_id": status.HTTP_400_BAD_REQUEST,
    "bad_strategy": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict_unresolved": status.HTTP_409_CONFLICT,
    "cancelled": status.HTTP_409_CONFLICT,
}


def _http_error(exc: SyncError) -> HTTPException:
    code = _STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if code >= 500:
        logger.error(f"Sync request failed ({exc.kind}): {exc}")
    return HTTPException(status_code=code, detail={"kind": exc.kind, "message": str(exc)})


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


@router.post("/queue", response_model=EnqueueResponse, status_code=status.HTTP_201_CREATED)
async def queue_operation(
    operation: Dict[str, Any] = Body(...),
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Queue one offline operation.  Re-sending an ``operation_id`` is idempotent."""
    try:
        row = await engine.enqueue(user_id, operation)
    except SyncError as exc:
        raise _http_error(exc)
    return EnqueueResponse(operation_id=row.operation_id, status=row.status)


@router.get("/operations", response_model=List[Operation])
def read_operations(
    status_filter: Optional[OperationStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=1000),
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    return engine.list_operations(user_id, status=status_filter, limit=limit)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.get("/status", response_model=SyncStatusOut)
def read_status(
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    return engine.get_sync_status(user_id)


@router.post("/sync", response_model=SyncResult)
async def run_sync(
    request: Optional[SyncRequest] = None,
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Drain the queue.  ``since`` makes it selective, ``full`` returns every record."""
    request = request or SyncRequest()
    try:
        if request.since is not None:
            return await engine.sync_selective(user_id, request.since)
        if request.full:
            return await engine.sync_full(user_id)
        return await engine.sync_all(user_id)
    except SyncError as exc:
        raise _http_error(exc)


@router.post("/force", response_model=SyncResult)
async def force_sync(
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Mark the user online and sync immediately."""
    try:
        return await engine.force_sync(user_id)
    except SyncError as exc:
        raise _http_error(exc)


@router.get("/history", response_model=List[SyncHistoryEntry])
def read_history(
    limit: int = Query(default=50, ge=1, le=500),
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    return engine.list_sync_history(user_id, limit=limit)


@router.get("/messages", response_model=List[Dict[str, Any]])
def read_recent_messages(
    limit: int = Query(default=50, ge=1, le=500),
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Push messages from the retention window, newest first."""
    return engine.recent_messages(user_id, limit)


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


@router.get("/conflicts", response_model=List[Conflict])
def read_conflicts(
    status_filter: Optional[ConflictStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=1000),
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    return engine.list_conflicts(user_id, status=status_filter, limit=limit)


@router.get("/conflicts/stats", response_model=ConflictStatistics)
def read_conflict_statistics(
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    return engine.conflict_statistics(user_id)


@router.get("/conflicts/{conflict_id}/analysis", response_model=ConflictAnalysis)
def analyze_conflict(
    conflict_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    try:
        return engine.analyze_conflict(user_id, conflict_id)
    except SyncError as exc:
        raise _http_error(exc)


@router.post("/conflicts/{conflict_id}/resolve", response_model=ResolveConflictResponse)
async def resolve_conflict(
    conflict_id: int,
    strategy: str = Body(..., embed=True),
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    try:
        resolved = await engine.resolve_conflict(user_id, conflict_id, strategy)
    except SyncError as exc:
        raise _http_error(exc)
    return ResolveConflictResponse(
        conflict_id=conflict_id,
        strategy=strategy,
        status=ConflictStatus.RESOLVED,
        resolved_data=resolved,
    )


@router.post("/conflicts/{conflict_id}/ignore", response_model=Conflict)
async def ignore_conflict(
    conflict_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    try:
        return await engine.ignore_conflict(user_id, conflict_id)
    except SyncError as exc:
        raise _http_error(exc)


# ---------------------------------------------------------------------------
# Presence
# ---------------------------------------------------------------------------


@router.post("/online", response_model=PresenceResponse)
async def go_online(
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    changed = await engine.set_online(user_id)
    return PresenceResponse(user_id=user_id, is_online=True, changed=changed)


@router.post("/offline", response_model=PresenceResponse)
async def go_offline(
    user_id: int = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
):
    changed = await engine.set_offline(user_id)
    return PresenceResponse(user_id=user_id, is_online=False, changed=changed)
