from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from offsync.models.enums import ConflictStatus
from offsync.models.enums import ConflictType
from offsync.models.enums import ModifiedBy
from offsync.models.enums import OperationStatus
from offsync.models.enums import OperationType
from offsync.models.enums import ResolutionStrategy
from offsync.models.enums import Severity
from offsync.models.enums import SyncType


# Operation schemas
class OperationCreate(BaseModel):
    """An operation as submitted by a client (no status, id optional)."""

    operation_id: Optional[str] = Field(default=None, max_length=64)
    operation_type: OperationType
    table_name: str
    record_id: str
    data: Optional[Dict[str, Any]] = None
    conflict_strategy: Optional[ResolutionStrategy] = None
    base_version: Optional[int] = Field(default=None, ge=1)
    max_retries: Optional[int] = Field(default=None, ge=0)


class Operation(BaseModel):
    id: int
    user_id: int
    operation_id: str
    operation_type: OperationType
    table_name: str
    record_id: str
    data: Optional[Dict[str, Any]] = None
    status: OperationStatus
    retry_count: int
    max_retries: int
    error_message: Optional[str] = None
    conflict_strategy: Optional[ResolutionStrategy] = None
    base_version: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EnqueueResponse(BaseModel):
    operation_id: str
    status: OperationStatus = OperationStatus.PENDING


# Conflict schemas
class Conflict(BaseModel):
    id: int
    user_id: int
    operation_id: Optional[str] = None
    table_name: str
    record_id: str
    conflict_type: ConflictType
    local_data: Optional[Dict[str, Any]] = None
    server_data: Optional[Dict[str, Any]] = None
    resolution_strategy: Optional[ResolutionStrategy] = None
    status: ConflictStatus
    resolved_data: Optional[Dict[str, Any]] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ResolveConflictRequest(BaseModel):
    strategy: ResolutionStrategy


class ResolveConflictResponse(BaseModel):
    conflict_id: int
    strategy: ResolutionStrategy
    status: ConflictStatus
    resolved_data: Dict[str, Any]


class ConflictAnalysis(BaseModel):
    conflict_id: Optional[int] = None
    conflicting_fields: List[str]
    severity: Severity
    recommended_strategy: ResolutionStrategy
    description: str


class ConflictStatistics(BaseModel):
    total: int = 0
    pending: int = 0
    resolved: int = 0
    ignored: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_strategy: Dict[str, int] = Field(default_factory=dict)


# Version schemas
class VersionEntry(BaseModel):
    user_id: int
    table_name: str
    record_id: str
    version: int
    last_modified_by: ModifiedBy
    last_modified_at: datetime
    checksum: str
    content_checksum: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# Sync status / journal
class SyncStatusOut(BaseModel):
    user_id: int
    pending_operations_count: int = 0
    conflicts_count: int = 0
    is_online: bool = True
    last_online_at: Optional[datetime] = None
    last_sync_token: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_sync_ok: Optional[bool] = None
    last_sync_error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SyncHistoryEntry(BaseModel):
    id: int
    user_id: int
    sync_type: SyncType
    operations_processed: int
    conflicts_resolved: int
    duration_ms: int
    success: bool
    error: Optional[str] = None
    sync_token: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SyncRequest(BaseModel):
    """Body of ``POST /sync``.  A ``since`` timestamp turns it into a selective sync."""

    since: Optional[datetime] = None
    full: bool = False


class SyncResult(BaseModel):
    ops_processed: int = 0
    ops_failed: int = 0
    conflicts_resolved: int = 0
    duration_ms: int = 0
    sync_token: str
    sync_type: SyncType = SyncType.INCREMENTAL
    ok: bool = True
    cancelled: bool = False
    selective_data: Optional[Dict[str, List[Dict[str, Any]]]] = None


class PresenceResponse(BaseModel):
    user_id: int
    is_online: bool
    changed: bool


__all__ = [
    "OperationCreate",
    "Operation",
    "EnqueueResponse",
    "Conflict",
    "ResolveConflictRequest",
    "ResolveConflictResponse",
    "ConflictAnalysis",
    "ConflictStatistics",
    "VersionEntry",
    "SyncStatusOut",
    "SyncHistoryEntry",
    "SyncRequest",
    "SyncResult",
    "PresenceResponse",
]
