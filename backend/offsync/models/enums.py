"""Shared *Enum* definitions for SQLAlchemy & Pydantic models.

The Enums inherit from ``str`` so that:

* JSON serialisation remains unchanged (values render as plain strings).
* Equality checks against raw literals (``status == "pending"``) keep working.
"""

from __future__ import annotations

from enum import Enum


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OperationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ConflictType(str, Enum):
    VERSION_MISMATCH = "version_mismatch"
    CONCURRENT_EDIT = "concurrent_edit"
    DELETED_MODIFIED = "deleted_modified"


class ResolutionStrategy(str, Enum):
    SERVER_WINS = "server_wins"
    CLIENT_WINS = "client_wins"
    MERGE = "merge"
    MANUAL = "manual"


class ConflictStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    IGNORED = "ignored"


class SyncType(str, Enum):
    INCREMENTAL = "incremental"
    SELECTIVE = "selective"
    FULL = "full"


class ModifiedBy(str, Enum):
    SERVER = "server"
    CLIENT = "client"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


__all__ = [
    "OperationType",
    "OperationStatus",
    "ConflictType",
    "ResolutionStrategy",
    "ConflictStatus",
    "SyncType",
    "ModifiedBy",
    "Severity",
]
