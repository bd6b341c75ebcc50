"""Domain exceptions raised by the sync engine.

Every exception carries a stable ``kind`` string.  Routers translate kinds to
HTTP status codes; the orchestrator stores ``str(exc)`` on the failed
operation.
"""


class SyncError(Exception):
    """Base class for all engine errors."""

    kind = "internal"

    def __init__(self, message: str = "", *, kind: str | None = None):
        super().__init__(message or self.kind)
        if kind is not None:
            self.kind = kind


class BadInputError(SyncError):
    """Malformed operation or conflict request. Nothing is persisted."""

    kind = "bad_input"


class BadKindError(BadInputError):
    kind = "bad_kind"


class BadPayloadError(BadInputError):
    kind = "bad_payload"


class BadRecordIdError(BadInputError):
    kind = "bad_record_id"


class BadStrategyError(BadInputError):
    kind = "bad_strategy"


class NotFoundError(SyncError):
    """Unknown conflict id, or update/delete against an absent record."""

    kind = "not_found"


class StoreError(SyncError):
    """The record store refused a write."""

    kind = "store_error"


class ConflictUnresolvedError(SyncError):
    """A conflict needs a manual decision before its operation can be applied."""

    kind = "conflict_unresolved"


class SyncCancelledError(SyncError):
    kind = "cancelled"


class InvalidTransition(SyncError):
    """Operation status change not allowed by the queue state machine."""

    kind = "internal"

    def __init__(self, operation_id: str, current: str, target: str):
        super().__init__(f"operation {operation_id}: illegal transition {current} -> {target}")
        self.operation_id = operation_id
        self.current = current
        self.target = target


__all__ = [
    "SyncError",
    "BadInputError",
    "BadKindError",
    "BadPayloadError",
    "BadRecordIdError",
    "BadStrategyError",
    "NotFoundError",
    "StoreError",
    "ConflictUnresolvedError",
    "SyncCancelledError",
    "InvalidTransition",
]
