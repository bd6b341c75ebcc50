"""Record Store Gateway.

Translates ``(operation_type, table_name, record_id, payload)`` into exactly
one row change.  A write runs through four explicit stages:

1. ``parse_record_id`` – coerce the opaque id (unsigned integer for typed kinds)
2. ``validate``       – deserialise the payload into the kind's schema
3. ``prepare``        – stamp timestamps and build the column values
4. ``write``          – insert / update / delete on the caller's session

The gateway never commits.  The orchestrator passes the session that also
carries the version bump and the operation status change, so all three land
in one transaction.
"""

import logging
import re
from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from offsync.constants import WELL_KNOWN_KINDS
from offsync.errors import BadKindError
from offsync.errors import BadPayloadError
from offsync.errors import BadRecordIdError
from offsync.errors import NotFoundError
from offsync.errors import StoreError
from offsync.models.enums import OperationType
from offsync.models.models import RECORD_MODELS
from offsync.models.models import GenericRecord
from offsync.schemas.records import PAYLOAD_SCHEMAS
from offsync.schemas.records import OtherPayload
from offsync.schemas.records import writable_fields
from offsync.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

# Generic kinds become a ``table_name`` value in ``generic_records``; keep
# them to identifier-like names.
_KIND_RE = re.compile(r"^[a-z][a-z0-9_]{0,62}$")
_UINT_RE = re.compile(r"^[0-9]+$")


def is_well_known(table_name: str) -> bool:
    return table_name in WELL_KNOWN_KINDS


def validate_kind(table_name: Any) -> str:
    if not isinstance(table_name, str) or not _KIND_RE.match(table_name):
        raise BadKindError(f"invalid record kind: {table_name!r}")
    return table_name


def parse_record_id(table_name: str, record_id: Any) -> Any:
    """Return the typed primary key for *table_name*.

    Well-known kinds need an unsigned integer; generic kinds accept any
    non-empty string.
    """
    raw = "" if record_id is None else str(record_id).strip()
    if not raw:
        raise BadRecordIdError("record_id is required")
    if is_well_known(table_name):
        if not _UINT_RE.match(raw):
            raise BadRecordIdError(f"record_id {raw!r} is not an unsigned integer")
        return int(raw)
    return raw


def validate(table_name: str, operation_type: OperationType, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Deserialise *payload* for a write.

    Returns the column values to write: every field for a create, only the
    fields the client sent for an update.  Deletes need no payload.
    """
    operation_type = OperationType(operation_type)
    if operation_type == OperationType.DELETE:
        return {}
    if payload is None:
        raise BadPayloadError(f"{operation_type.value} on {table_name} requires a payload")
    if not isinstance(payload, dict):
        raise BadPayloadError("payload must be a JSON object")

    if not is_well_known(table_name):
        return OtherPayload.model_validate(payload).root

    create_model, update_model = PAYLOAD_SCHEMAS[table_name]
    try:
        if operation_type == OperationType.CREATE:
            return create_model.model_validate(payload).model_dump()
        return update_model.model_validate(payload).model_dump(exclude_unset=True)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "payload" for err in exc.errors())
        raise BadPayloadError(f"invalid {table_name} payload ({fields})") from exc


def prepare(operation_type: OperationType, values: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Stamp bookkeeping timestamps onto the column values."""
    now = now or utc_now_naive()
    prepared = dict(values)
    if operation_type == OperationType.CREATE:
        prepared["created_at"] = now
    prepared["updated_at"] = now
    return prepared


def serialize(table_name: str, record: Any) -> Dict[str, Any]:
    """JSON-ready representation of a stored record (used for selective sync)."""
    if isinstance(record, GenericRecord):
        body = {"id": record.record_id, **(record.data or {})}
    else:
        body = {"id": record.id}
        body.update({field: getattr(record, field) for field in writable_fields(table_name)})
    body["created_at"] = record.created_at.isoformat() if record.created_at else None
    body["updated_at"] = record.updated_at.isoformat() if record.updated_at else None
    return body


class RecordGateway:
    """Typed create/update/delete for known kinds, generic side table otherwise."""

    def apply(
        self,
        db: Session,
        operation_type: OperationType,
        table_name: str,
        record_id: Any,
        payload: Optional[Dict[str, Any]],
    ) -> None:
        """Run the write pipeline.  Raises a :class:`~offsync.errors.SyncError` on failure."""
        operation_type = OperationType(operation_type)
        table_name = validate_kind(table_name)
        key = parse_record_id(table_name, record_id)
        values = validate(table_name, operation_type, payload)
        prepared = prepare(operation_type, values)

        try:
            if is_well_known(table_name):
                self._write_typed(db, operation_type, table_name, key, prepared)
            else:
                self._write_generic(db, operation_type, table_name, key, values, prepared)
            db.flush()
        except IntegrityError as exc:
            raise StoreError(f"{table_name}/{key}: store rejected write ({exc.orig})") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"{table_name}/{key}: {exc}") from exc

        logger.debug(f"Applied {operation_type.value} {table_name}/{key}")

    # ------------------------------------------------------------------
    # write stage
    # ------------------------------------------------------------------

    def _write_typed(self, db: Session, operation_type: OperationType, table_name: str, key: int, prepared):
        model_cls = RECORD_MODELS[table_name]

        if operation_type == OperationType.CREATE:
            db.add(model_cls(id=key, **prepared))
            return

        record = db.get(model_cls, key)
        if record is None:
            raise NotFoundError(f"{table_name}/{key} not found")

        if operation_type == OperationType.DELETE:
            db.delete(record)
            return

        for column, value in prepared.items():
            setattr(record, column, value)

    def _write_generic(self, db: Session, operation_type: OperationType, table_name: str, key: str, values, prepared):
        if operation_type == OperationType.CREATE:
            db.add(
                GenericRecord(
                    table_name=table_name,
                    record_id=key,
                    data=dict(values),
                    created_at=prepared["created_at"],
                    updated_at=prepared["updated_at"],
                )
            )
            return

        record = self._get_generic(db, table_name, key)
        if record is None:
            raise NotFoundError(f"{table_name}/{key} not found")

        if operation_type == OperationType.DELETE:
            db.delete(record)
            return

        # Generic documents are replaced wholesale
        record.data = dict(values)
        record.updated_at = prepared["updated_at"]

    @staticmethod
    def _get_generic(db: Session, table_name: str, key: str) -> Optional[GenericRecord]:
        return (
            db.query(GenericRecord)
            .filter(GenericRecord.table_name == table_name, GenericRecord.record_id == key)
            .one_or_none()
        )

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def snapshot(self, db: Session, table_name: str, record_id: Any) -> Optional[Dict[str, Any]]:
        """Current server data or ``None`` when absent.

        Only writable fields holding a value are included; a NULL column has
        nothing to contribute to a merge.
        """
        table_name = validate_kind(table_name)
        key = parse_record_id(table_name, record_id)

        if not is_well_known(table_name):
            record = self._get_generic(db, table_name, key)
            return None if record is None else dict(record.data or {})

        record = db.get(RECORD_MODELS[table_name], key)
        if record is None:
            return None
        data = {}
        for field in writable_fields(table_name):
            value = getattr(record, field)
            if value is not None:
                data[field] = value
        return data

    def changed_since(self, db: Session, table_name: str, since: Optional[datetime]) -> List[Dict[str, Any]]:
        """Serialized records of a well-known kind with ``updated_at > since`` (all when *since* is None)."""
        model_cls = RECORD_MODELS[table_name]
        query = db.query(model_cls)
        if since is not None:
            query = query.filter(model_cls.updated_at > since)
        rows = query.order_by(model_cls.updated_at.asc(), model_cls.id.asc()).all()
        return [serialize(table_name, row) for row in rows]


__all__ = [
    "RecordGateway",
    "validate_kind",
    "parse_record_id",
    "validate",
    "prepare",
    "serialize",
    "is_well_known",
]
