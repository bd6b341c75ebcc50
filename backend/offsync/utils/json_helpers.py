"""Canonical JSON and digest helpers.

Every checksum in the engine is computed over the *canonical* JSON form of a
value: keys sorted, no insignificant whitespace, non-ASCII kept verbatim.  Two
hosts that agree on a value therefore agree on its digest.
"""

import hashlib
import json
from typing import Any
from typing import Dict
from typing import Optional

from sqlalchemy.orm.attributes import flag_modified


def canonical_json(value: Any) -> str:
    """Serialise *value* deterministically.

    Raises ``TypeError`` for values JSON cannot represent.
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def digest(value: Any) -> str:
    """Return the MD5 hex digest of the canonical JSON of *value*.

    MD5 is used for divergence detection only, not for security.
    """
    return hashlib.md5(canonical_json(value).encode("utf-8")).hexdigest()


def version_checksum(table_name: str, record_id: str, version: int, modified_by: str) -> str:
    """Digest over a record's identity and version, stored on each version entry."""
    return digest(
        {
            "table": table_name,
            "record": str(record_id),
            "version": int(version),
            "modified_by": modified_by,
        }
    )


def json_equal(left: Any, right: Any) -> bool:
    """Compare two JSON values by canonical form (``1`` and ``1.0`` differ)."""
    return canonical_json(left) == canonical_json(right)


def set_json_field(model: Any, field_name: str, value: Optional[Dict[str, Any]]) -> None:
    """Replace an entire JSON column value and flag it dirty.

    Example:
        >>> set_json_field(op, "data", resolved)
        >>> db.commit()
    """
    setattr(model, field_name, value)
    flag_modified(model, field_name)


__all__ = ["canonical_json", "digest", "version_checksum", "json_equal", "set_json_field"]
