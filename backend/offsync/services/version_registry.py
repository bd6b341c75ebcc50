"""Per-record version tracking.

Every successful write bumps the ``(user, table, record)`` version entry.
:meth:`VersionRegistry.bump` is the only writer of ``data_versions``.
"""

import logging
from typing import Any
from typing import Dict
from typing import Optional

from sqlalchemy.orm import Session

from offsync.models.enums import ModifiedBy
from offsync.models.sync import DataVersion
from offsync.utils.json_helpers import digest
from offsync.utils.json_helpers import version_checksum
from offsync.utils.time import utc_now_naive

logger = logging.getLogger(__name__)


class VersionRegistry:
    """Assign and look up monotonic versions plus checksums."""

    @staticmethod
    def get(db: Session, user_id: int, table_name: str, record_id: str) -> Optional[DataVersion]:
        return (
            db.query(DataVersion)
            .filter(
                DataVersion.user_id == user_id,
                DataVersion.table_name == table_name,
                DataVersion.record_id == str(record_id),
            )
            .one_or_none()
        )

    @staticmethod
    def bump(
        db: Session,
        user_id: int,
        table_name: str,
        record_id: str,
        payload: Optional[Dict[str, Any]],
        modified_by: ModifiedBy = ModifiedBy.SERVER,
    ) -> DataVersion:
        """Create the entry at version 1 or increment it.

        ``checksum`` covers the record identity, the new version and the
        writer.  ``content_checksum`` covers *payload* alone.
        """
        modified_by = ModifiedBy(modified_by)
        entry = VersionRegistry.get(db, user_id, table_name, record_id)
        if entry is None:
            entry = DataVersion(
                user_id=user_id,
                table_name=table_name,
                record_id=str(record_id),
                version=1,
            )
            db.add(entry)
        else:
            entry.version = entry.version + 1

        entry.last_modified_by = modified_by
        entry.last_modified_at = utc_now_naive()
        entry.checksum = version_checksum(table_name, str(record_id), entry.version, modified_by.value)
        entry.content_checksum = digest(payload or {})
        db.flush()

        logger.debug(f"Version {table_name}/{record_id} for user {user_id} -> {entry.version}")
        return entry


__all__ = ["VersionRegistry"]
