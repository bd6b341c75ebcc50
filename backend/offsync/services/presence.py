"""Durable online/offline bit per user.

The engine never detects disconnects itself; the transport (or an explicit API
call) reports them.  Users without a status row count as online.
"""

import logging

from sqlalchemy.orm import Session

from offsync.crud import crud
from offsync.utils.time import utc_now_naive

logger = logging.getLogger(__name__)


def is_online(db: Session, user_id: int) -> bool:
    status = crud.get_sync_status(db, user_id)
    return True if status is None else bool(status.is_online)


def set_presence(db: Session, user_id: int, online: bool) -> bool:
    """Persist the presence bit.  Returns True only when the state actually changed.

    ``last_online_at`` records the most recent offline -> online transition.
    """
    status = crud.get_or_create_sync_status(db, user_id)
    changed = bool(status.is_online) != online

    status.is_online = online
    if online and (changed or status.last_online_at is None):
        status.last_online_at = utc_now_naive()

    if changed:
        logger.info(f"User {user_id} is now {'online' if online else 'offline'}")
    return changed


__all__ = ["is_online", "set_presence"]
