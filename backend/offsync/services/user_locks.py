"""Per-user serialisation of sync work.

At most one sync session or retry attempt may touch a user's queue at a time.
Sessions wait for the lock; the background retry loop only *tries* it and
skips users that are busy.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from typing import Dict

logger = logging.getLogger(__name__)


class UserLockManager:
    """Registry of one ``asyncio.Lock`` per user id, created lazily."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, user_id: int) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def is_locked(self, user_id: int) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    async def try_acquire(self, user_id: int) -> bool:
        """Acquire without waiting.  Returns False when the user is busy."""
        lock = self._lock_for(user_id)
        if lock.locked():
            logger.debug(f"User {user_id} is busy, lock not acquired")
            return False
        # Uncontended acquire completes without suspending
        await lock.acquire()
        return True

    def release(self, user_id: int) -> bool:
        lock = self._locks.get(user_id)
        if lock is None or not lock.locked():
            logger.warning(f"Attempted to release lock for user {user_id} but it wasn't held")
            return False
        lock.release()
        return True

    @asynccontextmanager
    async def lock(self, user_id: int) -> AsyncIterator[None]:
        """Wait for the user's lock and hold it for the block."""
        async with self._lock_for(user_id):
            yield

    @asynccontextmanager
    async def try_lock(self, user_id: int) -> AsyncIterator[bool]:
        """
        Usage:
            async with locks.try_lock(user_id) as acquired:
                if not acquired:
                    return  # someone else is syncing this user
        """
        acquired = await self.try_acquire(user_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(user_id)

    def locked_users(self) -> list[int]:
        return sorted(user_id for user_id, lock in self._locks.items() if lock.locked())


__all__ = ["UserLockManager"]
