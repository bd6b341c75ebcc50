"""
Retry scheduler for failed offline operations.

Runs :meth:`SyncEngine.run_retry_tick` on a fixed interval using APScheduler.
The tick itself decides which operations are due (retry budget and linear
backoff), so the scheduler only provides the heartbeat.
"""

import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from offsync.config import get_settings
from offsync.services.sync_engine import SyncEngine
from offsync.services.sync_engine import sync_engine

logger = logging.getLogger(__name__)

RETRY_JOB_ID = "sync_retry_loop"


class RetrySchedulerService:
    """Periodic driver of the sync engine's retry pass."""

    def __init__(self, engine: Optional[SyncEngine] = None, interval_seconds: Optional[int] = None):
        self.scheduler = AsyncIOScheduler()
        self._initialized = False
        self.engine = engine or sync_engine
        self.interval_seconds = interval_seconds or get_settings().sync_retry_interval_seconds

    async def start(self):
        """Start the scheduler if not already running."""
        if not self._initialized:
            self.scheduler.add_job(
                self.run_tick,
                IntervalTrigger(seconds=self.interval_seconds),
                id=RETRY_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            self.scheduler.start()
            self._initialized = True
            logger.info(f"Retry scheduler started (every {self.interval_seconds}s)")

    async def stop(self):
        """Shutdown the scheduler gracefully."""
        if self._initialized:
            self.scheduler.shutdown()
            # AsyncIOScheduler defers shutdown to the loop; let it run.
            await asyncio.sleep(0)
            self._initialized = False
            logger.info("Retry scheduler stopped")

    async def run_tick(self):
        """One retry pass.  Errors are logged, never raised into APScheduler."""
        try:
            return await self.engine.run_retry_tick()
        except Exception as e:
            logger.exception(f"Retry pass failed: {e}")
            return None


retry_scheduler = RetrySchedulerService()
