import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from ..exceptions import StoreUnavailable
from ..models.driver import utcnow
from .driver_store import DriverLocationStore

logger = logging.getLogger(__name__)


class StaleDriverReaper:
    """Background task that removes drivers which stopped sending updates"""

    def __init__(self, store: DriverLocationStore, ttl_seconds: int, interval_seconds: float = 60.0):
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return self.ttl > timedelta(0)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """Delete every record older than the TTL; returns how many were removed"""
        cutoff = (now or utcnow()) - self.ttl
        removed = await self.store.delete_stale(cutoff)
        if removed:
            logger.info(f"Removed {removed} stale drivers (last update before {cutoff.isoformat()})")
        return removed

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except StoreUnavailable as e:
                logger.error(f"Stale driver sweep failed: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error in stale driver sweep: {e}")

    def start(self):
        if not self.enabled:
            logger.info("Stale driver reaper disabled")
            return
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Stale driver reaper started (ttl={self.ttl.total_seconds()}s)")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Stale driver reaper stopped")
