import json
import logging
from datetime import datetime
from typing import AsyncIterator, Optional, Tuple

from redis.exceptions import RedisError

from ..exceptions import StoreUnavailable
from ..models.driver import DriverRecord
from ..utils.redis_client import RedisClient

logger = logging.getLogger(__name__)

STORE_ERRORS = (RedisError, OSError)


class DriverLocationStore:
    """Last known driver positions kept in Redis under `<prefix><driver_id>`.

    Every write replaces the whole record (last write wins). There is no
    secondary index: `scan_all` walks every driver key, which makes it the
    dominant cost of a proximity query.
    """

    def __init__(self, redis_client: RedisClient, key_prefix: str = "driver:", batch_size: int = 500):
        self.redis_client = redis_client
        self.key_prefix = key_prefix
        self.batch_size = batch_size

    def _key(self, driver_id: str) -> str:
        return f"{self.key_prefix}{driver_id}"

    def _driver_id(self, key: str) -> str:
        return key[len(self.key_prefix):]

    def _decode(self, key: str, raw: Optional[str]) -> Optional[DriverRecord]:
        if raw is None:
            # Deleted between SCAN and MGET
            return None
        driver_id = self._driver_id(key)
        try:
            return DriverRecord.from_store(driver_id, json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping unreadable record for driver {driver_id}: {e}")
            return None

    async def put(self, record: DriverRecord):
        try:
            await self.redis_client.set_json(self._key(record.driver_id), record.to_store())
        except STORE_ERRORS as e:
            logger.error(f"Failed to store location for driver {record.driver_id}: {e}")
            raise StoreUnavailable("Driver store unavailable") from e

    async def get(self, driver_id: str) -> Optional[DriverRecord]:
        key = self._key(driver_id)
        try:
            raw = await self.redis_client.get_many_raw([key])
        except STORE_ERRORS as e:
            logger.error(f"Failed to get driver {driver_id}: {e}")
            raise StoreUnavailable("Driver store unavailable") from e
        return self._decode(key, raw[0])

    async def _scan_raw(self) -> AsyncIterator[Tuple[str, str]]:
        # SCAN may return a key more than once; each key is yielded once per scan
        seen = set()
        async for keys in self.redis_client.scan_keys(self.key_prefix, self.batch_size):
            keys = [key for key in keys if key not in seen]
            seen.update(keys)
            values = await self.redis_client.get_many_raw(keys)
            for key, raw in zip(keys, values):
                if raw is not None:
                    yield key, raw

    async def scan_all(self) -> AsyncIterator[DriverRecord]:
        """Iterate every stored driver record once; each call starts a fresh scan"""
        try:
            async for key, raw in self._scan_raw():
                record = self._decode(key, raw)
                if record is not None:
                    yield record
        except STORE_ERRORS as e:
            logger.error(f"Driver scan failed: {e}")
            raise StoreUnavailable("Driver store unavailable") from e

    async def delete(self, driver_id: str) -> bool:
        try:
            return await self.redis_client.delete(self._key(driver_id)) > 0
        except STORE_ERRORS as e:
            logger.error(f"Failed to delete driver {driver_id}: {e}")
            raise StoreUnavailable("Driver store unavailable") from e

    async def delete_stale(self, older_than: datetime) -> int:
        """Remove records last updated before `older_than`, and unreadable ones.

        A key is deleted only if it still holds the value seen during the scan,
        so an update that lands in between is kept.
        """
        removed = 0
        try:
            expired = []
            async for key, raw in self._scan_raw():
                record = self._decode(key, raw)
                if record is None or record.updated_at < older_than:
                    expired.append((key, raw))

            for key, raw in expired:
                if await self.redis_client.delete_if_equals(key, raw):
                    removed += 1
        except STORE_ERRORS as e:
            logger.error(f"Failed to delete stale drivers: {e}")
            raise StoreUnavailable("Driver store unavailable") from e
        return removed

    async def count(self) -> int:
        total = 0
        async for _ in self.scan_all():
            total += 1
        return total
