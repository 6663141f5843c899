import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
import json
import logging
from typing import Optional, Any, AsyncIterator, Dict, List

logger = logging.getLogger(__name__)

# Deletes KEYS[1] only while it still holds the value read earlier (ARGV[1])
DELETE_IF_EQUALS_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class RedisNotConnected(RedisConnectionError):
    """Operation attempted before connect() or after disconnect()"""


class RedisClient:
    def __init__(self, url: str):
        self.url = url
        self.redis: Optional[redis.Redis] = None
        self._delete_if_equals = None

    async def connect(self):
        """Connect to Redis"""
        if self.redis is not None:
            return
        try:
            self.redis = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                retry_on_timeout=True,
                socket_keepalive=True,
            )
            # Test connection
            await self.redis.ping()
            logger.info("Connected to Redis successfully")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.redis = None
            raise

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self._delete_if_equals = None
            logger.info("Disconnected from Redis")

    @property
    def client(self) -> redis.Redis:
        if self.redis is None:
            raise RedisNotConnected("Redis client is not connected")
        return self.redis

    async def set_json(self, key: str, value: Dict[str, Any]):
        await self.client.set(key, json.dumps(value))

    async def get_many_raw(self, keys: List[str]) -> List[Optional[str]]:
        if not keys:
            return []
        return await self.client.mget(keys)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self.client.delete(*keys)

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        """Delete key unless it was overwritten since `expected` was read"""
        if self._delete_if_equals is None:
            self._delete_if_equals = self.client.register_script(DELETE_IF_EQUALS_SCRIPT)
        return await self._delete_if_equals(keys=[key], args=[expected]) > 0

    async def scan_keys(self, prefix: str, batch_size: int = 500) -> AsyncIterator[List[str]]:
        """Yield batches of keys starting with prefix using incremental SCAN"""
        batch: List[str] = []
        async for key in self.client.scan_iter(match=f"{prefix}*", count=batch_size):
            batch.append(key)
            if len(batch) >= batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    async def health_check(self) -> bool:
        """Check Redis health"""
        try:
            await self.client.ping()
            return True
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            return False
