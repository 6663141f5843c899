"""
Shared fixtures: an in-memory async Redis double and the service components wired on top of it.
"""

from __future__ import annotations

import fnmatch
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from proximity.models.driver import DriverRecord, Position
from proximity.services.driver_store import DriverLocationStore
from proximity.services.event_service import EventProtocolHandler
from proximity.services.proximity_service import ProximityQueryEngine
from proximity.services.spatial_index import SpatialIndexCodec
from proximity.utils.redis_client import RedisClient


SAN_FRANCISCO = Position(37.7749, -122.4194)
SAN_FRANCISCO_NEARBY = Position(37.7750, -122.4190)
LONDON = Position(51.5074, -0.1278)


class FakeRedis:
    """Implements the subset of redis.asyncio.Redis the service uses."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.fail = False
        self.closed = False
        # Real SCAN may return a key more than once
        self.duplicate_scan_keys = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._check()
        self.data[key] = value
        return True

    async def mget(self, keys: list[str]) -> list[str | None]:
        self._check()
        return [self.data.get(key) for key in keys]

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match: str | None = None, count: int | None = None):
        self._check()
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key
                if self.duplicate_scan_keys:
                    yield key

    def register_script(self, script: str):
        """Only the compare-and-delete script is used by the service."""
        async def compare_and_delete(keys: list[str], args: list[str]) -> int:
            self._check()
            if self.data.get(keys[0]) == args[0]:
                del self.data[keys[0]]
                return 1
            return 0
        return compare_and_delete

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def redis_client(fake_redis: FakeRedis) -> RedisClient:
    client = RedisClient("redis://localhost:6379/0")
    client.redis = fake_redis
    return client


@pytest.fixture
def codec() -> SpatialIndexCodec:
    return SpatialIndexCodec(9)


@pytest.fixture
def store(redis_client: RedisClient) -> DriverLocationStore:
    return DriverLocationStore(redis_client, key_prefix="driver:", batch_size=2)


@pytest.fixture
def engine(codec: SpatialIndexCodec, store: DriverLocationStore) -> ProximityQueryEngine:
    return ProximityQueryEngine(codec, store, radius=3, scan_timeout=1.0)


@pytest.fixture
def handler(
    codec: SpatialIndexCodec,
    store: DriverLocationStore,
    engine: ProximityQueryEngine,
) -> EventProtocolHandler:
    return EventProtocolHandler(codec, store, engine)


@pytest.fixture
def make_record(codec: SpatialIndexCodec):
    """Build a DriverRecord with its cell computed by the codec."""
    def _make(driver_id: str, position: Position, **kwargs: Any) -> DriverRecord:
        return DriverRecord(
            driver_id=driver_id,
            position=position,
            cell_id=codec.encode(position),
            **kwargs,
        )
    return _make
