"""
Tests for the Redis-backed driver location store.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from proximity.exceptions import StoreUnavailable
from proximity.models.driver import Position
from proximity.services.driver_store import DriverLocationStore


SAN_FRANCISCO = Position(37.7749, -122.4194)
LONDON = Position(51.5074, -0.1278)


class TestPutGet:
    """Tests for put/get."""

    @pytest.mark.asyncio
    async def test_put_writes_prefixed_json(self, store: DriverLocationStore, fake_redis, make_record) -> None:
        record = make_record("d1", SAN_FRANCISCO)
        await store.put(record)

        stored = json.loads(fake_redis.data["driver:d1"])
        assert stored["cellId"] == record.cell_id
        assert stored["latitude"] == 37.7749
        assert stored["longitude"] == -122.4194
        assert "updatedAt" in stored

    @pytest.mark.asyncio
    async def test_get_missing_driver(self, store: DriverLocationStore) -> None:
        assert await store.get("nobody") is None

    @pytest.mark.asyncio
    async def test_repeated_put_is_idempotent(self, store: DriverLocationStore, make_record) -> None:
        record = make_record("d1", SAN_FRANCISCO)
        await store.put(record)
        await store.put(record)

        assert await store.get("d1") == record
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_last_write_wins(self, store: DriverLocationStore, make_record) -> None:
        first = make_record("d1", SAN_FRANCISCO)
        second = make_record("d1", LONDON)
        await store.put(first)
        await store.put(second)

        assert await store.get("d1") == second

    @pytest.mark.asyncio
    async def test_driver_ids_with_colons(self, store: DriverLocationStore, make_record) -> None:
        """The id is everything after the prefix, not the second ':' segment."""
        await store.put(make_record("fleet:42", SAN_FRANCISCO))

        records = [record async for record in store.scan_all()]
        assert [record.driver_id for record in records] == ["fleet:42"]
        assert (await store.get("fleet:42")).driver_id == "fleet:42"


class TestScanAll:
    """Tests for the prefix scan."""

    @pytest.mark.asyncio
    async def test_empty_store(self, store: DriverLocationStore) -> None:
        assert [record async for record in store.scan_all()] == []

    @pytest.mark.asyncio
    async def test_scan_returns_every_driver(self, store: DriverLocationStore, make_record) -> None:
        # batch_size=2 in the fixture, so five drivers span several batches
        for i in range(5):
            await store.put(make_record(f"d{i}", SAN_FRANCISCO))

        ids = {record.driver_id async for record in store.scan_all()}
        assert ids == {f"d{i}" for i in range(5)}

    @pytest.mark.asyncio
    async def test_scan_ignores_other_keys(self, store: DriverLocationStore, fake_redis, make_record) -> None:
        fake_redis.data["session:abc"] = "{}"
        fake_redis.data["drivers:geo"] = "{}"
        await store.put(make_record("d1", SAN_FRANCISCO))

        assert [record.driver_id async for record in store.scan_all()] == ["d1"]

    @pytest.mark.asyncio
    async def test_scan_is_restartable(self, store: DriverLocationStore, make_record) -> None:
        await store.put(make_record("d1", SAN_FRANCISCO))

        first = [record async for record in store.scan_all()]
        second = [record async for record in store.scan_all()]
        assert first == second

    @pytest.mark.asyncio
    async def test_unreadable_records_skipped(self, store: DriverLocationStore, fake_redis, make_record) -> None:
        fake_redis.data["driver:broken"] = "not json"
        fake_redis.data["driver:partial"] = json.dumps({"latitude": 1.0})
        await store.put(make_record("d1", SAN_FRANCISCO))

        assert [record.driver_id async for record in store.scan_all()] == ["d1"]
        assert await store.get("broken") is None

    @pytest.mark.asyncio
    async def test_duplicate_scan_keys_yield_one_record(self, store: DriverLocationStore, fake_redis, make_record) -> None:
        await store.put(make_record("d1", SAN_FRANCISCO))
        await store.put(make_record("d2", LONDON))
        fake_redis.duplicate_scan_keys = True

        ids = [record.driver_id async for record in store.scan_all()]
        assert sorted(ids) == ["d1", "d2"]
        assert await store.count() == 2

    @pytest.mark.asyncio
    async def test_legacy_records_readable(self, store: DriverLocationStore, fake_redis, codec) -> None:
        cell = codec.encode(SAN_FRANCISCO)
        fake_redis.data["driver:old"] = json.dumps(
            {"h3Index": cell, "latitude": 37.7749, "longitude": -122.4194}
        )

        record = await store.get("old")
        assert record.cell_id == cell


class TestDelete:
    """Tests for delete and delete_stale."""

    @pytest.mark.asyncio
    async def test_delete(self, store: DriverLocationStore, make_record) -> None:
        await store.put(make_record("d1", SAN_FRANCISCO))

        assert await store.delete("d1") is True
        assert await store.delete("d1") is False
        assert await store.get("d1") is None

    @pytest.mark.asyncio
    async def test_delete_stale(self, store: DriverLocationStore, make_record) -> None:
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        await store.put(make_record("old", SAN_FRANCISCO, updated_at=now - timedelta(hours=2)))
        await store.put(make_record("fresh", SAN_FRANCISCO, updated_at=now))

        removed = await store.delete_stale(now - timedelta(hours=1))

        assert removed == 1
        assert {record.driver_id async for record in store.scan_all()} == {"fresh"}

    @pytest.mark.asyncio
    async def test_delete_stale_keeps_record_refreshed_after_scan(
        self, store: DriverLocationStore, redis_client, make_record
    ) -> None:
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        await store.put(make_record("d1", SAN_FRANCISCO, updated_at=now - timedelta(hours=2)))
        get_many_raw = redis_client.get_many_raw

        async def read_then_refresh(keys):
            values = await get_many_raw(keys)
            # The driver reports in after its old record was read
            await store.put(make_record("d1", LONDON, updated_at=now))
            return values

        redis_client.get_many_raw = read_then_refresh
        removed = await store.delete_stale(now - timedelta(hours=1))
        redis_client.get_many_raw = get_many_raw

        assert removed == 0
        record = await store.get("d1")
        assert record.position == LONDON
        assert record.updated_at == now

    @pytest.mark.asyncio
    async def test_delete_stale_removes_unreadable_records(
        self, store: DriverLocationStore, fake_redis, make_record
    ) -> None:
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        fake_redis.data["driver:broken"] = "not json"
        fake_redis.data["driver:partial"] = json.dumps({"latitude": 1.0})
        await store.put(make_record("fresh", SAN_FRANCISCO, updated_at=now))

        removed = await store.delete_stale(now - timedelta(hours=1))

        assert removed == 2
        assert "driver:broken" not in fake_redis.data
        assert "driver:partial" not in fake_redis.data
        assert await store.get("fresh") is not None

    @pytest.mark.asyncio
    async def test_delete_stale_with_duplicate_scan_keys(
        self, store: DriverLocationStore, fake_redis, make_record
    ) -> None:
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        await store.put(make_record("old", SAN_FRANCISCO, updated_at=now - timedelta(hours=2)))
        fake_redis.duplicate_scan_keys = True

        assert await store.delete_stale(now - timedelta(hours=1)) == 1

    @pytest.mark.asyncio
    async def test_delete_stale_nothing_to_do(self, store: DriverLocationStore) -> None:
        assert await store.delete_stale(datetime.now(timezone.utc)) == 0


class TestStoreUnavailable:
    """Redis failures surface as StoreUnavailable."""

    @pytest.mark.asyncio
    async def test_put_fails(self, store: DriverLocationStore, fake_redis, make_record) -> None:
        fake_redis.fail = True
        with pytest.raises(StoreUnavailable):
            await store.put(make_record("d1", SAN_FRANCISCO))

    @pytest.mark.asyncio
    async def test_get_fails(self, store: DriverLocationStore, fake_redis) -> None:
        fake_redis.fail = True
        with pytest.raises(StoreUnavailable):
            await store.get("d1")

    @pytest.mark.asyncio
    async def test_scan_fails(self, store: DriverLocationStore, fake_redis) -> None:
        fake_redis.fail = True
        with pytest.raises(StoreUnavailable):
            [record async for record in store.scan_all()]

    @pytest.mark.asyncio
    async def test_not_connected(self, make_record) -> None:
        from proximity.utils.redis_client import RedisClient

        store = DriverLocationStore(RedisClient("redis://localhost:6379/0"))
        with pytest.raises(StoreUnavailable):
            await store.put(make_record("d1", SAN_FRANCISCO))

    @pytest.mark.asyncio
    async def test_programming_errors_not_masked(self, store: DriverLocationStore, fake_redis, make_record) -> None:
        fake_redis.set = AsyncMock(side_effect=RuntimeError("bug"))
        with pytest.raises(RuntimeError, match="bug"):
            await store.put(make_record("d1", SAN_FRANCISCO))
