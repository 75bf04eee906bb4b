"""Tests for the known-value tracker and its Redis read-through cache."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from modules.notifications.known_values import KnownValueTracker


@pytest.fixture
def store():
    store = AsyncMock()
    store.get_known_values = AsyncMock(return_value={"app_open", "purchase"})
    store.insert_known_values = AsyncMock()
    return store


class TestKnownValueTracker:
    @pytest.mark.asyncio
    async def test_cache_hit_skips_database(self, store, mock_redis):
        mock_redis.smembers.return_value = {"app_open"}
        tracker = KnownValueTracker(store, mock_redis)

        values = await tracker.get_known_values("app-1", "event_name")

        assert values == {"app_open"}
        mock_redis.smembers.assert_awaited_once_with("notifications:known:app-1:event_name")
        store.get_known_values.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cache_miss_reads_database_and_fills_cache(self, store, mock_redis):
        tracker = KnownValueTracker(store, mock_redis, cache_ttl=120)

        values = await tracker.get_known_values("app-1", "event_name")

        assert values == {"app_open", "purchase"}
        key = "notifications:known:app-1:event_name"
        args = mock_redis.sadd.await_args.args
        assert args[0] == key
        assert set(args[1:]) == {"app_open", "purchase"}
        mock_redis.expire.assert_awaited_once_with(key, 120)

    @pytest.mark.asyncio
    async def test_empty_set_is_not_cached(self, store, mock_redis):
        store.get_known_values.return_value = set()
        tracker = KnownValueTracker(store, mock_redis)

        assert await tracker.get_known_values("app-1", "country_code") == set()
        mock_redis.sadd.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_errors_fall_back_to_database(self, store, mock_redis):
        mock_redis.smembers.side_effect = ConnectionError("redis gone")
        mock_redis.sadd.side_effect = ConnectionError("redis gone")
        tracker = KnownValueTracker(store, mock_redis)

        assert await tracker.get_known_values("app-1", "event_name") == {"app_open", "purchase"}

    @pytest.mark.asyncio
    async def test_works_without_redis(self, store):
        tracker = KnownValueTracker(store)
        assert await tracker.get_known_values("app-1", "event_name") == {"app_open", "purchase"}

    @pytest.mark.asyncio
    async def test_record_writes_database_then_invalidates(self, store, mock_redis):
        tracker = KnownValueTracker(store, mock_redis)

        await tracker.record_new_values("app-1", "app_version", ["2.0.0", "", "2.0.0", "2.1.0"])

        store.insert_known_values.assert_awaited_once_with("app-1", "app_version", ["2.0.0", "2.1.0"])
        mock_redis.delete.assert_awaited_once_with("notifications:known:app-1:app_version")

    @pytest.mark.asyncio
    async def test_record_nothing_is_a_noop(self, store, mock_redis):
        tracker = KnownValueTracker(store, mock_redis)

        await tracker.record_new_values("app-1", "app_version", [])

        store.insert_known_values.assert_not_awaited()
        mock_redis.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_database_errors_propagate(self, store, mock_redis):
        store.insert_known_values.side_effect = RuntimeError("db down")
        tracker = KnownValueTracker(store, mock_redis)

        with pytest.raises(RuntimeError):
            await tracker.record_new_values("app-1", "event_name", ["x"])
        mock_redis.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_invalidation_serves_stale_set_until_ttl(self, store, mock_redis):
        mock_redis.delete.side_effect = ConnectionError("redis gone")
        mock_redis.smembers.return_value = {"app_open"}
        tracker = KnownValueTracker(store, mock_redis)

        await tracker.record_new_values("app-1", "event_name", ["signup"])

        store.insert_known_values.assert_awaited_once_with("app-1", "event_name", ["signup"])
        assert await tracker.get_known_values("app-1", "event_name") == {"app_open"}
