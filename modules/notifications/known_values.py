"""First-seen tracking for event names, app versions and country codes."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

import structlog

logger = structlog.get_logger()

# rule type -> (query engine column / known-value type, human label)
NEW_VALUE_DIMENSIONS: dict[str, tuple[str, str]] = {
    "new_event_name": ("event_name", "event name"),
    "new_app_version": ("app_version", "app version"),
    "new_country": ("country_code", "country"),
}


class KnownValueStore(Protocol):
    async def get_known_values(self, app_id: str, value_type: str) -> set[str]: ...

    async def insert_known_values(self, app_id: str, value_type: str, values: Iterable[str]) -> None: ...


def _cache_key(app_id: str, value_type: str) -> str:
    return f"notifications:known:{app_id}:{value_type}"


class KnownValueTracker:
    """Known-value sets read through an optional Redis cache.

    The database is authoritative.  Writes go there first and then drop the
    cached set.  If Redis rejects the delete, the stale set is served until
    its TTL expires; the day-long dedup key on new-value firings keeps a
    value from being announced twice in that time.
    """

    def __init__(self, store: KnownValueStore, redis_client=None, cache_ttl: int = 3600):
        self._store = store
        self._redis = redis_client
        self._ttl = cache_ttl

    async def get_known_values(self, app_id: str, value_type: str) -> set[str]:
        cached = await self._cache_get(app_id, value_type)
        if cached:
            return cached

        values = await self._store.get_known_values(app_id, value_type)
        if values:
            await self._cache_set(app_id, value_type, values)
        return values

    async def record_new_values(self, app_id: str, value_type: str, values: Iterable[str]) -> None:
        """Idempotent insert-if-absent of each value for (app, value type)."""
        values = [v for v in dict.fromkeys(values) if v]
        if not values:
            return
        await self._store.insert_known_values(app_id, value_type, values)
        await self._cache_invalidate(app_id, value_type)
        logger.info("known_values_recorded", app_id=app_id, value_type=value_type, count=len(values))

    async def _cache_get(self, app_id: str, value_type: str) -> set[str] | None:
        if self._redis is None:
            return None
        key = _cache_key(app_id, value_type)
        try:
            members = await self._redis.smembers(key)
        except Exception as e:
            logger.warning("known_values_cache_get_error", key=key, error=str(e))
            return None
        if not members:
            return None
        return {m.decode() if isinstance(m, bytes) else m for m in members}

    async def _cache_set(self, app_id: str, value_type: str, values: set[str]) -> None:
        if self._redis is None:
            return
        key = _cache_key(app_id, value_type)
        try:
            await self._redis.sadd(key, *values)
            await self._redis.expire(key, self._ttl)
        except Exception as e:
            logger.warning("known_values_cache_set_error", key=key, error=str(e))

    async def _cache_invalidate(self, app_id: str, value_type: str) -> None:
        if self._redis is None:
            return
        key = _cache_key(app_id, value_type)
        try:
            await self._redis.delete(key)
        except Exception as e:
            logger.warning("known_values_cache_delete_error", key=key, error=str(e))
