"""
Short-lived cache for the keg sensor bridge.

Holds the bridge auth token and the last live reading per tap, so a failed
refresh can fall back to a recent value. Redis when several counting
devices share one bridge, otherwise a per-process dict.

Keys: ``{namespace}:pmb:auth_token`` and ``{namespace}:keg_level:{tap}``.
"""
import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from taproom.config import settings

logger = logging.getLogger(__name__)


class InMemoryCache:
    """Per-process store; expired entries are dropped when read."""

    def __init__(self):
        self._entries: Dict[str, Tuple[Any, float]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if deadline <= time.monotonic():
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        self._entries[key] = (value, time.monotonic() + ttl)
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None


class RedisCache:
    """Shared store. A Redis outage reads as a miss, never as an error."""

    def __init__(self, redis_url: str):
        self._client = redis.from_url(redis_url, decode_responses=True)

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(key)
        except RedisError as e:
            logger.warning(f"Redis read failed for {key}: {e}")
            return None
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            await self._client.set(key, json.dumps(value, default=str), ex=ttl)
        except RedisError as e:
            logger.warning(f"Redis write failed for {key}: {e}")
            return False
        return True

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(key))
        except RedisError as e:
            logger.warning(f"Redis delete failed for {key}: {e}")
            return False


class CacheService:
    """Namespaced front for either store."""

    def __init__(self, backend, namespace: str = "taproom"):
        self._backend = backend
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        return await self._backend.get(self._key(key))

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        return await self._backend.set(self._key(key), value, ttl)

    async def delete(self, key: str) -> bool:
        return await self._backend.delete(self._key(key))

    async def get_keg_level(self, tap_number: int) -> Optional[dict]:
        return await self.get(f"keg_level:{tap_number}")

    async def set_keg_level(self, tap_number: int, data: dict) -> bool:
        return await self.set(f"keg_level:{tap_number}", data, settings.KEG_LEVEL_CACHE_TTL)


_cache: Optional[CacheService] = None


def get_cache() -> CacheService:
    """Process-wide cache, Redis-backed when ``REDIS_URL`` is set."""
    global _cache
    if _cache is None:
        if settings.REDIS_URL and settings.CACHE_ENABLED:
            _cache = CacheService(RedisCache(settings.REDIS_URL))
            logger.info("Keg level cache: Redis")
        else:
            _cache = CacheService(InMemoryCache())
            logger.info("Keg level cache: in-memory")
    return _cache
