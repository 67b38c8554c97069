"""Redis-backed Cache."""

from __future__ import annotations

from typing import TYPE_CHECKING

from capgate.cache.base import Cache

if TYPE_CHECKING:
    from redis.asyncio import Redis


class RedisCache(Cache):
    def __init__(self, redis: Redis):
        self._redis = redis

    async def get(self, key: str) -> bytes | None:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        if isinstance(raw, str):
            return raw.encode("utf-8")
        return raw

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        await self._redis.set(key, value, ex=ttl_seconds)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._redis.delete(*keys)
