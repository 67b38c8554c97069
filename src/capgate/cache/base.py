from __future__ import annotations

from abc import ABC, abstractmethod


class Cache(ABC):
    """Best-effort key/value cache. Every method may fail; callers fall back to the store."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, *keys: str) -> None:
        raise NotImplementedError
