"""Read-through cache of model configs and default pointers.

Keys:
    ai:config:{id}                   -> ModelConfig JSON (ciphertext key only)
    ai:config:default                -> id of the global default (chat) config
    ai:config:default:{capability}   -> id of the default config for a capability

Any cache failure is logged and reported as a miss; it never fails a request.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pydantic import ValidationError

from capgate.cache.base import Cache
from capgate.core.metrics import capgate_cache_lookups_total
from capgate.domain.chat import Capability
from capgate.domain.models import ModelConfig

log = logging.getLogger(__name__)

KEY_PREFIX = "ai:config"
GLOBAL_DEFAULT_KEY = f"{KEY_PREFIX}:default"


def config_key(config_id: str) -> str:
    return f"{KEY_PREFIX}:{config_id}"


def default_key(capability: Capability | None) -> str:
    """Pointer key; `None` means the global default."""
    if capability is None:
        return GLOBAL_DEFAULT_KEY
    return f"{GLOBAL_DEFAULT_KEY}:{capability.value}"


class ConfigCache:
    def __init__(self, cache: Cache | None, *, ttl_seconds: int):
        self._cache = cache
        self._ttl = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self._cache is not None

    async def _get(self, key: str) -> bytes | None:
        if self._cache is None:
            return None
        try:
            raw = await self._cache.get(key)
        except Exception as e:
            capgate_cache_lookups_total.labels(result="unavailable").inc()
            log.warning("cache.unavailable", extra={"op": "get", "key": key, "error": type(e).__name__})
            return None
        capgate_cache_lookups_total.labels(result="hit" if raw is not None else "miss").inc()
        return raw

    async def _set(self, key: str, value: bytes) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(key, value, self._ttl)
        except Exception as e:
            log.warning("cache.unavailable", extra={"op": "set", "key": key, "error": type(e).__name__})

    async def get_config(self, config_id: str) -> ModelConfig | None:
        raw = await self._get(config_key(config_id))
        if raw is None:
            return None
        try:
            return ModelConfig.model_validate_json(raw)
        except ValidationError:
            log.warning("cache.corrupt_entry", extra={"key": config_key(config_id)})
            return None

    async def put_config(self, config: ModelConfig) -> None:
        await self._set(config_key(config.id), config.model_dump_json().encode("utf-8"))

    async def get_default_id(self, capability: Capability | None) -> str | None:
        raw = await self._get(default_key(capability))
        if not raw:
            return None
        try:
            return raw.decode("utf-8").strip() or None
        except UnicodeDecodeError:
            log.warning("cache.corrupt_entry", extra={"key": default_key(capability)})
            return None

    async def put_default_id(self, capability: Capability | None, config_id: str) -> None:
        await self._set(default_key(capability), config_id.encode("utf-8"))

    async def invalidate(self, config_id: str | None = None, capabilities: Iterable[Capability | None] = ()) -> None:
        """Drop a config entry and the pointer entries that may name it.

        Used by the store's write path; unlike reads, failures here are raised so the
        write path can decide whether a stale entry is acceptable.
        """
        if self._cache is None:
            return
        keys = [default_key(c) for c in capabilities]
        if config_id is not None:
            keys.insert(0, config_key(config_id))
        if keys:
            await self._cache.delete(*keys)

    async def sync_all(self, configs: Iterable[ModelConfig]) -> int:
        """Write every config and every default pointer it holds. Returns the config count."""
        if self._cache is None:
            return 0
        count = 0
        for config in configs:
            await self._cache.set(config_key(config.id), config.model_dump_json().encode("utf-8"), self._ttl)
            for capability in config.default_for:
                await self._cache.set(default_key(capability), config.id.encode("utf-8"), self._ttl)
                if capability == Capability.CHAT:
                    await self._cache.set(default_key(None), config.id.encode("utf-8"), self._ttl)
            count += 1
        return count
