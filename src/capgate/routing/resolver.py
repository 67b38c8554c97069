from __future__ import annotations

import logging

from capgate.cache.config_cache import ConfigCache
from capgate.core.errors import ConfigNotFoundError, NoConfigAvailableError
from capgate.domain.chat import Capability
from capgate.domain.models import ModelConfig
from capgate.storage.base import ConfigStore

log = logging.getLogger(__name__)


class ConfigResolver:
    """Picks the single ModelConfig for a request.

    Precedence, first hit wins:
        1. explicit config id (absent id is a caller error, never a fallback trigger)
        2. default for the requested capability
        3. global default (chat)
        4. NoConfigAvailable

    Reads go through the cache; misses read the store and write the value back.
    """

    def __init__(self, store: ConfigStore, cache: ConfigCache):
        self._store = store
        self._cache = cache

    async def resolve(self, capability: Capability, explicit_config_id: str | None = None) -> ModelConfig:
        if explicit_config_id:
            config = await self._by_id(explicit_config_id)
            if config is None:
                raise ConfigNotFoundError(f"Model config {explicit_config_id} not found")
            return config

        config = await self._default_for(capability)
        if config is not None:
            return config

        config = await self._global_default()
        if config is not None:
            log.info(
                "resolver.global_fallback",
                extra={"capability": capability.value, "config_id": config.id},
            )
            return config

        raise NoConfigAvailableError(f"No model config available for capability {capability.value}")

    async def _by_id(self, config_id: str) -> ModelConfig | None:
        config = await self._cache.get_config(config_id)
        if config is not None:
            return config
        config = await self._store.get_by_id(config_id)
        if config is not None:
            await self._cache.put_config(config)
        return config

    async def _default_for(self, capability: Capability) -> ModelConfig | None:
        config = await self._cached_pointer(capability)
        if config is not None:
            return config
        config = await self._store.get_default(capability)
        if config is not None:
            await self._write_back(capability, config)
        return config

    async def _global_default(self) -> ModelConfig | None:
        config = await self._cached_pointer(None)
        if config is not None:
            return config
        config = await self._store.get_global_default()
        if config is not None:
            await self._write_back(None, config)
        return config

    async def _cached_pointer(self, capability: Capability | None) -> ModelConfig | None:
        config_id = await self._cache.get_default_id(capability)
        if config_id is None:
            return None
        config = await self._cache.get_config(config_id)
        if config is None:
            return None
        # A pointer can briefly disagree with the config during a default switch;
        # anything inconsistent is treated as a miss and re-read from the store.
        wanted = capability or Capability.CHAT
        if not config.serves(wanted):
            log.info(
                "resolver.inconsistent_pointer",
                extra={"capability": wanted.value, "config_id": config_id},
            )
            return None
        return config

    async def _write_back(self, capability: Capability | None, config: ModelConfig) -> None:
        await self._cache.put_config(config)
        await self._cache.put_default_id(capability, config.id)
