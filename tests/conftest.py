from __future__ import annotations

import pytest

from capgate.cache.base import Cache
from capgate.domain.chat import Capability
from capgate.domain.models import ModelConfig
from capgate.security.vault import CredentialVault
from capgate.storage.base import ConfigStore


class MemoryCache(Cache):
    """In-process Cache; `fail = True` makes every call raise like an unreachable Redis."""

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False
        self.writes = 0

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("cache down")

    async def get(self, key: str) -> bytes | None:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self._check()
        self.writes += 1
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    async def delete(self, *keys: str) -> None:
        self._check()
        for key in keys:
            self.data.pop(key, None)


class FakeStore(ConfigStore):
    def __init__(self) -> None:
        self.configs: dict[str, ModelConfig] = {}
        self.defaults: dict[Capability, str] = {}
        self.calls = 0

    def add(self, config: ModelConfig, *, default_for: tuple[Capability, ...] = ()) -> ModelConfig:
        for capability in default_for:
            self.defaults[capability] = config.id
        config = config.model_copy(update={"default_for": list(default_for)})
        self.configs[config.id] = config
        return config

    async def get_by_id(self, config_id: str) -> ModelConfig | None:
        self.calls += 1
        return self.configs.get(config_id)

    async def get_default(self, capability: Capability) -> ModelConfig | None:
        self.calls += 1
        config_id = self.defaults.get(capability)
        return self.configs.get(config_id) if config_id else None

    async def get_global_default(self) -> ModelConfig | None:
        return await self.get_default(Capability.CHAT)

    async def list_configs(self, capability: Capability | None = None) -> list[ModelConfig]:
        return [c for c in self.configs.values() if capability is None or c.serves(capability)]

    async def set_default(self, config_id: str, capability: Capability) -> ModelConfig:
        self.defaults[capability] = config_id
        return self.configs[config_id]

    async def delete_config(self, config_id: str) -> bool:
        if self.configs.pop(config_id, None) is None:
            return False
        self.defaults = {c: i for c, i in self.defaults.items() if i != config_id}
        return True


@pytest.fixture
def memory_cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault("test-secret")
