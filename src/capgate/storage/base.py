from __future__ import annotations

from abc import ABC, abstractmethod

from capgate.domain.chat import Capability
from capgate.domain.models import ModelConfig


class ConfigStore(ABC):
    """Source of truth for model configurations."""

    @abstractmethod
    async def get_by_id(self, config_id: str) -> ModelConfig | None:
        raise NotImplementedError

    @abstractmethod
    async def get_default(self, capability: Capability) -> ModelConfig | None:
        raise NotImplementedError

    @abstractmethod
    async def get_global_default(self) -> ModelConfig | None:
        raise NotImplementedError

    @abstractmethod
    async def list_configs(self, capability: Capability | None = None) -> list[ModelConfig]:
        raise NotImplementedError

    @abstractmethod
    async def set_default(self, config_id: str, capability: Capability) -> ModelConfig:
        raise NotImplementedError

    @abstractmethod
    async def delete_config(self, config_id: str) -> bool:
        """Remove a config and its default pointers. Returns False when it does not exist."""
        raise NotImplementedError
