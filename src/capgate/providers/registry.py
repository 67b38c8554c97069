from __future__ import annotations

from dataclasses import dataclass, field

from capgate.domain.models import ModelConfig, ProtocolFamily
from capgate.providers.base import ProviderAdapter


@dataclass
class ProviderRegistry:
    """Closed dispatch: one adapter per protocol family, chosen from the resolved config only."""

    _adapters: dict[ProtocolFamily, ProviderAdapter] = field(default_factory=dict)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.family] = adapter

    def get(self, family: ProtocolFamily) -> ProviderAdapter:
        return self._adapters[family]

    def for_config(self, config: ModelConfig) -> ProviderAdapter:
        return self.get(config.protocol_family)
