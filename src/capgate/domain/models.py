from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field

from capgate.domain.chat import Capability


class ProtocolFamily(str, Enum):
    OPENAI_COMPATIBLE = "openai-compatible"
    SDK_STREAMING = "sdk-streaming"
    VISION_MULTIMODAL = "vision-multimodal"


class ModelConfig(BaseModel):
    """A named, persisted inference target. `encrypted_api_key` is ciphertext only."""

    id: str
    name: str
    model: str = Field(..., description="Upstream model identifier")
    base_url: str = ""
    encrypted_api_key: str = Field(default="", repr=False)
    temperature: float | None = None
    capabilities: list[Capability] = Field(default_factory=lambda: [Capability.CHAT])
    protocol_family: ProtocolFamily = ProtocolFamily.OPENAI_COMPATIBLE
    default_for: list[Capability] = Field(default_factory=list)

    def serves(self, capability: Capability) -> bool:
        return capability in self.capabilities


class ModelConfigView(BaseModel):
    """Admin listing shape; never carries the ciphertext."""

    id: str
    name: str
    model: str
    base_url: str
    temperature: float | None
    capabilities: list[Capability]
    protocol_family: ProtocolFamily
    default_for: list[Capability]
    has_api_key: bool

    @classmethod
    def from_config(cls, config: ModelConfig) -> ModelConfigView:
        return cls(
            id=config.id,
            name=config.name,
            model=config.model,
            base_url=config.base_url,
            temperature=config.temperature,
            capabilities=config.capabilities,
            protocol_family=config.protocol_family,
            default_for=config.default_for,
            has_api_key=bool(config.encrypted_api_key),
        )


@dataclass
class ResolvedContext:
    """Request-scoped pairing of a config and its decrypted key. Never persisted or shared."""

    config: ModelConfig
    plaintext_api_key: str = field(repr=False)

    def discard(self) -> None:
        self.plaintext_api_key = ""
