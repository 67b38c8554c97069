from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class Capability(str, Enum):
    CHAT = "chat"
    VISION = "vision"
    REASONING = "reasoning"


class CanonicalMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str
    images: list[str] = Field(default_factory=list, description="Image URLs: https://... or data:image/<type>;base64,...")


class CanonicalRequest(BaseModel):
    """Provider-agnostic request every capsule feature sends through the gateway."""

    messages: list[CanonicalMessage] = Field(..., min_length=1)
    capability: Capability = Capability.CHAT
    explicit_config_id: str | None = None
    temperature_override: float | None = Field(default=None, ge=0.0, le=2.0)
    stream: bool = False

    @property
    def system_prompt(self) -> str | None:
        parts = [m.content for m in self.messages if m.role == "system" and m.content]
        return "\n\n".join(parts) if parts else None


class InvokeResult(BaseModel):
    text: str
    used_config_id: str
    reasoning: str | None = None
