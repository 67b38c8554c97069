from __future__ import annotations

from typing import Any

from capgate.domain.chat import CanonicalMessage, CanonicalRequest
from capgate.domain.models import ProtocolFamily, ResolvedContext
from capgate.providers.base import HttpProviderAdapter, UpstreamRequest, bearer_headers, chat_completions_url
from capgate.streaming.source import Framing

DEFAULT_TEMPERATURE = 0.7


def resolve_temperature(req: CanonicalRequest, ctx: ResolvedContext) -> float:
    if req.temperature_override is not None:
        return req.temperature_override
    if ctx.config.temperature is not None:
        return ctx.config.temperature
    return DEFAULT_TEMPERATURE


def _serialize_message(m: CanonicalMessage) -> dict[str, Any]:
    if not m.images:
        return {"role": m.role, "content": m.content}
    parts: list[dict[str, Any]] = [{"type": "text", "text": m.content}]
    parts.extend({"type": "image_url", "image_url": {"url": url}} for url in m.images)
    return {"role": m.role, "content": parts}


class OpenAICompatibleAdapter(HttpProviderAdapter):
    """`POST {base_url}/chat/completions`; SSE when streaming, one JSON body otherwise."""

    family = ProtocolFamily.OPENAI_COMPATIBLE

    def build_request(self, req: CanonicalRequest, ctx: ResolvedContext) -> UpstreamRequest:
        payload: dict[str, Any] = {
            "model": ctx.config.model,
            "messages": [_serialize_message(m) for m in req.messages],
            "temperature": resolve_temperature(req, ctx),
            "stream": req.stream,
        }
        return UpstreamRequest(
            url=chat_completions_url(ctx.config.base_url),
            payload=payload,
            stream=req.stream,
            framing=Framing.SSE if req.stream else Framing.JSON,
            headers=bearer_headers(ctx.plaintext_api_key),
        )
