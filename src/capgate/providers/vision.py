from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit

import httpx

from capgate.domain.chat import CanonicalMessage, CanonicalRequest
from capgate.domain.models import ProtocolFamily, ResolvedContext
from capgate.providers.base import (
    DEFAULT_ERROR_BODY_LIMIT,
    HttpProviderAdapter,
    UpstreamRequest,
    bearer_headers,
    chat_completions_url,
)
from capgate.providers.openai_compatible import resolve_temperature
from capgate.streaming.source import Framing

OSS_HOST_SUFFIX = "aliyuncs.com"
OSS_PROCESS_PARAM = "x-oss-process"
OSS_PROCESS_HINT = "image/resize,w_1024/format,jpg/quality,q_80"


def optimize_image_url(url: str) -> str:
    """Ask Alibaba OSS for a downscaled JPEG; other URLs and data URIs pass through untouched."""
    if url.startswith("data:"):
        return url
    host = urlsplit(url).hostname or ""
    if not host.endswith(OSS_HOST_SUFFIX) or OSS_PROCESS_PARAM in url:
        return url
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{OSS_PROCESS_PARAM}={OSS_PROCESS_HINT}"


def _user_content(m: CanonicalMessage) -> list[dict[str, Any]]:
    # Images first, then the prompt text.
    parts: list[dict[str, Any]] = [
        {"type": "image_url", "image_url": {"url": optimize_image_url(url)}} for url in m.images
    ]
    if m.content:
        parts.append({"type": "text", "text": m.content})
    return parts


class VisionAdapter(HttpProviderAdapter):
    """Multimodal chat-completions family with two sub-variants picked by model name.

    Models starting with `reasoning_prefix` are the reasoning variant: they only stream,
    so the upstream call always streams even when the caller asked for one result.
    """

    family = ProtocolFamily.VISION_MULTIMODAL

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        reasoning_prefix: str = "qvq",
        error_body_limit: int = DEFAULT_ERROR_BODY_LIMIT,
    ):
        super().__init__(client=client, error_body_limit=error_body_limit)
        self._reasoning_prefix = reasoning_prefix.lower()

    def is_reasoning_model(self, model: str) -> bool:
        return bool(self._reasoning_prefix) and model.lower().startswith(self._reasoning_prefix)

    def build_request(self, req: CanonicalRequest, ctx: ResolvedContext) -> UpstreamRequest:
        messages: list[dict[str, Any]] = []
        system_prompt = req.system_prompt
        if system_prompt:
            messages.append({"role": "system", "content": [{"type": "text", "text": system_prompt}]})
        for m in req.messages:
            if m.role == "system":
                continue
            if m.role == "user":
                messages.append({"role": "user", "content": _user_content(m)})
            else:
                messages.append({"role": m.role, "content": [{"type": "text", "text": m.content}]})

        stream = req.stream or self.is_reasoning_model(ctx.config.model)
        payload: dict[str, Any] = {
            "model": ctx.config.model,
            "messages": messages,
            "temperature": resolve_temperature(req, ctx),
            "stream": stream,
        }
        return UpstreamRequest(
            url=chat_completions_url(ctx.config.base_url),
            payload=payload,
            stream=stream,
            framing=Framing.SSE if stream else Framing.JSON,
            headers=bearer_headers(ctx.plaintext_api_key),
        )
