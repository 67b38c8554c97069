from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
from collections.abc import AsyncIterator, Callable
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from capgate.core.errors import ErrorKind, GatewayError
from capgate.domain.chat import CanonicalMessage, CanonicalRequest
from capgate.domain.models import ProtocolFamily, ResolvedContext
from capgate.providers.base import DEFAULT_ERROR_BODY_LIMIT, ProviderAdapter, UpstreamRequest, sanitize_error_body
from capgate.providers.openai_compatible import resolve_temperature
from capgate.streaming.source import Framing, RawSource

log = logging.getLogger(__name__)

# The SDK only knows two speakers; system text is sent as the user's.
ROLE_MAP = {"system": "user", "user": "user", "assistant": "model"}

ClientFactory = Callable[[str, str], Any]


def default_client_factory(api_key: str, base_url: str) -> genai.Client:
    http_options = types.HttpOptions(base_url=base_url) if base_url else None
    return genai.Client(api_key=api_key, http_options=http_options)


def _image_part(url: str) -> dict[str, Any] | None:
    if url.startswith("data:"):
        header, _, data = url.partition(",")
        mime_type = header[5:].split(";", 1)[0] or "image/png"
        try:
            raw = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            log.warning("sdk.invalid_data_uri", extra={"mime_type": mime_type})
            return None
        return {"inline_data": {"mime_type": mime_type, "data": raw}}
    mime_type = mimetypes.guess_type(url.split("?", 1)[0])[0] or "image/jpeg"
    return {"file_data": {"file_uri": url, "mime_type": mime_type}}


def _parts(m: CanonicalMessage) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = []
    if m.content:
        parts.append({"text": m.content})
    for url in m.images:
        part = _image_part(url)
        if part is not None:
            parts.append(part)
    return parts


def build_contents(messages: list[CanonicalMessage]) -> list[dict[str, Any]]:
    """Map canonical messages to SDK turns, merging consecutive turns of the same role."""
    contents: list[dict[str, Any]] = []
    for m in messages:
        parts = _parts(m)
        if not parts:
            continue
        role = ROLE_MAP[m.role]
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].extend(parts)
        else:
            contents.append({"role": role, "parts": parts})
    return contents


async def _single(response: Any) -> AsyncIterator[Any]:
    yield response


class GenAIStreamingAdapter(ProviderAdapter):
    """Vendor-SDK family: a client is built per call with the decrypted key.

    The SDK yields response objects whose `.text` is the fragment; there is no `data:` framing.
    """

    family = ProtocolFamily.SDK_STREAMING

    def __init__(
        self,
        *,
        client_factory: ClientFactory = default_client_factory,
        error_body_limit: int = DEFAULT_ERROR_BODY_LIMIT,
    ):
        self._client_factory = client_factory
        self._error_body_limit = error_body_limit

    def build_request(self, req: CanonicalRequest, ctx: ResolvedContext) -> UpstreamRequest:
        payload: dict[str, Any] = {
            "model": ctx.config.model,
            "contents": build_contents(req.messages),
            "config": {"temperature": resolve_temperature(req, ctx)},
        }
        return UpstreamRequest(
            url=ctx.config.base_url,
            payload=payload,
            stream=req.stream,
            framing=Framing.CHUNKS,
        )

    async def open(self, upstream: UpstreamRequest, ctx: ResolvedContext) -> RawSource:
        try:
            client = self._client_factory(ctx.plaintext_api_key, ctx.config.base_url)
        except Exception as e:
            raise self._map_error(e, ctx) from e
        try:
            if upstream.stream:
                stream = await client.aio.models.generate_content_stream(**upstream.payload)
                chunks = self._iter_chunks(stream, ctx)
            else:
                response = await client.aio.models.generate_content(**upstream.payload)
                chunks = _single(response)
        except Exception as e:
            await client.aio.aclose()
            raise self._map_error(e, ctx) from e
        return RawSource(framing=Framing.CHUNKS, chunks=chunks, close=client.aio.aclose)

    async def _iter_chunks(self, stream: AsyncIterator[Any], ctx: ResolvedContext) -> AsyncIterator[Any]:
        try:
            async for chunk in stream:
                yield chunk
        except Exception as e:
            raise self._map_error(e, ctx) from e

    def _map_error(self, e: Exception, ctx: ResolvedContext) -> GatewayError:
        if isinstance(e, genai_errors.APIError):
            detail = sanitize_error_body(
                str(e.message or e.status or ""),
                secrets=[ctx.plaintext_api_key],
                limit=self._error_body_limit,
            )
            log.warning("upstream.http_error", extra={"protocol": self.family.value, "status": e.code, "body": detail})
            return GatewayError(
                f"Upstream returned {e.code}: {detail}",
                kind=ErrorKind.UPSTREAM_HTTP_ERROR,
                status=e.code,
            )
        # Any other SDK failure counts as unreachable.
        log.warning("upstream.unreachable", extra={"protocol": self.family.value, "error": type(e).__name__})
        return GatewayError(
            f"{self.family.value} upstream unreachable ({type(e).__name__})",
            kind=ErrorKind.UPSTREAM_UNREACHABLE,
        )
