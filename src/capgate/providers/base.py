from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx

from capgate.core.errors import ErrorKind, GatewayError
from capgate.domain.chat import CanonicalRequest
from capgate.domain.events import CanonicalEvent
from capgate.domain.models import ProtocolFamily, ResolvedContext
from capgate.streaming.normalizer import normalize
from capgate.streaming.source import Framing, RawSource

log = logging.getLogger(__name__)

DEFAULT_ERROR_BODY_LIMIT = 500


@dataclass(frozen=True)
class UpstreamRequest:
    url: str
    payload: dict[str, Any]
    stream: bool
    framing: Framing
    headers: dict[str, str] = field(default_factory=dict, repr=False)


def sanitize_error_body(body: str, *, secrets: Iterable[str] = (), limit: int = DEFAULT_ERROR_BODY_LIMIT) -> str:
    """Redact credentials from an upstream error body and truncate it for logs and callers."""
    for secret in secrets:
        if secret:
            body = body.replace(secret, "***")
    body = body.strip()
    if len(body) > limit:
        body = body[:limit] + "…"
    return body


class ProviderAdapter(ABC):
    """One adapter per protocol family: builds the wire request and opens the upstream call."""

    family: ProtocolFamily

    @abstractmethod
    def build_request(self, req: CanonicalRequest, ctx: ResolvedContext) -> UpstreamRequest:
        raise NotImplementedError

    @abstractmethod
    async def open(self, upstream: UpstreamRequest, ctx: ResolvedContext) -> RawSource:
        """Issue the upstream call. Raises GatewayError for unreachable or non-2xx upstreams."""
        raise NotImplementedError

    def parse_response(self, source: RawSource) -> AsyncIterator[CanonicalEvent]:
        return normalize(self.family, source)


class HttpProviderAdapter(ProviderAdapter):
    """Shared httpx transport for the HTTP-based families."""

    def __init__(self, *, client: httpx.AsyncClient, error_body_limit: int = DEFAULT_ERROR_BODY_LIMIT):
        self._client = client
        self._error_body_limit = error_body_limit

    async def open(self, upstream: UpstreamRequest, ctx: ResolvedContext) -> RawSource:
        try:
            request = self._client.build_request("POST", upstream.url, json=upstream.payload, headers=upstream.headers)
            resp = await self._client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            log.warning(
                "upstream.unreachable",
                extra={"protocol": self.family.value, "error": type(e).__name__},
            )
            raise GatewayError(
                f"{self.family.value} upstream unreachable ({type(e).__name__})",
                kind=ErrorKind.UPSTREAM_UNREACHABLE,
            ) from e

        if not resp.is_success:
            try:
                body = await resp.aread()
            except httpx.HTTPError:
                body = b""
            finally:
                await resp.aclose()
            detail = sanitize_error_body(
                body.decode("utf-8", errors="replace"),
                secrets=[ctx.plaintext_api_key],
                limit=self._error_body_limit,
            )
            log.warning(
                "upstream.http_error",
                extra={"protocol": self.family.value, "status": resp.status_code, "body": detail},
            )
            raise GatewayError(
                f"Upstream returned {resp.status_code}: {detail}",
                kind=ErrorKind.UPSTREAM_HTTP_ERROR,
                status=resp.status_code,
            )

        return RawSource(framing=upstream.framing, chunks=self._iter_bytes(resp), close=resp.aclose)

    async def _iter_bytes(self, resp: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in resp.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            log.warning(
                "upstream.stream_broken",
                extra={"protocol": self.family.value, "error": type(e).__name__},
            )
            raise GatewayError(
                f"{self.family.value} upstream connection failed mid-response ({type(e).__name__})",
                kind=ErrorKind.UPSTREAM_UNREACHABLE,
            ) from e


def chat_completions_url(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base.endswith("/chat/completions"):
        return base
    return f"{base}/chat/completions"


def bearer_headers(api_key: str) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    # An empty key is sent without credentials; the upstream answers 401.
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers
