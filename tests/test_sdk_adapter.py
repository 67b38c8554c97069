from __future__ import annotations

from collections.abc import AsyncIterator
from types import SimpleNamespace

import httpx
import pytest
from google.genai import errors as genai_errors

from capgate.core.errors import ErrorKind, GatewayError
from capgate.domain.chat import CanonicalMessage, CanonicalRequest
from capgate.domain.events import Done, ErrorEvent, TextDelta
from capgate.domain.models import ModelConfig, ProtocolFamily, ResolvedContext
from capgate.providers.sdk_streaming import GenAIStreamingAdapter, build_contents

API_KEY = "sk-gen-secret"


class FakeModels:
    def __init__(self, *, chunks=(), response=None, error=None, fail_after=None):
        self.chunks = list(chunks)
        self.response = response
        self.error = error
        self.fail_after = fail_after
        self.calls: list[dict] = []

    async def _iter(self) -> AsyncIterator[SimpleNamespace]:
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise self.fail_after_error
            yield chunk

    async def generate_content_stream(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self._iter()

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


class FakeAio:
    def __init__(self, models: FakeModels):
        self.models = models
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


class FakeFactory:
    def __init__(self, models: FakeModels):
        self.models = models
        self.created: list[tuple[str, str]] = []
        self.clients: list[SimpleNamespace] = []

    def __call__(self, api_key: str, base_url: str):
        self.created.append((api_key, base_url))
        client = SimpleNamespace(aio=FakeAio(self.models))
        self.clients.append(client)
        return client


def _ctx() -> ResolvedContext:
    config = ModelConfig(
        id="g1",
        name="gemini",
        model="gemini-2.0-flash",
        temperature=0.3,
        protocol_family=ProtocolFamily.SDK_STREAMING,
    )
    return ResolvedContext(config=config, plaintext_api_key=API_KEY)


def _req(stream: bool = True) -> CanonicalRequest:
    return CanonicalRequest(
        messages=[
            CanonicalMessage(role="system", content="Be terse."),
            CanonicalMessage(role="user", content="hi"),
            CanonicalMessage(role="assistant", content="hello"),
            CanonicalMessage(role="user", content="again"),
        ],
        stream=stream,
    )


def test_roles_are_remapped_and_merged() -> None:
    contents = build_contents(_req().messages)
    assert contents == [
        {"role": "user", "parts": [{"text": "Be terse."}, {"text": "hi"}]},
        {"role": "model", "parts": [{"text": "hello"}]},
        {"role": "user", "parts": [{"text": "again"}]},
    ]


def test_image_parts() -> None:
    msg = CanonicalMessage(role="user", content="look", images=["https://img.test/a.png", "data:image/jpeg;base64,AAAA"])
    parts = build_contents([msg])[0]["parts"]
    assert parts[0] == {"text": "look"}
    assert parts[1] == {"file_data": {"file_uri": "https://img.test/a.png", "mime_type": "image/png"}}
    assert parts[2]["inline_data"]["mime_type"] == "image/jpeg"
    assert parts[2]["inline_data"]["data"] == b"\x00\x00\x00"


def test_build_request() -> None:
    adapter = GenAIStreamingAdapter(client_factory=FakeFactory(FakeModels()))
    upstream = adapter.build_request(_req(), _ctx())
    assert upstream.payload["model"] == "gemini-2.0-flash"
    assert upstream.payload["config"] == {"temperature": 0.3}
    assert upstream.headers == {}


@pytest.mark.asyncio
async def test_stream_yields_chunk_text_and_closes_client() -> None:
    models = FakeModels(chunks=[SimpleNamespace(text="he"), SimpleNamespace(text="llo")])
    factory = FakeFactory(models)
    adapter = GenAIStreamingAdapter(client_factory=factory)
    ctx = _ctx()

    source = await adapter.open(adapter.build_request(_req(), ctx), ctx)
    events = [e async for e in adapter.parse_response(source)]
    await source.aclose()

    assert factory.created == [(API_KEY, "")]
    assert [e.text for e in events if isinstance(e, TextDelta)] == ["he", "hello"]
    assert events[-1] == Done(final_text="hello")
    assert factory.clients[0].aio.closed


@pytest.mark.asyncio
async def test_one_shot_uses_non_streaming_call() -> None:
    models = FakeModels(response=SimpleNamespace(text="whole answer"))
    adapter = GenAIStreamingAdapter(client_factory=FakeFactory(models))
    ctx = _ctx()

    source = await adapter.open(adapter.build_request(_req(stream=False), ctx), ctx)
    events = [e async for e in adapter.parse_response(source)]

    assert [type(e) for e in events] == [TextDelta, Done]
    assert events[-1].final_text == "whole answer"
    assert len(models.calls) == 1


@pytest.mark.asyncio
async def test_api_error_is_sanitized_upstream_http_error() -> None:
    error = genai_errors.ClientError(
        429, {"error": {"code": 429, "message": f"quota exceeded for {API_KEY}", "status": "RESOURCE_EXHAUSTED"}}
    )
    factory = FakeFactory(FakeModels(error=error))
    adapter = GenAIStreamingAdapter(client_factory=factory)
    ctx = _ctx()

    with pytest.raises(GatewayError) as exc_info:
        await adapter.open(adapter.build_request(_req(), ctx), ctx)

    err = exc_info.value
    assert err.kind == ErrorKind.UPSTREAM_HTTP_ERROR
    assert err.status == 429
    assert "quota exceeded" in err.message
    assert API_KEY not in err.message
    assert factory.clients[0].aio.closed


@pytest.mark.asyncio
async def test_network_error_mid_stream_becomes_terminal_error() -> None:
    models = FakeModels(chunks=[SimpleNamespace(text="par"), SimpleNamespace(text="tial")], fail_after=1)
    models.fail_after_error = httpx.ReadError("connection reset")
    adapter = GenAIStreamingAdapter(client_factory=FakeFactory(models))
    ctx = _ctx()

    source = await adapter.open(adapter.build_request(_req(), ctx), ctx)
    events = [e async for e in adapter.parse_response(source)]
    await source.aclose()

    assert [type(e) for e in events] == [TextDelta, ErrorEvent]
    assert events[-1].kind == ErrorKind.UPSTREAM_UNREACHABLE


@pytest.mark.asyncio
async def test_unknown_sdk_error_mid_stream_becomes_terminal_error() -> None:
    models = FakeModels(chunks=[SimpleNamespace(text="par"), SimpleNamespace(text="tial")], fail_after=1)
    models.fail_after_error = ValueError("unexpected payload")
    adapter = GenAIStreamingAdapter(client_factory=FakeFactory(models))
    ctx = _ctx()

    source = await adapter.open(adapter.build_request(_req(), ctx), ctx)
    events = [e async for e in adapter.parse_response(source)]
    await source.aclose()

    assert [type(e) for e in events] == [TextDelta, ErrorEvent]
    assert events[-1].kind == ErrorKind.UPSTREAM_UNREACHABLE
    assert API_KEY not in events[-1].message


@pytest.mark.asyncio
async def test_unknown_sdk_error_on_open_closes_client() -> None:
    factory = FakeFactory(FakeModels(error=TypeError("bad argument")))
    adapter = GenAIStreamingAdapter(client_factory=factory)
    ctx = _ctx()

    with pytest.raises(GatewayError) as exc_info:
        await adapter.open(adapter.build_request(_req(), ctx), ctx)

    assert exc_info.value.kind == ErrorKind.UPSTREAM_UNREACHABLE
    assert factory.clients[0].aio.closed
