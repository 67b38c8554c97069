from __future__ import annotations

import json

import httpx
import pytest

from capgate.core.errors import ErrorKind, GatewayError
from capgate.domain.chat import CanonicalMessage, CanonicalRequest
from capgate.domain.events import Done, TextDelta
from capgate.domain.models import ModelConfig, ResolvedContext
from capgate.providers.base import bearer_headers, chat_completions_url, sanitize_error_body
from capgate.providers.openai_compatible import OpenAICompatibleAdapter
from capgate.streaming.source import Framing

API_KEY = "sk-live-abcdef"


def _ctx(**kw) -> ResolvedContext:
    config = ModelConfig(id="c1", name="qwen", model="qwen-plus", base_url="https://upstream.test/v1/", **kw)
    return ResolvedContext(config=config, plaintext_api_key=API_KEY)


def _req(stream: bool = False, **kw) -> CanonicalRequest:
    return CanonicalRequest(messages=[CanonicalMessage(role="user", content="hi")], stream=stream, **kw)


def test_chat_completions_url() -> None:
    assert chat_completions_url("https://a.test/v1/") == "https://a.test/v1/chat/completions"
    assert chat_completions_url("https://a.test/v1/chat/completions") == "https://a.test/v1/chat/completions"


def test_build_request_defaults() -> None:
    adapter = OpenAICompatibleAdapter(client=httpx.AsyncClient())
    upstream = adapter.build_request(_req(), _ctx())

    assert upstream.url == "https://upstream.test/v1/chat/completions"
    assert upstream.payload == {
        "model": "qwen-plus",
        "messages": [{"role": "user", "content": "hi"}],
        "temperature": 0.7,
        "stream": False,
    }
    assert upstream.framing is Framing.JSON
    assert upstream.headers["Authorization"] == f"Bearer {API_KEY}"
    assert API_KEY not in repr(upstream)


def test_temperature_precedence() -> None:
    adapter = OpenAICompatibleAdapter(client=httpx.AsyncClient())
    assert adapter.build_request(_req(), _ctx(temperature=0.2)).payload["temperature"] == 0.2
    assert adapter.build_request(_req(temperature_override=1.5), _ctx(temperature=0.2)).payload["temperature"] == 1.5


def test_images_become_content_parts() -> None:
    adapter = OpenAICompatibleAdapter(client=httpx.AsyncClient())
    req = CanonicalRequest(
        messages=[CanonicalMessage(role="user", content="what is it?", images=["https://img.test/a.png"])]
    )
    content = adapter.build_request(req, _ctx()).payload["messages"][0]["content"]
    assert content == [
        {"type": "text", "text": "what is it?"},
        {"type": "image_url", "image_url": {"url": "https://img.test/a.png"}},
    ]


@pytest.mark.asyncio
async def test_one_shot_call_end_to_end() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/chat/completions"
        assert request.headers.get("authorization") == f"Bearer {API_KEY}"
        assert json.loads(request.content)["stream"] is False
        return httpx.Response(200, json={"choices": [{"message": {"content": "hello"}}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        adapter = OpenAICompatibleAdapter(client=client)
        ctx = _ctx()
        source = await adapter.open(adapter.build_request(_req(), ctx), ctx)
        events = [e async for e in adapter.parse_response(source)]
        await source.aclose()

    assert [type(e) for e in events] == [TextDelta, Done]
    assert events[-1].final_text == "hello"


@pytest.mark.asyncio
async def test_streaming_call_end_to_end() -> None:
    body = (
        b'data: {"choices":[{"delta":{"content":"he"}}]}\n\n'
        b'data: {"choices":[{"delta":{"content":"llo"}}]}\n\n'
        b"data: [DONE]\n\n"
    )

    async def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        adapter = OpenAICompatibleAdapter(client=client)
        ctx = _ctx()
        source = await adapter.open(adapter.build_request(_req(stream=True), ctx), ctx)
        events = [e async for e in adapter.parse_response(source)]
        await source.aclose()

    assert [e.text for e in events if isinstance(e, TextDelta)] == ["he", "hello"]
    assert events[-1] == Done(final_text="hello")


@pytest.mark.asyncio
async def test_non_2xx_is_upstream_http_error_without_key() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": f"invalid api key {API_KEY}"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        adapter = OpenAICompatibleAdapter(client=client)
        ctx = _ctx()
        with pytest.raises(GatewayError) as exc_info:
            await adapter.open(adapter.build_request(_req(), ctx), ctx)

    err = exc_info.value
    assert err.kind == ErrorKind.UPSTREAM_HTTP_ERROR
    assert err.status == 401
    assert "invalid api key" in err.message
    assert API_KEY not in err.message


@pytest.mark.asyncio
async def test_network_failure_is_upstream_unreachable() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        adapter = OpenAICompatibleAdapter(client=client)
        ctx = _ctx()
        with pytest.raises(GatewayError) as exc_info:
            await adapter.open(adapter.build_request(_req(), ctx), ctx)

    assert exc_info.value.kind == ErrorKind.UPSTREAM_UNREACHABLE


def test_sanitize_error_body_redacts_and_truncates() -> None:
    out = sanitize_error_body("key=" + API_KEY + " " + "x" * 600, secrets=[API_KEY], limit=50)
    assert API_KEY not in out
    assert out.startswith("key=***")
    assert out.endswith("…")
    assert len(out) == 51


@pytest.mark.asyncio
async def test_invalid_base_url_is_upstream_unreachable() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        adapter = OpenAICompatibleAdapter(client=client)
        config = ModelConfig(id="c1", name="qwen", model="qwen-plus", base_url="https://upstream.test:badport/v1")
        ctx = ResolvedContext(config=config, plaintext_api_key=API_KEY)
        with pytest.raises(GatewayError) as exc_info:
            await adapter.open(adapter.build_request(_req(), ctx), ctx)

    assert exc_info.value.kind == ErrorKind.UPSTREAM_UNREACHABLE
    assert API_KEY not in exc_info.value.message


def test_empty_key_sends_no_authorization_header() -> None:
    assert bearer_headers("") == {"Content-Type": "application/json"}
    assert bearer_headers(API_KEY)["Authorization"] == f"Bearer {API_KEY}"


@pytest.mark.asyncio
async def test_empty_key_reaches_upstream_and_gets_its_401() -> None:
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if "authorization" not in request.headers:
            return httpx.Response(401, json={"error": "missing api key"})
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        adapter = OpenAICompatibleAdapter(client=client)
        config = ModelConfig(id="c1", name="qwen", model="qwen-plus", base_url="https://upstream.test/v1")
        ctx = ResolvedContext(config=config, plaintext_api_key="")
        with pytest.raises(GatewayError) as exc_info:
            await adapter.open(adapter.build_request(_req(), ctx), ctx)

    assert len(seen) == 1
    assert exc_info.value.kind == ErrorKind.UPSTREAM_HTTP_ERROR
    assert exc_info.value.status == 401
