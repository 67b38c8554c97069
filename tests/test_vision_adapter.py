from __future__ import annotations

import json

import httpx
import pytest

from capgate.domain.chat import CanonicalMessage, CanonicalRequest
from capgate.domain.events import Done
from capgate.domain.models import ModelConfig, ProtocolFamily, ResolvedContext
from capgate.providers.vision import VisionAdapter, optimize_image_url
from capgate.streaming.source import Framing

OSS_URL = "https://bucket.oss-cn-hangzhou.aliyuncs.com/cat.png"


def _ctx(model: str) -> ResolvedContext:
    config = ModelConfig(
        id="v1",
        name="vision",
        model=model,
        base_url="https://dashscope.test/compatible-mode/v1",
        protocol_family=ProtocolFamily.VISION_MULTIMODAL,
    )
    return ResolvedContext(config=config, plaintext_api_key="sk-vision")


def _req(stream: bool = False) -> CanonicalRequest:
    return CanonicalRequest(
        messages=[
            CanonicalMessage(role="system", content="Describe briefly."),
            CanonicalMessage(role="user", content="What is this?", images=[OSS_URL, "data:image/png;base64,AAAA"]),
        ],
        capability="vision",
        stream=stream,
    )


def test_optimize_image_url() -> None:
    assert optimize_image_url(OSS_URL) == OSS_URL + "?x-oss-process=image/resize,w_1024/format,jpg/quality,q_80"
    assert optimize_image_url(OSS_URL + "?v=1").startswith(OSS_URL + "?v=1&x-oss-process=")
    already = OSS_URL + "?x-oss-process=image/resize,w_512"
    assert optimize_image_url(already) == already
    assert optimize_image_url("https://example.com/cat.png") == "https://example.com/cat.png"
    assert optimize_image_url("data:image/png;base64,AAAA") == "data:image/png;base64,AAAA"


def test_build_request_puts_images_before_text() -> None:
    adapter = VisionAdapter(client=httpx.AsyncClient())
    upstream = adapter.build_request(_req(), _ctx("qwen-vl-max"))
    messages = upstream.payload["messages"]

    assert messages[0] == {"role": "system", "content": [{"type": "text", "text": "Describe briefly."}]}
    content = messages[1]["content"]
    assert [p["type"] for p in content] == ["image_url", "image_url", "text"]
    assert "x-oss-process" in content[0]["image_url"]["url"]
    assert content[1]["image_url"]["url"] == "data:image/png;base64,AAAA"
    assert content[2]["text"] == "What is this?"
    assert upstream.stream is False
    assert upstream.framing is Framing.JSON


def test_reasoning_variant_always_streams() -> None:
    adapter = VisionAdapter(client=httpx.AsyncClient(), reasoning_prefix="qvq")
    upstream = adapter.build_request(_req(stream=False), _ctx("QVQ-max-latest"))
    assert upstream.stream is True
    assert upstream.payload["stream"] is True
    assert upstream.framing is Framing.SSE


@pytest.mark.asyncio
async def test_output_message_shape_is_recognized() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/chat/completions")
        return httpx.Response(200, json={"output": {"choices": [{"message": {"content": [{"text": "A cat."}]}}]}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        adapter = VisionAdapter(client=client)
        ctx = _ctx("qwen-vl-max")
        source = await adapter.open(adapter.build_request(_req(), ctx), ctx)
        events = [e async for e in adapter.parse_response(source)]
        await source.aclose()

    assert events[-1] == Done(final_text="A cat.")


@pytest.mark.asyncio
async def test_reasoning_variant_one_shot_collects_stream() -> None:
    body = (
        b'data: {"choices":[{"delta":{"reasoning_content":"Looking..."}}]}\n\n'
        b'data: {"choices":[{"delta":{"content":"A "}}]}\n\n'
        b'data: {"choices":[{"delta":{"content":"cat."}}]}\n\n'
        b"data: [DONE]\n\n"
    )

    async def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content=body)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        adapter = VisionAdapter(client=client)
        ctx = _ctx("qvq-max")
        source = await adapter.open(adapter.build_request(_req(), ctx), ctx)
        events = [e async for e in adapter.parse_response(source)]
        await source.aclose()

    assert events[-1] == Done(final_text="A cat.", reasoning="Looking...")
