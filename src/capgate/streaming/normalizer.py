"""Turns provider-specific raw responses into the canonical event sequence.

Every sequence produced here is zero or more TextDelta events followed by exactly one
terminal event (Done or ErrorEvent); nothing is yielded after the terminal event.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from capgate.core.errors import ErrorKind, GatewayError
from capgate.domain.events import CanonicalEvent, Done, ErrorEvent, TextDelta
from capgate.domain.models import ProtocolFamily
from capgate.streaming.shapes import ShapeMatch, match_error, match_shape
from capgate.streaming.source import Framing, RawSource

log = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
SAMPLE_LIMIT = 200
STRAY_LINE_LIMIT = 256

_DONE = object()


def _sample(raw: str | bytes) -> str:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return raw if len(raw) <= SAMPLE_LIMIT else raw[:SAMPLE_LIMIT] + "…"


class SseLineDecoder:
    """Incremental line framer: buffers partial lines (and split UTF-8 sequences) across reads."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in lines if line.strip()]

    def flush(self) -> list[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer.rstrip("\r"), ""
        return [rest] if rest.strip() else []


def data_payload(line: str) -> str | None:
    """Payload of a `data:` line, or None for any other SSE field or comment."""
    if not line.startswith("data:"):
        return None
    return line[5:].strip()


class _Accumulator:
    def __init__(self) -> None:
        self.text = ""
        self.reasoning = ""

    @property
    def empty(self) -> bool:
        return not self.text and not self.reasoning

    def add(self, match: ShapeMatch) -> TextDelta | None:
        if not match.content and not match.reasoning:
            return None
        self.text += match.content
        self.reasoning += match.reasoning
        return TextDelta(delta=match.content, text=self.text, reasoning=self.reasoning or None)

    def done(self) -> Done:
        return Done(final_text=self.text, reasoning=self.reasoning or None)


def _chunk_text(chunk: Any) -> str | None:
    """Text fragment of one SDK chunk (object with `.text`, a dict, or a bare string)."""
    if isinstance(chunk, str):
        return chunk
    if isinstance(chunk, dict):
        value = chunk.get("text")
    else:
        value = getattr(chunk, "text", None)
    if value is None or isinstance(value, str):
        return value
    return None


async def normalize(family: ProtocolFamily, source: RawSource) -> AsyncIterator[CanonicalEvent]:
    """Single-pass, lazy normalization of one upstream response."""
    acc = _Accumulator()
    terminal: CanonicalEvent | None = None

    try:
        if source.framing is Framing.SSE:
            async with aclosing(_normalize_sse(family, source.chunks, acc)) as items:
                async for item in items:
                    if isinstance(item, ErrorEvent):
                        terminal = item
                        break
                    yield item
        elif source.framing is Framing.JSON:
            terminal = await _normalize_json(family, source.chunks, acc)
            if terminal is None and not acc.empty:
                yield TextDelta(delta=acc.text, text=acc.text, reasoning=acc.reasoning or None)
        else:
            async for chunk in source.chunks:
                text = _chunk_text(chunk)
                if text is None:
                    log.warning("normalizer.unmatched_chunk", extra={"protocol": family.value, "sample": _sample(repr(chunk))})
                    continue
                delta = acc.add(ShapeMatch(shape="chunk", content=text))
                if delta is not None:
                    yield delta
    except GatewayError as e:
        terminal = ErrorEvent.from_error(e)

    if terminal is None:
        if acc.empty:
            log.warning("normalizer.empty_stream", extra={"protocol": family.value})
            terminal = ErrorEvent(kind=ErrorKind.EMPTY_STREAM, message="Upstream closed without any content")
        else:
            terminal = acc.done()
    yield terminal


class _SseFrames:
    """Per-line handling for `data:`-framed streams."""

    def __init__(self, family: ProtocolFamily, acc: _Accumulator):
        self.family = family
        self.acc = acc
        self.saw_data = False
        self.stray: list[str] = []

    def process(self, line: str) -> TextDelta | ErrorEvent | object | None:
        payload = data_payload(line)
        if payload is None:
            if not self.saw_data and len(self.stray) < STRAY_LINE_LIMIT:
                self.stray.append(line)
            return None
        self.saw_data = True
        if payload == DONE_SENTINEL:
            return _DONE
        return _handle_object(self.family, payload, self.acc)

    def finish(self) -> TextDelta | ErrorEvent | None:
        # No `data:` framing at all: the upstream may have answered with a bare JSON document.
        if self.saw_data or not self.stray:
            return None
        return _handle_object(self.family, "\n".join(self.stray), self.acc)


async def _sse_lines(chunks: AsyncIterator[bytes]) -> AsyncIterator[str]:
    decoder = SseLineDecoder()
    async for chunk in chunks:
        for line in decoder.feed(chunk):
            yield line
    for line in decoder.flush():
        yield line


async def _normalize_sse(
    family: ProtocolFamily, chunks: AsyncIterator[bytes], acc: _Accumulator
) -> AsyncIterator[TextDelta | ErrorEvent]:
    frames = _SseFrames(family, acc)
    async with aclosing(_sse_lines(chunks)) as lines:
        async for line in lines:
            item = frames.process(line)
            if item is None:
                continue
            if item is _DONE:
                return
            yield item
            if isinstance(item, ErrorEvent):
                return
    item = frames.finish()
    if item is not None:
        yield item


def _handle_object(family: ProtocolFamily, payload: str, acc: _Accumulator) -> TextDelta | ErrorEvent | None:
    try:
        obj = json.loads(payload)
    except json.JSONDecodeError:
        log.warning("normalizer.invalid_json_chunk", extra={"protocol": family.value, "sample": _sample(payload)})
        return None

    error = match_error(obj)
    if error is not None:
        log.warning("normalizer.in_band_error", extra={"protocol": family.value, "sample": _sample(error)})
        return ErrorEvent(kind=ErrorKind.UPSTREAM_HTTP_ERROR, message=_sample(error))

    match = match_shape(obj)
    if match is None:
        log.warning("normalizer.unmatched_chunk", extra={"protocol": family.value, "sample": _sample(payload)})
        return None
    return acc.add(match)


async def _normalize_json(
    family: ProtocolFamily, chunks: AsyncIterator[bytes], acc: _Accumulator
) -> ErrorEvent | None:
    body = b"".join([chunk async for chunk in chunks])
    try:
        obj = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        log.error("normalizer.malformed_body", extra={"protocol": family.value, "sample": _sample(body)})
        return ErrorEvent(kind=ErrorKind.MALFORMED_UPSTREAM_RESPONSE, message="Upstream response is not valid JSON")

    error = match_error(obj)
    if error is not None:
        return ErrorEvent(kind=ErrorKind.UPSTREAM_HTTP_ERROR, message=_sample(error))

    match = match_shape(obj)
    if match is None:
        log.error("normalizer.malformed_body", extra={"protocol": family.value, "sample": _sample(body)})
        return ErrorEvent(
            kind=ErrorKind.MALFORMED_UPSTREAM_RESPONSE,
            message="Upstream response did not match any known shape",
        )
    acc.add(match)
    return None
