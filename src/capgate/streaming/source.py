from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Framing(str, Enum):
    SSE = "sse"  # `data: {json}` lines, `data: [DONE]` sentinel
    JSON = "json"  # one JSON document
    CHUNKS = "chunks"  # SDK objects, each yielding a text fragment


async def _noop() -> None:
    return None


@dataclass
class RawSource:
    """An open upstream response: raw chunks plus the hook that releases the connection."""

    framing: Framing
    chunks: AsyncIterator[Any]
    close: Callable[[], Awaitable[None]] = _noop

    async def aclose(self) -> None:
        try:
            close_chunks = getattr(self.chunks, "aclose", None)
            if close_chunks is not None:
                await close_chunks()
        finally:
            await self.close()
