from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from capgate.core.deps import get_gateway
from capgate.domain.chat import CanonicalRequest, InvokeResult
from capgate.domain.events import CanonicalEvent, to_sse
from capgate.gateway.facade import Gateway

router = APIRouter()
log = logging.getLogger(__name__)


async def _sse_body(events: AsyncIterator[CanonicalEvent]) -> AsyncIterator[bytes]:
    # Closing this generator (client went away) closes the upstream connection too.
    async with aclosing(events):
        async for event in events:
            yield to_sse(event)


@router.post("/invoke", response_model=None)
async def invoke(
    request: Request,
    body: CanonicalRequest,
    timeout_seconds: float | None = Query(default=None, gt=0),
    gateway: Gateway = Depends(get_gateway),
) -> InvokeResult | StreamingResponse:
    """One-shot JSON result, or `text/event-stream` of canonical events when `stream` is set.

    Resolution and decryption errors are returned as JSON errors before any stream starts.
    """
    request_id = getattr(request.state, "request_id", None)
    if not body.stream:
        return await gateway.complete(body, timeout_seconds=timeout_seconds, request_id=request_id)

    events = await gateway.stream(body, timeout_seconds=timeout_seconds, request_id=request_id)
    return StreamingResponse(
        _sse_body(events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
