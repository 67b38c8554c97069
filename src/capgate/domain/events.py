"""Canonical stream events: zero or more TextDelta, then exactly one Done or ErrorEvent."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from capgate.core.errors import ErrorKind, GatewayError


class TextDelta(BaseModel):
    type: Literal["delta"] = "delta"
    delta: str = ""
    text: str = Field(..., description="Accumulated text so far, including this delta")
    reasoning: str | None = None


class Done(BaseModel):
    type: Literal["done"] = "done"
    final_text: str
    reasoning: str | None = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    kind: ErrorKind
    message: str

    @classmethod
    def from_error(cls, err: GatewayError) -> ErrorEvent:
        return cls(kind=err.kind, message=err.message)

    def to_exception(self) -> GatewayError:
        return GatewayError(self.message, kind=self.kind)


CanonicalEvent = Annotated[Union[TextDelta, Done, ErrorEvent], Field(discriminator="type")]


def is_terminal(event: CanonicalEvent) -> bool:
    return not isinstance(event, TextDelta)


def to_sse(event: CanonicalEvent) -> bytes:
    """Encode one event as a server-sent event frame (`event: <type>` + one JSON data line)."""
    data = event.model_dump_json(exclude={"type"}, exclude_none=True)
    return f"event: {event.type}\ndata: {data}\n\n".encode("utf-8")
