"""Ordered response-shape matchers.

Each matcher takes one decoded JSON value and returns a ShapeMatch or None. Matchers are
total: they never raise and never half-consume input, so they can be tried in order.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ShapeMatch:
    shape: str
    content: str = ""
    reasoning: str = ""


ShapeMatcher = Callable[[Any], "ShapeMatch | None"]


def _text(value: Any) -> str | None:
    """Text of a content field: a string, null, or a list of `{"text": ...}` parts."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts = [p["text"] for p in value if isinstance(p, dict) and isinstance(p.get("text"), str)]
        return "".join(parts)
    return None


def _first_choice(container: Any) -> dict[str, Any] | None:
    if not isinstance(container, dict):
        return None
    choices = container.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    return choices[0]


def _from_fields(shape: str, fields: Any) -> ShapeMatch | None:
    if not isinstance(fields, dict):
        return None
    if "content" not in fields and "reasoning_content" not in fields and shape != "delta":
        return None
    content = _text(fields.get("content"))
    reasoning = _text(fields.get("reasoning_content"))
    if content is None or reasoning is None:
        return None
    return ShapeMatch(shape=shape, content=content, reasoning=reasoning)


def match_delta_content(obj: Any) -> ShapeMatch | None:
    """`{"choices": [{"delta": {"content": "..", "reasoning_content": ".."}}]}`"""
    choice = _first_choice(obj)
    if choice is None:
        return None
    return _from_fields("delta", choice.get("delta"))


def match_choice_message(obj: Any) -> ShapeMatch | None:
    """`{"choices": [{"message": {"content": ".."}}]}`"""
    choice = _first_choice(obj)
    if choice is None:
        return None
    return _from_fields("message", choice.get("message"))


def match_output_message(obj: Any) -> ShapeMatch | None:
    """`{"output": {"choices": [{"message": {"content": ..}}]}}` or `{"output": {"text": ".."}}`"""
    if not isinstance(obj, dict):
        return None
    output = obj.get("output")
    if not isinstance(output, dict):
        return None
    choice = _first_choice(output)
    if choice is not None:
        return _from_fields("output", choice.get("message"))
    if isinstance(output.get("text"), str):
        return ShapeMatch(shape="output", content=output["text"])
    return None


def match_flat_content(obj: Any) -> ShapeMatch | None:
    """`{"content": "..", "reasoning_content": ".."}`"""
    return _from_fields("flat", obj)


SHAPE_MATCHERS: tuple[ShapeMatcher, ...] = (
    match_delta_content,
    match_choice_message,
    match_output_message,
    match_flat_content,
)


def match_shape(obj: Any, matchers: tuple[ShapeMatcher, ...] = SHAPE_MATCHERS) -> ShapeMatch | None:
    for matcher in matchers:
        match = matcher(obj)
        if match is not None:
            return match
    return None


def match_error(obj: Any) -> str | None:
    """Message of an in-band error object (`{"error": ..}`), if the value is one."""
    if not isinstance(obj, dict):
        return None
    error = obj.get("error")
    if not error:
        return None
    if isinstance(error, dict):
        message = error.get("message") or error.get("code")
        return str(message) if message else str(error)
    return str(error)
