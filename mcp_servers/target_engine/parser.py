"""
Action parsing.

Two input shapes become `TargetDescriptor`s:
- the line-based block produced by a language model::

      ACTION: TYPE
      TARGET: Search
      VALUE: hello world

- JSON-like message dicts (tool arguments, sequence steps).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .base import DescriptorError
from .types import ActionKind, Direction, TargetDescriptor

logger = logging.getLogger("mcp.target_engine.parser")

PARSER_ERROR = "PARSER_ERROR"

_BLOCK_KEYS = frozenset({"ACTION", "TEXT", "VALUE", "TARGET", "DIRECTION", "SELECTOR", "DURATION"})


@dataclass(frozen=True, slots=True)
class ParseResult:
    ok: bool
    descriptor: TargetDescriptor | None = None
    error: str | None = None


def _fail(reason: str, response: str) -> ParseResult:
    logger.warning("parse_failed reason=%s response=%r", reason, response[:200])
    return ParseResult(ok=False, error=PARSER_ERROR)


def _duration(raw: Any) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return max(0, int(float(raw)))
    except (TypeError, ValueError):
        raise DescriptorError(
            tool="descriptor",
            action="validate",
            reason=f"Invalid duration: {raw!r}",
            suggestion="Pass durationMs as a whole number of milliseconds",
        ) from None


def parse_action_response(response: str) -> ParseResult:
    """Parse an `ACTION:`/`TEXT:`/`VALUE:`/`TARGET:`/`DIRECTION:` block."""
    fields: dict[str, str] = {}
    for line in (response or "").strip().splitlines():
        key, sep, value = line.strip().partition(":")
        if not sep:
            continue
        key = key.strip().upper()
        if key in _BLOCK_KEYS:
            fields[key] = value.strip()

    if not fields.get("ACTION"):
        return _fail("missing ACTION", response or "")

    try:
        kind = ActionKind.parse(fields["ACTION"])
        direction = Direction.parse(fields.get("DIRECTION"))
        duration_ms = _duration(fields.get("DURATION"))
    except DescriptorError as exc:
        return _fail(exc.reason, response)

    text = fields.get("TEXT") or None
    target = fields.get("TARGET") or None
    value = fields.get("VALUE") or None
    if kind is ActionKind.TYPE:
        # TARGET names the field; VALUE is the payload.
        field_text = target or text
        value = value or text
        text = field_text
    else:
        text = text or target

    descriptor = TargetDescriptor(
        action_kind=kind,
        selector=fields.get("SELECTOR") or None,
        text=text,
        value=value,
        direction=direction,
        duration_ms=duration_ms,
    )
    return ParseResult(ok=True, descriptor=descriptor)


def descriptor_from_message(message: Mapping[str, Any]) -> TargetDescriptor:
    """Build a descriptor from a message dict. Raises `DescriptorError` when malformed."""
    if not isinstance(message, Mapping):
        raise DescriptorError(
            tool="descriptor",
            action="parse",
            reason=f"Expected an object, got {type(message).__name__}",
            suggestion='Pass {"actionKind": "CLICK", "text": "..."}',
        )
    raw_kind = message.get("actionKind") or message.get("action_kind") or message.get("type")
    if not raw_kind:
        raise DescriptorError(
            tool="descriptor",
            action="parse",
            reason="Missing actionKind",
            suggestion="Use one of: " + ", ".join(k.value for k in ActionKind),
        )

    def _str(key: str, *aliases: str) -> str | None:
        for name in (key, *aliases):
            value = message.get(name)
            if value is not None and str(value) != "":
                return str(value)
        return None

    descriptor = TargetDescriptor(
        action_kind=ActionKind.parse(raw_kind),
        selector=_str("selector"),
        text=_str("text", "target"),
        value=_str("value"),
        direction=Direction.parse(message.get("direction")),
        duration_ms=_duration(message.get("durationMs", message.get("duration_ms"))),
    )
    descriptor.validate()
    return descriptor


def actions_equal(a: TargetDescriptor, b: TargetDescriptor) -> bool:
    return a.action_kind is b.action_kind and a.text == b.text and a.value == b.value
