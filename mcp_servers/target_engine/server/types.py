"""
Type definitions for MCP server responses.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class ToolContent:
    """Single content item in tool response."""

    type: str
    text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True)
class ToolResult:
    """Result of a tool execution."""

    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False
    # Raw payload for in-process callers and tests; not part of the wire format.
    data: Any | None = None

    @classmethod
    def text(cls, text: str, data: Any | None = None) -> ToolResult:
        return cls(content=[ToolContent(type="text", text=text or "")], data=data)

    @classmethod
    def json(cls, data: Any, *, is_error: bool = False) -> ToolResult:
        text = json.dumps(data, ensure_ascii=False, indent=2)
        return cls(content=[ToolContent(type="text", text=text)], is_error=is_error, data=data)

    @classmethod
    def error(
        cls,
        message: str,
        *,
        tool: str | None = None,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ToolResult:
        payload: dict[str, Any] = {"ok": False, "error": message}
        if tool:
            payload["tool"] = tool
        if suggestion:
            payload["suggestion"] = suggestion
        if details:
            payload["details"] = details
        return cls.json(payload, is_error=True)

    def to_content_list(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self.content]
