"""
Tool registry with dispatch table for the MCP server.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .handlers import HANDLERS, Handler
from .types import ToolResult

if TYPE_CHECKING:
    from ..context import EngineContext


class ToolRegistry:
    """Registry for tool handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, name: str, handler: Handler) -> None:
        self._handlers[name] = handler

    def register_many(self, handlers: dict[str, Handler]) -> None:
        self._handlers.update(handlers)

    def get(self, name: str) -> Handler | None:
        return self._handlers.get(name)

    def has(self, name: str) -> bool:
        return name in self._handlers

    def dispatch(self, name: str, ctx: EngineContext, arguments: dict[str, Any]) -> ToolResult:
        """
        Dispatch a tool call to its handler.

        Raises:
            KeyError: If tool not found
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise KeyError(f"Unknown tool: {name}")
        return handler(ctx, arguments)

    def tool_names(self) -> list[str]:
        return list(self._handlers.keys())

    def __len__(self) -> int:
        return len(self._handlers)


def create_default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_many(HANDLERS)
    return registry
