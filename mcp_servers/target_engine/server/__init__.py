"""MCP server layer: tool contract, handlers and dispatch."""

from .registry import ToolRegistry, create_default_registry
from .types import ToolContent, ToolResult

__all__ = ["ToolContent", "ToolRegistry", "ToolResult", "create_default_registry"]
