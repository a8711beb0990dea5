"""
MCP server for resilient element targeting via Chrome DevTools Protocol.

This module provides the main entry point and protocol handling.
Tool dispatch is handled via the registry in server/registry.py.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any

from .base import EngineError
from .context import EngineContext
from .http_client import HttpClientError
from .server.contract import (
    DEFAULT_PROTOCOL_VERSION,
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    initialize_result,
    select_protocol,
    tools_list,
)
from .server.registry import create_default_registry
from .server.types import ToolResult

logger = logging.getLogger("mcp.target_engine")

__all__ = [
    "SUPPORTED_PROTOCOL_VERSIONS",
    "LATEST_PROTOCOL_VERSION",
    "DEFAULT_PROTOCOL_VERSION",
    "McpServer",
    "main",
]

_REDACTED_ARGS = frozenset({"value"})


def _write_message(payload: dict[str, Any]) -> None:
    """Write JSON-RPC message to stdout."""
    data = json.dumps(payload, ensure_ascii=False)
    sys.stdout.buffer.write((data + "\n").encode())
    sys.stdout.buffer.flush()


def _read_message() -> dict[str, Any] | None:
    """Read JSON-RPC message from stdin. Returns None at EOF; blank lines yield an empty dict."""
    line = sys.stdin.buffer.readline()
    if not line:
        return None
    line = line.strip()
    if not line:
        return {}
    msg = json.loads(line.decode())
    if os.environ.get("MCP_TRACE"):
        logger.info("recv %s", msg.get("method"))
    return msg


class McpServer:
    """MCP server with registry-based tool dispatch."""

    def __init__(self, ctx: EngineContext | None = None, write: Any = None) -> None:
        self.ctx = ctx or EngineContext()
        self.registry = create_default_registry()
        self._write = write or _write_message

    def handle_initialize(self, request_id: Any, params: dict[str, Any] | None = None) -> None:
        requested = (params or {}).get("protocolVersion") if isinstance(params, dict) else None
        protocol = select_protocol(requested)
        self._write({"jsonrpc": "2.0", "id": request_id, "result": initialize_result(protocol)})

    def handle_list_tools(self, request_id: Any) -> None:
        self._write({"jsonrpc": "2.0", "id": request_id, "result": {"tools": tools_list()}})

    def _log_call(self, name: str, arguments: dict[str, Any]) -> None:
        safe_args = {k: ("<redacted>" if k in _REDACTED_ARGS else v) for k, v in arguments.items()}
        logger.info("tool=%s args=%s", name, safe_args)

    def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        self._log_call(name, arguments)
        try:
            if not name:
                return ToolResult.error("Missing tool name")
            if not self.registry.has(name):
                return ToolResult.error(f"Unknown tool: {name}", tool=name)
            return self.registry.dispatch(name, self.ctx, arguments)
        except EngineError as e:
            logger.info("tool_error tool=%s action=%s reason=%s", e.tool, e.action, e.reason)
            return ToolResult.error(e.reason, tool=e.tool, suggestion=e.suggestion, details=e.details)
        except HttpClientError as e:
            logger.info("http_error %s", str(e))
            return ToolResult.error(str(e), tool=name, suggestion="Start Chrome with --remote-debugging-port")
        except Exception as exc:
            logger.exception("tool_call_failed")
            return ToolResult.error(str(exc), tool=name)

    def handle_call_tool(self, request_id: Any, name: str, arguments: dict[str, Any]) -> None:
        result = self.call_tool(name, arguments)
        self._write(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {"content": result.to_content_list(), "isError": result.is_error},
            }
        )

    def dispatch(self, message: dict[str, Any]) -> None:
        """Dispatch incoming JSON-RPC message to appropriate handler."""
        if not message:
            return

        method = message.get("method")
        request_id = message.get("id")
        params = message.get("params") or {}

        if method == "initialize":
            self.handle_initialize(request_id, params)
        elif method == "notifications/initialized":
            return
        elif method in ("tools/list", "list_tools"):
            self.handle_list_tools(request_id)
        elif method in ("tools/call", "call_tool"):
            name = params.get("name")
            arguments = params.get("arguments") or params.get("args") or {}
            self.handle_call_tool(request_id, name or "", arguments)
        elif method == "ping":
            self._write({"jsonrpc": "2.0", "id": request_id, "result": {"pong": True}})
        else:
            self._write(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "error": {"code": -32601, "message": f"Method {method} not found"},
                }
            )

    def close(self) -> None:
        self.ctx.close()


def main() -> None:
    """Main entry point for MCP server."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    server = McpServer()
    try:
        while True:
            message = _read_message()
            if message is None:
                break
            server.dispatch(message)
    finally:
        server.close()


if __name__ == "__main__":
    main()
