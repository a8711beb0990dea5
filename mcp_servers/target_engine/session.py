"""
CDP session.

- CdpConnection: raw DevTools websocket (commands + buffered events)
- BrowserSession: tab-level helpers used by the CDP backend and keyboard watcher
- connect(): pick a page target from `/json/list` and open a session on it
"""

from __future__ import annotations

import json
import logging
import socket
import threading
import time
from contextlib import suppress
from typing import Any

import websocket

from .config import EngineConfig
from .http_client import HttpClientError, http_get_json

logger = logging.getLogger("mcp.target_engine.session")


class CdpConnection:
    """Low-level CDP WebSocket connection."""

    def __init__(self, ws_url: str, timeout: float = 5.0):
        self.ws = websocket.create_connection(ws_url, timeout=timeout)
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1
        # Events received while waiting for a command response are kept for later waits.
        self._event_queue: list[dict[str, Any]] = []
        self._max_event_queue = 2000
        # One request/response exchange at a time; the stop notifier calls in from the keyboard thread.
        self._lock = threading.RLock()

    def _push_event(self, event: dict[str, Any]) -> None:
        self._event_queue.append(event)
        if len(self._event_queue) > self._max_event_queue:
            del self._event_queue[: len(self._event_queue) - self._max_event_queue]

    def pop_event(self, event_name: str) -> dict[str, Any] | None:
        """Pop the oldest queued event params for the given event name."""
        for i, ev in enumerate(self._event_queue):
            if ev.get("method") == event_name:
                self._event_queue.pop(i)
                params = ev.get("params")
                return params if isinstance(params, dict) else {}
        return None

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send CDP command and wait for response."""
        with self._lock:
            msg_id = self._next_id
            self._next_id += 1

            msg: dict[str, Any] = {"id": msg_id, "method": method}
            if params:
                msg["params"] = params
            try:
                self.ws.settimeout(min(2.0, max(0.5, float(self.timeout))))
                self.ws.send(json.dumps(msg))
            except Exception as exc:  # noqa: BLE001
                raise HttpClientError(str(exc)) from exc
            return self._recv_until(msg_id)

    def send_many(self, commands: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [self.send(cmd["method"], cmd.get("params")) for cmd in commands]

    def _recv(self, remaining: float) -> dict[str, Any] | None:
        """One bounded receive. None on timeout or an unparsable frame."""
        try:
            self.ws.settimeout(min(0.5, remaining))
            raw = self.ws.recv()
        except Exception as exc:  # noqa: BLE001
            msg = str(exc).lower()
            if isinstance(exc, TimeoutError) or "timed out" in msg:
                return None
            raise HttpClientError(str(exc)) from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _is_event(data: dict[str, Any]) -> bool:
        return isinstance(data.get("method"), str) and "id" not in data

    def _recv_until(self, expected_id: int) -> dict[str, Any]:
        deadline = time.time() + self.timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                raise HttpClientError("CDP response timed out")
            data = self._recv(remaining)
            if data is None:
                continue
            if self._is_event(data):
                self._push_event(data)
                continue
            if data.get("id") == expected_id:
                if "error" in data:
                    raise HttpClientError(str(data["error"]))
                return data.get("result", {})

    def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict[str, Any] | None:
        """Wait for a CDP event; queued events are consumed first."""
        with self._lock:
            return self._wait_for_event(event_name, timeout)

    def _wait_for_event(self, event_name: str, timeout: float) -> dict[str, Any] | None:
        queued = self.pop_event(event_name)
        if queued is not None:
            return queued
        deadline = time.time() + timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                return None
            data = self._recv(remaining)
            if data is None or not self._is_event(data):
                continue
            if data.get("method") == event_name:
                params = data.get("params")
                return params if isinstance(params, dict) else {}
            self._push_event(data)

    def close(self) -> None:
        # Raw socket shutdown; websocket-client close() can block on a wedged page.
        sock = getattr(self.ws, "sock", None)
        if sock is not None:
            with suppress(OSError):
                sock.shutdown(socket.SHUT_RDWR)
            with suppress(OSError):
                sock.close()


class BrowserSession:
    """
    Browser session for one tab.

    Use as context manager for automatic cleanup.
    """

    def __init__(self, connection: CdpConnection, tab_id: str, tab_url: str = ""):
        self.conn = connection
        self.tab_id = tab_id
        self.tab_url = tab_url
        self._runtime_enabled = False

    def __enter__(self) -> BrowserSession:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        self.conn.close()

    def enable_runtime(self) -> None:
        if not self._runtime_enabled:
            self.conn.send("Runtime.enable", {})
            self._runtime_enabled = True

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.conn.send(method, params)

    def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict[str, Any] | None:
        return self.conn.wait_for_event(event_name, timeout=timeout)

    def eval_js(self, expression: str) -> Any:
        """Evaluate JavaScript and return the result by value."""
        result = self.conn.send(
            "Runtime.evaluate",
            {
                "expression": expression,
                "returnByValue": True,
                "awaitPromise": True,
            },
        )
        details = result.get("exceptionDetails")
        if isinstance(details, dict):
            exc = details.get("exception") if isinstance(details.get("exception"), dict) else {}
            message = exc.get("description") or details.get("text") or "JavaScript exception"
            raise HttpClientError(str(message))
        if "result" not in result:
            return None
        value = result["result"]
        # CDP reports undefined/null without a "value" field.
        if isinstance(value, dict) and value.get("type") == "undefined":
            return None
        if isinstance(value, dict) and value.get("type") == "object" and value.get("subtype") == "null":
            return None
        return value.get("value", value)

    def click(self, x: float, y: float, button: str = "left", click_count: int = 1) -> None:
        """Click at viewport coordinates."""
        self.conn.send_many(
            [
                {
                    "method": "Input.dispatchMouseEvent",
                    "params": {"type": kind, "x": x, "y": y, "button": button, "clickCount": click_count},
                }
                for kind in ("mouseMoved", "mousePressed", "mouseReleased")
            ]
        )

    def add_binding(self, name: str) -> None:
        """Expose `window[name](payload)` to page scripts; calls arrive as Runtime.bindingCalled."""
        self.enable_runtime()
        self.conn.send("Runtime.addBinding", {"name": name})

    def add_script_on_load(self, source: str) -> None:
        self.conn.send("Page.enable", {})
        self.conn.send("Page.addScriptToEvaluateOnNewDocument", {"source": source})


def _get_targets(config: EngineConfig) -> list[dict[str, Any]]:
    targets = http_get_json(f"http://127.0.0.1:{config.cdp_port}/json/list", timeout=config.cdp_timeout)
    return [t for t in targets or [] if isinstance(t, dict)]


def connect(config: EngineConfig, *, tab_id: str | None = None, url_contains: str | None = None) -> BrowserSession:
    """Open a session on a page target (by id, by URL fragment, or the first page)."""
    pages = [t for t in _get_targets(config) if t.get("type") == "page" and t.get("webSocketDebuggerUrl")]
    if tab_id:
        pages = [t for t in pages if t.get("id") == tab_id]
    if url_contains:
        pages = [t for t in pages if url_contains in str(t.get("url") or "")]
    if not pages:
        raise HttpClientError(f"No matching page target on CDP port {config.cdp_port}")
    target = pages[0]
    logger.info("cdp_connect tab=%s url=%s", target.get("id"), target.get("url"))
    conn = CdpConnection(str(target["webSocketDebuggerUrl"]), timeout=config.cdp_timeout)
    return BrowserSession(conn, tab_id=str(target.get("id") or ""), tab_url=str(target.get("url") or ""))
