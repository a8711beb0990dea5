from __future__ import annotations

import json
import threading
from typing import Any

import pytest

from mcp_servers.target_engine import session as session_mod
from mcp_servers.target_engine.config import EngineConfig
from mcp_servers.target_engine.http_client import HttpClientError
from mcp_servers.target_engine.session import BrowserSession, CdpConnection


def test_eval_js_returns_value_by_value() -> None:
    calls: list[tuple[str, dict[str, Any] | None]] = []

    class DummyConn:
        def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
            calls.append((method, params))
            return {"result": {"type": "number", "value": 123}}

    session = BrowserSession(DummyConn(), tab_id="t1")
    assert session.eval_js("1 + 2") == 123
    params = calls[0][1] or {}
    assert calls[0][0] == "Runtime.evaluate"
    assert params.get("returnByValue") is True
    assert params.get("awaitPromise") is True


@pytest.mark.parametrize(
    "remote",
    [{"type": "undefined"}, {"type": "object", "subtype": "null"}],
)
def test_eval_js_maps_undefined_and_null_to_none(remote: dict[str, Any]) -> None:
    class DummyConn:
        def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:  # noqa: ARG002
            return {"result": remote}

    assert BrowserSession(DummyConn(), tab_id="t1").eval_js("x") is None


def test_eval_js_raises_on_page_exception() -> None:
    class DummyConn:
        def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:  # noqa: ARG002
            return {
                "result": {"type": "object"},
                "exceptionDetails": {"text": "Uncaught", "exception": {"description": "ReferenceError: nope"}},
            }

    with pytest.raises(HttpClientError, match="ReferenceError"):
        BrowserSession(DummyConn(), tab_id="t1").eval_js("nope")


def test_click_dispatches_move_press_release() -> None:
    sent: list[list[dict[str, Any]]] = []

    class DummyConn:
        def send_many(self, commands: list[dict[str, Any]]) -> list[dict[str, Any]]:
            sent.append(commands)
            return [{} for _ in commands]

    BrowserSession(DummyConn(), tab_id="t1").click(10, 20)
    kinds = [c["params"]["type"] for c in sent[0]]
    assert kinds == ["mouseMoved", "mousePressed", "mouseReleased"]
    assert all(c["params"]["x"] == 10 and c["params"]["y"] == 20 for c in sent[0])


def test_add_binding_enables_runtime_once() -> None:
    methods: list[str] = []

    class DummyConn:
        def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:  # noqa: ARG002
            methods.append(method)
            return {}

    session = BrowserSession(DummyConn(), tab_id="t1")
    session.add_binding("a")
    session.add_binding("b")
    assert methods == ["Runtime.enable", "Runtime.addBinding", "Runtime.addBinding"]


class FakeWs:
    def __init__(self, frames: list[Any]) -> None:
        self.frames = list(frames)
        self.sent: list[dict[str, Any]] = []

    def settimeout(self, _timeout: float) -> None:
        return None

    def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def recv(self) -> str:
        if not self.frames:
            raise TimeoutError("timed out")
        frame = self.frames.pop(0)
        return frame if isinstance(frame, str) else json.dumps(frame)


def _connection(monkeypatch: pytest.MonkeyPatch, frames: list[Any]) -> tuple[CdpConnection, FakeWs]:
    ws = FakeWs(frames)
    monkeypatch.setattr(session_mod.websocket, "create_connection", lambda url, timeout: ws)
    return CdpConnection("ws://127.0.0.1:9222/devtools/page/t1", timeout=1.0), ws


def test_connection_buffers_events_seen_while_waiting_for_response(monkeypatch: pytest.MonkeyPatch) -> None:
    conn, ws = _connection(
        monkeypatch,
        [
            {"method": "Runtime.bindingCalled", "params": {"name": "x", "payload": "{}"}},
            "not json",
            {"id": 1, "result": {"ok": True}},
        ],
    )
    assert conn.send("Runtime.enable") == {"ok": True}
    assert ws.sent == [{"id": 1, "method": "Runtime.enable"}]
    assert conn.wait_for_event("Runtime.bindingCalled", timeout=0.1) == {"name": "x", "payload": "{}"}


def test_connection_raises_on_protocol_error(monkeypatch: pytest.MonkeyPatch) -> None:
    conn, _ = _connection(monkeypatch, [{"id": 1, "error": {"message": "No such method"}}])
    with pytest.raises(HttpClientError, match="No such method"):
        conn.send("Bogus.method")


def test_wait_for_event_times_out_with_none(monkeypatch: pytest.MonkeyPatch) -> None:
    conn, _ = _connection(monkeypatch, [{"method": "Page.loadEventFired", "params": {}}])
    assert conn.wait_for_event("Runtime.bindingCalled", timeout=0.05) is None
    assert conn.pop_event("Page.loadEventFired") == {}


def test_connect_picks_matching_page_target(monkeypatch: pytest.MonkeyPatch) -> None:
    targets = [
        {"id": "sw", "type": "service_worker", "webSocketDebuggerUrl": "ws://x/sw"},
        {"id": "a", "type": "page", "url": "https://a.example", "webSocketDebuggerUrl": "ws://x/a"},
        {"id": "b", "type": "page", "url": "https://b.example/cart", "webSocketDebuggerUrl": "ws://x/b"},
    ]
    opened: list[str] = []
    monkeypatch.setattr(session_mod, "http_get_json", lambda url, timeout: targets)
    monkeypatch.setattr(session_mod.websocket, "create_connection", lambda url, timeout: opened.append(url) or FakeWs([]))

    config = EngineConfig()
    assert session_mod.connect(config).tab_id == "a"
    assert session_mod.connect(config, url_contains="/cart").tab_id == "b"
    assert session_mod.connect(config, tab_id="b").tab_url == "https://b.example/cart"
    assert opened == ["ws://x/a", "ws://x/b", "ws://x/b"]

    with pytest.raises(HttpClientError):
        session_mod.connect(config, tab_id="missing")


class EchoWs(FakeWs):
    """Answers each sent command in order (`frames` holds answered ids); the first answer waits for `release`."""

    def __init__(self) -> None:
        super().__init__([])
        self.entered = threading.Event()
        self.release = threading.Event()

    def recv(self) -> str:
        answered = len(self.frames)
        if not self.entered.is_set():
            self.entered.set()
            self.release.wait(2.0)
        if answered >= len(self.sent):
            raise TimeoutError("timed out")
        msg_id = self.sent[answered]["id"]
        self.frames.append(msg_id)
        return json.dumps({"id": msg_id, "result": {"id": msg_id}})


def test_concurrent_sends_do_not_steal_each_others_replies(monkeypatch: pytest.MonkeyPatch) -> None:
    ws = EchoWs()
    monkeypatch.setattr(session_mod.websocket, "create_connection", lambda url, timeout: ws)
    conn = CdpConnection("ws://127.0.0.1:9222/devtools/page/t1", timeout=2.0)
    results: dict[str, dict[str, Any]] = {}

    first = threading.Thread(target=lambda: results.__setitem__("first", conn.send("Runtime.evaluate")))
    second = threading.Thread(target=lambda: results.__setitem__("second", conn.send("Runtime.evaluate")))
    first.start()
    assert ws.entered.wait(2.0)
    second.start()
    second.join(0.1)
    # The second command waits until the first exchange completes.
    assert len(ws.sent) == 1
    ws.release.set()
    first.join(2.0)
    second.join(2.0)

    assert results == {"first": {"id": 1}, "second": {"id": 2}}
