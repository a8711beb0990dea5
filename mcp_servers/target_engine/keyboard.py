"""
Keyboard trigger for the emergency stop.

A document-level keydown hook forwards presses of the shortcut key to a CDP
binding. A background thread waits for `Runtime.bindingCalled` on its own
connection and hands matching combinations to the safety registry.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING, Any

from .http_client import HttpClientError
from .safety import KeyboardShortcut

if TYPE_CHECKING:
    from .safety import SafetyRegistry
    from .session import BrowserSession

logger = logging.getLogger("mcp.target_engine.keyboard")

BINDING_NAME = "__mcpEmergencyStop"

_HOOK_TEMPLATE = """
(() => {
  const spec = %(spec)s;
  if (window.__mcpStopHook) { window.__mcpStopHook.spec = spec; return true; }
  const aliases = {esc: 'escape', del: 'delete', space: ' ', spacebar: ' '};
  const norm = (k) => { k = String(k || '').toLowerCase(); return aliases[k] || k; };
  const hook = {spec};
  window.__mcpStopHook = hook;
  document.addEventListener('keydown', (e) => {
    const s = hook.spec;
    if (norm(e.key) !== s.key) return;
    if (e.ctrlKey === s.ctrl && e.shiftKey === s.shift && e.altKey === s.alt) e.preventDefault();
    const send = window[%(binding)s];
    if (typeof send !== 'function') return;
    send(JSON.stringify({key: e.key, ctrl: e.ctrlKey, shift: e.shiftKey, alt: e.altKey}));
  }, true);
  return true;
})()
"""


def hook_script(shortcut: KeyboardShortcut) -> str:
    spec = {"key": shortcut.key, "ctrl": shortcut.ctrl, "shift": shortcut.shift, "alt": shortcut.alt}
    return _HOOK_TEMPLATE % {"spec": json.dumps(spec), "binding": json.dumps(BINDING_NAME)}


class KeyboardWatcher:
    """Owns one dedicated session; call `stop()` to join the thread and close it."""

    def __init__(self, session: BrowserSession, registry: SafetyRegistry, *, wait_timeout: float = 0.5) -> None:
        self.session = session
        self.registry = registry
        self.wait_timeout = wait_timeout
        self._halt = threading.Event()
        self._thread: threading.Thread | None = None

    def install(self) -> None:
        script = hook_script(KeyboardShortcut.parse(self.registry.shortcut))
        self.session.add_binding(BINDING_NAME)
        self.session.add_script_on_load(script)
        self.session.eval_js(script)
        logger.info("stop_shortcut_installed shortcut=%s tab=%s", self.registry.shortcut, self.session.tab_id)

    def start(self) -> None:
        self.install()
        self._thread = threading.Thread(target=self._run, name="emergency-stop-keys", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._halt.set()
        if self._thread is not None:
            self._thread.join(timeout=self.wait_timeout * 4)
            self._thread = None
        self.session.close()

    def _run(self) -> None:
        while not self._halt.is_set():
            try:
                params = self.session.wait_for_event("Runtime.bindingCalled", timeout=self.wait_timeout)
            except HttpClientError as exc:
                if not self._halt.is_set():
                    logger.warning("keyboard_watcher_disconnected error=%s", exc)
                return
            if params is not None:
                self.handle_binding(params)

    def handle_binding(self, params: dict[str, Any]) -> bool:
        """Process one binding call. Returns True when it activated the stop."""
        if params.get("name") != BINDING_NAME:
            return False
        try:
            payload = json.loads(params.get("payload") or "{}")
        except json.JSONDecodeError:
            logger.warning("keyboard_payload_invalid payload=%r", params.get("payload"))
            return False
        if not isinstance(payload, dict):
            return False
        return self.registry.handle_key(
            str(payload.get("key") or ""),
            ctrl=bool(payload.get("ctrl")),
            shift=bool(payload.get("shift")),
            alt=bool(payload.get("alt")),
        )
