"""
Safety registry (emergency stop).

A halt switch shared by everything that drives the page. Long-running work
registers a `StoppableProcess`; activating the registry flips the stop flag,
signals every registered process and waits for their completions. Every action
checks `is_stopped` before doing anything.

The registry is constructed once per hosting context and injected; the keyboard
watcher thread and the request loop both call into it, so state is guarded by a
re-entrant lock.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable, Iterator
from concurrent.futures import Future
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import DEFAULT_STOP_SHORTCUT

logger = logging.getLogger("mcp.target_engine.safety")

StopCallback = Callable[[], "Future[Any] | None"]
Listener = Callable[[bool], None]
Notifier = Callable[[str, str], None]

_MODIFIERS = frozenset({"ctrl", "shift", "alt"})
_KEY_ALIASES = {"esc": "escape", "del": "delete", "space": " ", "spacebar": " "}


class StopTrigger(str, Enum):
    KEYBOARD = "keyboard"
    PROGRAMMATIC = "programmatic"
    TIMEOUT = "timeout"


@dataclass(frozen=True, slots=True)
class EmergencyStopEvent:
    timestamp: float
    trigger: StopTrigger
    processes_stopped_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": int(self.timestamp * 1000),
            "trigger": self.trigger.value,
            "processesStoppedCount": self.processes_stopped_count,
        }


@dataclass(eq=False)
class StoppableProcess:
    id: str
    name: str
    stop: StopCallback


# ─────────────────────────────────────────────────────────────────────────────
# Keyboard shortcut
# ─────────────────────────────────────────────────────────────────────────────


def _normalize_key(key: str) -> str:
    key = key.lower()
    return _KEY_ALIASES.get(key, key)


@dataclass(frozen=True, slots=True)
class KeyboardShortcut:
    key: str
    ctrl: bool = False
    shift: bool = False
    alt: bool = False

    @classmethod
    def parse(cls, text: str) -> KeyboardShortcut:
        parts = [p.strip().lower() for p in (text or "").split("+")]
        key = parts.pop() if parts else ""
        if not key:
            raise ValueError(f"Invalid keyboard shortcut: {text!r}")
        unknown = [p for p in parts if p not in _MODIFIERS]
        if unknown:
            raise ValueError(f"Unknown modifier(s) in shortcut {text!r}: {', '.join(unknown)}")
        return cls(key=_normalize_key(key), ctrl="ctrl" in parts, shift="shift" in parts, alt="alt" in parts)

    def matches(self, key: str, *, ctrl: bool = False, shift: bool = False, alt: bool = False) -> bool:
        """Modifiers must match exactly: a modifier not named in the shortcut must not be held."""
        return (
            ctrl == self.ctrl and shift == self.shift and alt == self.alt and _normalize_key(key or "") == self.key
        )


def matches_shortcut(shortcut: str, key: str, *, ctrl: bool = False, shift: bool = False, alt: bool = False) -> bool:
    return KeyboardShortcut.parse(shortcut).matches(key, ctrl=ctrl, shift=shift, alt=alt)


# ─────────────────────────────────────────────────────────────────────────────
# Registry
# ─────────────────────────────────────────────────────────────────────────────


class SafetyRegistry:
    def __init__(
        self,
        *,
        shortcut: str = DEFAULT_STOP_SHORTCUT,
        history_size: int = 200,
        notifier: Notifier | None = None,
        stop_timeout: float | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._stopped = False
        self._processes: dict[str, StoppableProcess] = {}
        self._history: deque[EmergencyStopEvent] = deque(maxlen=max(1, history_size))
        self._listeners: list[Listener] = []
        self._shortcut = KeyboardShortcut.parse(shortcut)
        self._shortcut_text = shortcut
        self.notifier = notifier
        self.stop_timeout = stop_timeout

    @property
    def is_stopped(self) -> bool:
        with self._lock:
            return self._stopped

    # ── state transitions ────────────────────────────────────────────────────

    def activate(self, trigger: StopTrigger = StopTrigger.PROGRAMMATIC) -> EmergencyStopEvent | None:
        """Enter the Stopped state. Returns the recorded event, or None if already stopped."""
        with self._lock:
            if self._stopped:
                logger.info("emergency_stop_already_active trigger=%s", trigger.value)
                return None
            self._stopped = True
            processes = list(self._processes.values())

        logger.warning("emergency_stop_activated trigger=%s processes=%d", trigger.value, len(processes))

        pending: dict[Future[Any], StoppableProcess] = {}
        for process in processes:
            pending.update(dict.fromkeys(self._signal(process), process))
        if pending:
            done, not_done = wait_futures(pending, timeout=self.stop_timeout)
            for future in done:
                error = future.exception()
                if error is not None:
                    failed = pending[future]
                    logger.error(
                        "emergency_stop_completion_failed name=%s id=%s error=%s", failed.name, failed.id, error
                    )
            if not_done:
                logger.warning("emergency_stop_completion_timeout pending=%d", len(not_done))

        event = EmergencyStopEvent(timestamp=time.time(), trigger=trigger, processes_stopped_count=len(processes))
        with self._lock:
            self._history.append(event)

        self._notify_listeners(True)
        self._show_notification("Emergency Stop Activated", f"Stopped {len(processes)} automation process(es)")
        logger.warning("emergency_stop_complete stopped=%d", len(processes))
        return event

    def deactivate(self) -> bool:
        with self._lock:
            if not self._stopped:
                logger.info("emergency_stop_not_active")
                return False
            self._stopped = False
        logger.info("emergency_stop_deactivated")
        self._notify_listeners(False)
        self._show_notification("Emergency Stop Deactivated", "Automation can resume")
        return True

    # ── processes ────────────────────────────────────────────────────────────

    def register(self, process: StoppableProcess) -> None:
        with self._lock:
            self._processes[process.id] = process
            stopped = self._stopped
        logger.debug("process_registered name=%s id=%s", process.name, process.id)
        if stopped:
            self._signal(process)

    def unregister(self, process_id: str) -> None:
        with self._lock:
            process = self._processes.pop(process_id, None)
        if process is not None:
            logger.debug("process_unregistered name=%s id=%s", process.name, process_id)

    def processes(self) -> list[StoppableProcess]:
        with self._lock:
            return list(self._processes.values())

    @contextlib.contextmanager
    def guard(self, name: str) -> Iterator[threading.Event]:
        """Register a process for the duration of a block; the yielded event is set on stop."""
        cancelled = threading.Event()
        process = StoppableProcess(id=f"{name}-{uuid.uuid4().hex[:8]}", name=name, stop=cancelled.set)
        self.register(process)
        try:
            yield cancelled
        finally:
            self.unregister(process.id)

    def _signal(self, process: StoppableProcess) -> list[Future[Any]]:
        logger.info("stopping_process name=%s id=%s", process.name, process.id)
        try:
            result = process.stop()
        except Exception as exc:
            logger.error("stop_failed name=%s id=%s error=%s", process.name, process.id, exc)
            return []
        return [result] if isinstance(result, Future) else []

    # ── listeners and notifications ──────────────────────────────────────────

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify_listeners(self, stopped: bool) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(stopped)
            except Exception as exc:
                logger.error("listener_failed error=%s", exc)

    def _show_notification(self, title: str, message: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(title, message)
        except Exception as exc:
            logger.error("notification_failed title=%s error=%s", title, exc)

    # ── shortcut ─────────────────────────────────────────────────────────────

    @property
    def shortcut(self) -> str:
        return self._shortcut_text

    def set_shortcut(self, shortcut: str) -> None:
        parsed = KeyboardShortcut.parse(shortcut)
        with self._lock:
            self._shortcut = parsed
            self._shortcut_text = shortcut
        logger.info("stop_shortcut_updated shortcut=%s", shortcut)

    def handle_key(self, key: str, *, ctrl: bool = False, shift: bool = False, alt: bool = False) -> bool:
        """Activate on a matching key combination. Returns True when it matched."""
        with self._lock:
            shortcut = self._shortcut
        if not shortcut.matches(key, ctrl=ctrl, shift=shift, alt=alt):
            return False
        self.activate(StopTrigger.KEYBOARD)
        return True

    # ── introspection ────────────────────────────────────────────────────────

    def history(self, limit: int | None = None) -> list[EmergencyStopEvent]:
        """Recorded events, oldest first; `limit` keeps the newest N and must be at least 1."""
        if limit is not None and limit < 1:
            raise ValueError(f"history limit must be at least 1, got {limit}")
        with self._lock:
            events = list(self._history)
        return events[-limit:] if limit is not None else events

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    def status(self) -> dict[str, Any]:
        with self._lock:
            last = self._history[-1] if self._history else None
            return {
                "isStopped": self._stopped,
                "registeredProcesses": len(self._processes),
                "keyboardShortcut": self._shortcut_text,
                "lastStopEvent": last.to_dict() if last is not None else None,
            }
