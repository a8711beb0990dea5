"""
Hosting context: one safety registry, one page backend and the services built on them.

The CDP backend is connected lazily on first use; tests pass a backend directly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from .backends.cdp import CdpBackend
from .config import EngineConfig
from .executor import ActionExecutor
from .keyboard import KeyboardWatcher
from .safety import SafetyRegistry
from .sequence import DEFAULT_MAX_STEPS, SequenceRunner
from .session import BrowserSession, connect

if TYPE_CHECKING:
    from .backends import PageBackend

logger = logging.getLogger("mcp.target_engine.context")

SessionFactory = Callable[..., BrowserSession]


class EngineContext:
    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        backend: PageBackend | None = None,
        safety: SafetyRegistry | None = None,
        session_factory: SessionFactory = connect,
    ) -> None:
        self.config = config or EngineConfig.from_env()
        self.safety = safety or SafetyRegistry(
            shortcut=self.config.stop_shortcut,
            history_size=self.config.stop_history,
            notifier=self._notify,
        )
        self._backend = backend
        self._session_factory = session_factory
        self._session: BrowserSession | None = None
        self._watcher: KeyboardWatcher | None = None
        self._executor: ActionExecutor | None = None

    def _notify(self, title: str, message: str) -> None:
        if self._backend is not None:
            self._backend.notify(title, message)

    @property
    def backend(self) -> PageBackend:
        if self._backend is None:
            self._session = self._session_factory(self.config)
            self._backend = CdpBackend(self._session)
            self._start_watcher(self._session.tab_id)
        return self._backend

    def _start_watcher(self, tab_id: str) -> None:
        session: BrowserSession | None = None
        try:
            session = self._session_factory(self.config, tab_id=tab_id)
            watcher = KeyboardWatcher(session, self.safety)
            watcher.start()
        except Exception as exc:  # noqa: BLE001
            # Actions keep working; only the in-page shortcut is lost.
            logger.warning("keyboard_watcher_unavailable error=%s", exc)
            if session is not None:
                session.close()
            return
        self._watcher = watcher

    @property
    def executor(self) -> ActionExecutor:
        if self._executor is None:
            self._executor = ActionExecutor(self.backend, self.safety, self.config)
        return self._executor

    def runner(self, *, max_steps: int = DEFAULT_MAX_STEPS, stop_on_failure: bool = True) -> SequenceRunner:
        return SequenceRunner(self.executor, self.safety, max_steps=max_steps, stop_on_failure=stop_on_failure)

    def close(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        if self._session is not None:
            self._session.close()
            self._session = None
