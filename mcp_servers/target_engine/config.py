from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_STOP_SHORTCUT = "Ctrl+Shift+Esc"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw not in {"0", "false", "no", "off"}


@dataclass
class EngineConfig:
    cdp_port: int = 9222
    cdp_timeout: float = 5.0
    stop_shortcut: str = DEFAULT_STOP_SHORTCUT
    min_confidence: float = 0.3
    scroll_step: float = 500.0
    retry_scroll: float = 600.0
    retry_delay_ms: int = 500
    wait_default_ms: int = 1000
    element_timeout: float = 5.0
    enabled_timeout: float = 3.0
    frame_timeout: float = 10.0
    poll_interval: float = 0.1
    stop_history: int = 200
    overlays: bool = True

    @classmethod
    def from_env(cls) -> EngineConfig:
        return cls(
            cdp_port=_env_int("MCP_ENGINE_CDP_PORT", 9222),
            cdp_timeout=_env_float("MCP_ENGINE_CDP_TIMEOUT", 5.0),
            stop_shortcut=(os.environ.get("MCP_ENGINE_STOP_SHORTCUT") or DEFAULT_STOP_SHORTCUT).strip(),
            min_confidence=max(0.0, min(_env_float("MCP_ENGINE_MIN_CONFIDENCE", 0.3), 1.0)),
            scroll_step=_env_float("MCP_ENGINE_SCROLL_STEP", 500.0),
            retry_scroll=_env_float("MCP_ENGINE_RETRY_SCROLL", 600.0),
            retry_delay_ms=max(0, _env_int("MCP_ENGINE_RETRY_DELAY_MS", 500)),
            wait_default_ms=max(0, _env_int("MCP_ENGINE_WAIT_MS", 1000)),
            element_timeout=_env_float("MCP_ENGINE_ELEMENT_TIMEOUT", 5.0),
            enabled_timeout=_env_float("MCP_ENGINE_ENABLED_TIMEOUT", 3.0),
            frame_timeout=_env_float("MCP_ENGINE_FRAME_TIMEOUT", 10.0),
            # Keep polling bounded: a stop must be observed within one interval.
            poll_interval=max(0.01, min(_env_float("MCP_ENGINE_POLL_INTERVAL", 0.1), 1.0)),
            stop_history=max(1, _env_int("MCP_ENGINE_STOP_HISTORY", 200)),
            overlays=_env_bool("MCP_ENGINE_OVERLAYS", True),
        )
