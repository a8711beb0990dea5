"""
Base errors for the target engine.

Resolution and execution outcomes are never raised: they are encoded in
`ActionResult.error` using the strings below. Only malformed input raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

ERR_NOT_FOUND = "element not found"
ERR_DISABLED = "element is disabled"
ERR_NOT_INTERACTABLE = "element is not interactable"
ERR_STOPPED = "stopped"
ERR_INACCESSIBLE = "frame is not accessible"
ERR_EXECUTION = "execution failed"


@dataclass
class EngineError(Exception):
    """Structured error with context for the calling agent."""

    tool: str
    action: str
    reason: str
    suggestion: str
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.tool}] {self.action} failed: {self.reason}. Suggestion: {self.suggestion}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "tool": self.tool,
            "action": self.action,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


@dataclass
class DescriptorError(EngineError):
    """Raised before any resolution attempt when a descriptor is malformed."""


def execution_error(exc: BaseException) -> str:
    msg = str(exc).strip() or type(exc).__name__
    return f"{ERR_EXECUTION}: {msg}"
