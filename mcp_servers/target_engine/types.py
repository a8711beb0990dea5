"""
Data types exchanged between the engine and its callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from lxml.cssselect import SelectorError

from .base import DescriptorError
from .dom import compile_selector

if TYPE_CHECKING:
    from .dom import Element, Scope


class ActionKind(str, Enum):
    SCRAPE = "SCRAPE"
    CLICK = "CLICK"
    TYPE = "TYPE"
    SCROLL = "SCROLL"
    WAIT = "WAIT"
    HIGHLIGHT = "HIGHLIGHT"
    SUMMARIZE_SCOPE = "SUMMARIZE_SCOPE"
    FINISH = "FINISH"

    @classmethod
    def parse(cls, raw: Any) -> ActionKind:
        if isinstance(raw, ActionKind):
            return raw
        name = str(raw or "").strip().upper().replace("-", "_").replace(" ", "_")
        name = _ACTION_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise DescriptorError(
                tool="descriptor",
                action="validate",
                reason=f"Unknown action kind: {raw!r}",
                suggestion="Use one of: " + ", ".join(k.value for k in cls),
            ) from None


_ACTION_ALIASES = {
    "SUMMARIZE": "SUMMARIZE_SCOPE",
    "GET_DOM_SUMMARY": "SUMMARIZE_SCOPE",
    "SUMMARY": "SUMMARIZE_SCOPE",
}

TARGETED_KINDS = frozenset({ActionKind.CLICK, ActionKind.TYPE, ActionKind.HIGHLIGHT})


class Direction(str, Enum):
    UP = "UP"
    DOWN = "DOWN"

    @classmethod
    def parse(cls, raw: Any) -> Direction | None:
        if raw is None or raw == "":
            return None
        if isinstance(raw, Direction):
            return raw
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            raise DescriptorError(
                tool="descriptor",
                action="validate",
                reason=f"Invalid scroll direction: {raw!r}",
                suggestion="Use UP or DOWN",
            ) from None


@dataclass(frozen=True)
class TargetDescriptor:
    action_kind: ActionKind
    selector: str | None = None
    text: str | None = None
    value: str | None = None
    direction: Direction | None = None
    duration_ms: int | None = None

    @property
    def has_target(self) -> bool:
        return bool((self.selector or "").strip() or (self.text or "").strip())

    def validate(self) -> None:
        if self.action_kind in TARGETED_KINDS and not self.has_target:
            raise DescriptorError(
                tool="descriptor",
                action="validate",
                reason=f"{self.action_kind.value} requires a selector or text",
                suggestion="Provide the visible label in text, or a structural selector",
                details={"actionKind": self.action_kind.value},
            )
        if self.selector and self.selector.strip():
            try:
                compile_selector(self.selector)
            except SelectorError as exc:
                raise DescriptorError(
                    tool="descriptor",
                    action="validate",
                    reason=f"Invalid selector {self.selector!r}: {exc}",
                    suggestion="Use a CSS selector such as button#submit or input[name=email]",
                    details={"selector": self.selector},
                ) from exc

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"actionKind": self.action_kind.value}
        if self.selector:
            out["selector"] = self.selector
        if self.text:
            out["text"] = self.text
        if self.value is not None:
            out["value"] = self.value
        if self.direction is not None:
            out["direction"] = self.direction.value
        if self.duration_ms is not None:
            out["durationMs"] = self.duration_ms
        return out


@dataclass(slots=True)
class ResolutionResult:
    node: Element
    strategy: str
    confidence: float
    scope_path: list[str] = field(default_factory=list)
    scope: Scope | None = field(default=None, repr=False)


@dataclass(slots=True)
class ResolutionFailure:
    error: str
    attempted: list[str] = field(default_factory=list)
    skipped_boundaries: int = 0


@dataclass(slots=True)
class ActionResult:
    success: bool
    strategy: str | None = None
    confidence: float | None = None
    error: str | None = None
    finished: bool = False
    data: Any | None = None
    scope_path: list[str] | None = None
    attempted: list[str] | None = None

    @classmethod
    def ok(cls, **kwargs: Any) -> ActionResult:
        return cls(success=True, **kwargs)

    @classmethod
    def fail(cls, error: str, **kwargs: Any) -> ActionResult:
        return cls(success=False, error=error, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.strategy is not None:
            out["strategy"] = self.strategy
        if self.confidence is not None:
            out["confidence"] = self.confidence
        if self.error is not None:
            out["error"] = self.error
        if self.finished:
            out["finished"] = True
        if self.data is not None:
            out["data"] = self.data
        if self.scope_path:
            out["scopePath"] = list(self.scope_path)
        if self.attempted:
            out["attempted"] = list(self.attempted)
        return out
