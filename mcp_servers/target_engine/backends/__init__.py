"""
Page backends.

A backend owns one rendered page. It produces `Document` snapshots and performs
effects on nodes taken from its latest snapshot:
- memory.py: in-process tree; effects are applied to the model itself
- cdp.py: live Chrome tab driven over the DevTools protocol
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..dom import Document, Element


class OverlayKind(str, Enum):
    CLICK = "click"  # expanding circle at the node centre
    OUTLINE = "outline"  # outline around the node


class PageBackend(Protocol):
    def snapshot(self) -> Document: ...

    def click(self, node: Element) -> None: ...

    def set_value(self, node: Element, value: str) -> None:
        """Focus the node, replace its value and fire `input` then `change`."""
        ...

    def scroll_by(self, delta_y: float, *, smooth: bool = True, frame: Element | None = None) -> None:
        """Scroll the top window, or the document inside `frame` when given."""
        ...

    def add_overlay(self, kind: OverlayKind, node: Element) -> str: ...

    def remove_overlay(self, overlay_id: str) -> None: ...

    def notify(self, title: str, message: str) -> None: ...


__all__ = ["OverlayKind", "PageBackend"]
