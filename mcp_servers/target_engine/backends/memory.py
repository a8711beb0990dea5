"""In-memory page backend: effects are applied directly to the snapshot model."""

from __future__ import annotations

import itertools
import logging
from typing import Any

from ..dom import Document, Element
from . import OverlayKind

logger = logging.getLogger("mcp.target_engine.backends.memory")


class MemoryBackend:
    """
    Page held in process.

    Node events are appended to `Element.events`. An element prop `onclick`
    holding a callable is invoked on click (it may raise to simulate a
    failing page handler).
    """

    def __init__(self, document: Document) -> None:
        self.document = document
        self.notifications: list[tuple[str, str]] = []
        self.scrolls: list[float] = []
        self.snapshots = 0
        self._overlay_ids = itertools.count(1)
        self._outlines: dict[str, tuple[Element, str | None]] = {}

    def snapshot(self) -> Document:
        self.snapshots += 1
        return self.document

    def click(self, node: Element) -> None:
        node.events.append("click")
        handler = node.props.get("onclick")
        if callable(handler):
            handler(node)

    def set_value(self, node: Element, value: str) -> None:
        node.events.append("focus")
        if node.tag in {"input", "textarea"}:
            node.props["value"] = value
        else:
            node.text = value
            node.children.clear()
        node.events.extend(["input", "change"])

    def scroll_by(self, delta_y: float, *, smooth: bool = True, frame: Element | None = None) -> None:
        document = self.document
        if frame is not None and frame.frame is not None and frame.frame.document is not None:
            document = frame.frame.document
        viewport = document.viewport
        limit = max(0.0, document.root.rect.height - viewport.height)
        viewport.y = max(0.0, min(viewport.y + delta_y, limit))
        self.scrolls.append(delta_y)
        logger.debug("scrolled delta=%s smooth=%s top=%s", delta_y, smooth, viewport.y)

    def add_overlay(self, kind: OverlayKind, node: Element) -> str:
        overlay_id = f"overlay-{next(self._overlay_ids)}"
        entry: dict[str, Any] = {"id": overlay_id, "kind": kind.value, "target": node}
        if kind is OverlayKind.CLICK:
            x, y = node.rect.center
            entry.update(x=x, y=y)
        else:
            self._outlines[overlay_id] = (node, node.style.get("outline"))
            node.style["outline"] = "3px solid #22D3EE"
        self.document.overlays.append(entry)
        return overlay_id

    def remove_overlay(self, overlay_id: str) -> None:
        self.document.overlays[:] = [o for o in self.document.overlays if o["id"] != overlay_id]
        outlined = self._outlines.pop(overlay_id, None)
        if outlined is None:
            return
        node, previous = outlined
        if previous is None:
            node.style.pop("outline", None)
        else:
            node.style["outline"] = previous

    def notify(self, title: str, message: str) -> None:
        self.notifications.append((title, message))
