"""Document snapshot model.

A page is represented as a tree of `Element`s owned by a `Document`. Two kinds of
boundary split the tree into searchable scopes:
- shadow roots (`Element.shadow_root`, always accessible)
- frames (`Element.frame`, accessible only when same-origin)

Backends produce this model: the in-memory backend owns it directly, the CDP
backend rebuilds it from a single injected snapshot script. Rects are in the
owning document's coordinates; `Document.viewport` carries the scroll offset.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any

from lxml import etree
from lxml.cssselect import CSSSelector, SelectorError

_WS_RE = re.compile(r"\s+")
_XML_NAME_RE = re.compile(r"^[A-Za-z_][\w.-]*$")

# Never contributes to visible text.
NON_TEXT_TAGS = frozenset({"script", "style", "noscript", "template", "svg", "head", "title", "meta", "link"})
FRAME_TAGS = frozenset({"iframe", "frame"})


def normalize_text(value: Any) -> str:
    return _WS_RE.sub(" ", str(value or "")).strip()


@dataclass(slots=True)
class Rect:
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def intersects(self, other: Rect) -> bool:
        return self.x < other.right and other.x < self.right and self.y < other.bottom and other.y < self.bottom

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


def default_rect() -> Rect:
    return Rect(0.0, 0.0, 100.0, 24.0)


@dataclass(eq=False)
class FrameContent:
    """Content of an `iframe`/`frame` element.

    `document` is None when the frame has not loaded or its content cannot be read.
    """

    document: Document | None = None
    origin: str = ""
    cross_origin: bool = False


@dataclass(eq=False)
class Element:
    tag: str
    attrs: dict[str, str] = field(default_factory=dict)
    text: str = ""
    children: list[Element] = field(default_factory=list)
    rect: Rect = field(default_factory=default_rect)
    style: dict[str, str] = field(default_factory=dict)
    props: dict[str, Any] = field(default_factory=dict)
    shadow_root: Element | None = None
    frame: FrameContent | None = None
    ref: str | None = None
    parent: Element | None = field(default=None, repr=False)
    events: list[str] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        self.tag = self.tag.lower()
        for child in self.children:
            child.parent = self

    def append(self, *children: Element) -> Element:
        for child in children:
            child.parent = self
            self.children.append(child)
        return self

    def get(self, name: str, default: str | None = None) -> str | None:
        return self.attrs.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.attrs

    @property
    def id(self) -> str:
        return self.attrs.get("id", "")

    @property
    def classes(self) -> list[str]:
        return (self.attrs.get("class") or "").split()

    @property
    def value(self) -> str:
        if "value" in self.props:
            return str(self.props["value"] if self.props["value"] is not None else "")
        return self.attrs.get("value", "")

    @property
    def input_type(self) -> str:
        return (self.attrs.get("type") or "text").strip().lower()

    @property
    def role(self) -> str:
        return (self.attrs.get("role") or "").strip().lower()

    def iter(self) -> Iterator[Element]:
        """Yield descendants in document order, without crossing shadow/frame boundaries."""
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def own_text(self) -> str:
        return normalize_text(self.text)

    def inner_text(self) -> str:
        """Visible text of this element and its light-DOM descendants."""
        parts: list[str] = []
        self._collect_text(parts)
        return normalize_text(" ".join(parts))

    def _collect_text(self, parts: list[str]) -> None:
        if self.tag in NON_TEXT_TAGS or self.style.get("display") == "none":
            return
        if self.text:
            parts.append(self.text)
        for child in self.children:
            child._collect_text(parts)

    def closest(self, tag: str) -> Element | None:
        node: Element | None = self
        while node is not None:
            if node.tag == tag:
                return node
            node = node.parent
        return None

    def describe(self) -> dict[str, Any]:
        out: dict[str, Any] = {"tag": self.tag}
        if self.id:
            out["id"] = self.id
        label = self.inner_text() or self.value or self.attrs.get("aria-label", "")
        if label:
            out["text"] = label[:60]
        if self.ref:
            out["ref"] = self.ref
        return out


@dataclass(eq=False)
class Document:
    root: Element
    title: str = ""
    url: str = ""
    viewport: Rect = field(default_factory=lambda: Rect(0.0, 0.0, 1280.0, 720.0))
    ready_state: str = "complete"
    overlays: list[dict[str, Any]] = field(default_factory=list, repr=False)

    def body(self) -> Element:
        for node in self.root.iter():
            if node.tag == "body":
                return node
        return self.root


class ScopeKind(str, Enum):
    DOCUMENT = "document"
    SHADOW = "shadow"
    FRAME = "frame"


@dataclass(eq=False)
class Scope:
    """A searchable region: the top-level document, one shadow tree, or one frame document."""

    scope_id: str
    kind: ScopeKind
    container: Element
    document: Document
    host: Element | None = None
    parent: Scope | None = None

    @property
    def title(self) -> str:
        return self.document.title

    @property
    def viewport(self) -> Rect:
        return self.document.viewport

    @property
    def path(self) -> list[str]:
        out: list[str] = []
        node: Scope | None = self
        while node is not None:
            out.append(node.scope_id)
            node = node.parent
        out.reverse()
        return out

    def elements(self) -> Iterator[Element]:
        if self.kind is not ScopeKind.SHADOW:
            yield self.container
        yield from self.container.iter()

    def query_all(self, selector: str) -> list[Element]:
        """Elements of this scope matching a CSS selector, in document order."""
        compiled = compile_selector(selector)
        # Holding the lxml proxies keeps their identity stable across the query.
        mirrors: dict[int, tuple[Any, Element]] = {}
        tree = _mirror(self.container, mirrors)
        hits = {id(node) for node in compiled(tree)}
        if self.kind is ScopeKind.SHADOW:
            hits.discard(id(tree))
        return [el for key, (_node, el) in mirrors.items() if key in hits]

    def boundaries(self) -> Iterator[Element]:
        """Shadow hosts and frame elements of this scope, in document order."""
        for el in self.elements():
            if el.shadow_root is not None or el.tag in FRAME_TAGS:
                yield el

    def visible_text(self) -> str:
        if self.kind is ScopeKind.SHADOW:
            return self.container.inner_text()
        return self.document.body().inner_text()


@lru_cache(maxsize=256)
def compile_selector(selector: str) -> CSSSelector:
    """Compile with HTML semantics; raises `SelectorError` for invalid input."""
    source = (selector or "").strip()
    if not source:
        raise SelectorError("Empty selector")
    return CSSSelector(source, translator="html")


def _mirror_tag(tag: str) -> str:
    name = tag.lstrip("#")
    return name if _XML_NAME_RE.match(name) else "unknown"


def _mirror(el: Element, mirrors: dict[int, tuple[Any, Element]], parent: Any = None) -> Any:
    """Copy an element's light tree into lxml, recording lxml node -> Element."""
    tag = _mirror_tag(el.tag)
    node = etree.Element(tag) if parent is None else etree.SubElement(parent, tag)
    attrs = dict(el.attrs)
    if "value" not in attrs and "value" in el.props:
        attrs["value"] = el.value
    for flag in ("disabled", "checked"):
        if el.props.get(flag) and flag not in attrs:
            attrs[flag] = ""
    for name, value in attrs.items():
        try:
            node.set(name.lower(), value)
        except ValueError:
            # Not representable as an XML attribute; no selector can address it either.
            continue
    try:
        node.text = el.text or None
    except ValueError:
        node.text = None
    mirrors[id(node)] = (node, el)
    for child in el.children:
        _mirror(child, mirrors, node)
    return node


def root_scope(document: Document) -> Scope:
    return Scope(scope_id="root", kind=ScopeKind.DOCUMENT, container=document.root, document=document)


def shadow_scope(parent: Scope, host: Element, ordinal: int) -> Scope:
    assert host.shadow_root is not None
    return Scope(
        scope_id=f"{parent.scope_id}>shadow:{ordinal}",
        kind=ScopeKind.SHADOW,
        container=host.shadow_root,
        document=parent.document,
        host=host,
        parent=parent,
    )


def frame_scope(parent: Scope, host: Element, document: Document, ordinal: int) -> Scope:
    return Scope(
        scope_id=f"{parent.scope_id}>frame:{ordinal}",
        kind=ScopeKind.FRAME,
        container=document.root,
        document=document,
        host=host,
        parent=parent,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Builders (in-memory pages and tests)
# ─────────────────────────────────────────────────────────────────────────────


def _attr_name(key: str) -> str:
    return key.rstrip("_").replace("_", "-")


def h(
    tag: str,
    *children: Element | str,
    rect: Rect | None = None,
    style: dict[str, str] | None = None,
    props: dict[str, Any] | None = None,
    shadow: list[Element] | None = None,
    **attrs: Any,
) -> Element:
    """Build an element: `h("button", "Submit", type="submit", aria_label="Send")`."""
    text_parts = [c for c in children if isinstance(c, str)]
    kids = [c for c in children if isinstance(c, Element)]
    el = Element(
        tag=tag,
        attrs={_attr_name(k): ("" if v is True else str(v)) for k, v in attrs.items() if v is not None and v is not False},
        text=" ".join(text_parts),
        children=kids,
        rect=rect or default_rect(),
        style=dict(style or {}),
        props=dict(props or {}),
    )
    if shadow is not None:
        el.shadow_root = Element(tag="#shadow-root", children=list(shadow))
    return el


def page(*children: Element, title: str = "", url: str = "about:blank", viewport: Rect | None = None) -> Document:
    body = Element(tag="body", children=list(children), rect=Rect(0.0, 0.0, 1280.0, 4000.0))
    html = Element(tag="html", children=[body], rect=Rect(0.0, 0.0, 1280.0, 4000.0))
    return Document(root=html, title=title, url=url, viewport=viewport or Rect(0.0, 0.0, 1280.0, 720.0))


def iframe(document: Document | None, *, cross_origin: bool = False, origin: str = "", **attrs: Any) -> Element:
    el = h("iframe", rect=Rect(0.0, 0.0, 600.0, 400.0), **attrs)
    el.frame = FrameContent(document=document, origin=origin, cross_origin=cross_origin)
    return el
