"""
CDP page backend: a live Chrome tab.

`snapshot()` runs one injected script that walks the document (light DOM, open
shadow roots and same-origin frames), registers every node in a page-global ref
map and returns a JSON tree; the tree is rebuilt into the `dom` model. Effects
look nodes up by ref in that map:
- click: centre in top-level viewport coordinates, then CDP mouse events
- set_value: native value setter, then `input` and `change` events
- overlays and notifications: fixed-position nodes with `pointer-events:none`
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from ..dom import Document, Element, FrameContent, Rect
from ..http_client import HttpClientError
from . import OverlayKind

if TYPE_CHECKING:
    from ..session import BrowserSession

logger = logging.getLogger("mcp.target_engine.backends.cdp")

MAX_NODES = 20000

_SNAPSHOT_JS = r"""
(() => {
  const MAX_NODES = %(max_nodes)d;
  const SKIP = new Set(['script', 'style', 'noscript', 'template', 'head', 'meta', 'link']);
  const FIELD_TAGS = new Set(['input', 'textarea', 'select', 'button', 'option']);
  const refs = new Map();
  window.__mcpTargetRefs = refs;
  let seq = 0;

  const ownText = (el) => {
    let out = '';
    for (const n of el.childNodes) {
      if (n.nodeType === 3) out += ' ' + n.nodeValue;
    }
    return out.replace(/\s+/g, ' ').trim();
  };

  const originOf = (el) => {
    try { return new URL(el.getAttribute('src') || '', location.href).origin; } catch (e) { return ''; }
  };

  const walkChildren = (parent, win, out) => {
    for (const child of parent.children) {
      if (seq >= MAX_NODES) return;
      if (SKIP.has(child.tagName.toLowerCase())) continue;
      out.push(walk(child, win));
    }
  };

  const walk = (el, win) => {
    const ref = 'r' + (++seq);
    refs.set(ref, el);
    const tag = el.tagName.toLowerCase();
    const r = el.getBoundingClientRect();
    let st = null;
    try { st = win.getComputedStyle(el); } catch (e) {}
    const attrs = {};
    for (const a of el.attributes) attrs[a.name] = a.value;
    const node = {
      ref, tag, attrs,
      text: ownText(el),
      rect: [r.left + win.scrollX, r.top + win.scrollY, r.width, r.height],
      style: st ? {display: st.display, visibility: st.visibility, opacity: st.opacity} : {},
      children: [],
    };
    if (FIELD_TAGS.has(tag) || el.isContentEditable) {
      node.props = {value: typeof el.value === 'string' ? el.value : null, disabled: !!el.disabled, checked: !!el.checked};
    }
    if (el.shadowRoot) {
      node.shadow = [];
      walkChildren(el.shadowRoot, win, node.shadow);
    }
    if (tag === 'iframe' || tag === 'frame') {
      let doc = null;
      try { doc = el.contentDocument; } catch (e) { doc = null; }
      node.frame = (doc && doc.documentElement)
        ? {origin: originOf(el), document: walkDocument(doc, el.contentWindow)}
        : {origin: originOf(el), crossOrigin: true};
    }
    walkChildren(el, win, node.children);
    return node;
  };

  const walkDocument = (doc, win) => ({
    title: doc.title || '',
    url: doc.URL || '',
    readyState: doc.readyState,
    viewport: [win.scrollX, win.scrollY, win.innerWidth, win.innerHeight],
    root: walk(doc.documentElement, win),
  });

  return walkDocument(document, window);
})()
"""

_LOOKUP_JS = r"""
const __ref = %(ref)s;
const el = window.__mcpTargetRefs && window.__mcpTargetRefs.get(__ref);
if (!el || !el.isConnected) return {ok: false, error: 'element is detached'};
const rectToTop = (node) => {
  const r = node.getBoundingClientRect();
  let x = r.x;
  let y = r.y;
  let win = node.ownerDocument && node.ownerDocument.defaultView;
  let guard = 0;
  while (win && win.frameElement && guard < 12) {
    const fe = win.frameElement;
    const fr = fe.getBoundingClientRect();
    x += fr.x + (fe.clientLeft || 0);
    y += fr.y + (fe.clientTop || 0);
    try { win = win.parent; } catch (e) { break; }
    guard++;
  }
  return {x, y, width: r.width, height: r.height};
};
"""

_CENTER_JS = r"""
(() => {
%(lookup)s
  el.scrollIntoView({block: 'center', inline: 'center', behavior: 'instant'});
  const b = rectToTop(el);
  return {ok: true, x: b.x + b.width / 2, y: b.y + b.height / 2};
})()
"""

_SET_VALUE_JS = r"""
(() => {
%(lookup)s
  const value = %(value)s;
  el.focus();
  const tag = el.tagName.toLowerCase();
  if (tag === 'input' || tag === 'textarea') {
    const proto = tag === 'input' ? HTMLInputElement.prototype : HTMLTextAreaElement.prototype;
    const setter = Object.getOwnPropertyDescriptor(proto, 'value').set;
    setter.call(el, value);
  } else if (el.isContentEditable) {
    el.textContent = value;
  } else {
    return {ok: false, error: 'element is not editable'};
  }
  el.dispatchEvent(new Event('input', {bubbles: true}));
  el.dispatchEvent(new Event('change', {bubbles: true}));
  return {ok: true};
})()
"""

_OVERLAY_JS = r"""
(() => {
%(lookup)s
  const kind = %(kind)s;
  const store = (window.__mcpOverlays = window.__mcpOverlays || {});
  const id = 'mcp-overlay-' + Date.now().toString(36) + '-' + Math.random().toString(36).slice(2, 8);
  if (kind === 'click') {
    const b = rectToTop(el);
    const c = document.createElement('div');
    c.id = id;
    Object.assign(c.style, {
      position: 'fixed', left: (b.x + b.width / 2) + 'px', top: (b.y + b.height / 2) + 'px',
      width: '20px', height: '20px', borderRadius: '50%%',
      backgroundColor: 'rgba(255, 0, 0, 0.5)', border: '2px solid red',
      transform: 'translate(-50%%, -50%%) scale(0)', transition: 'transform 0.3s ease-out, opacity 0.3s ease-out',
      zIndex: '2147483647', pointerEvents: 'none',
    });
    document.documentElement.appendChild(c);
    requestAnimationFrame(() => { c.style.transform = 'translate(-50%%, -50%%) scale(1.5)'; });
    setTimeout(() => { c.style.opacity = '0'; }, 300);
    store[id] = {remove: () => c.remove()};
  } else {
    const prevOutline = el.style.outline;
    const prevTransition = el.style.transition;
    el.style.transition = 'outline 0.2s ease-in-out';
    el.style.outline = '3px solid #22D3EE';
    store[id] = {remove: () => { el.style.outline = prevOutline; el.style.transition = prevTransition; }};
  }
  return {ok: true, id};
})()
"""

_REMOVE_OVERLAY_JS = r"""
(() => {
  const store = window.__mcpOverlays || {};
  const entry = store[%(id)s];
  if (!entry) return false;
  delete store[%(id)s];
  entry.remove();
  return true;
})()
"""

_NOTIFY_JS = r"""
(() => {
  const box = document.createElement('div');
  Object.assign(box.style, {
    position: 'fixed', top: '16px', right: '16px', maxWidth: '360px', padding: '12px 16px',
    background: 'rgba(17, 24, 39, 0.95)', color: '#fff', borderRadius: '8px',
    font: '13px/1.4 system-ui, sans-serif', boxShadow: '0 4px 16px rgba(0,0,0,0.3)',
    zIndex: '2147483647', pointerEvents: 'none',
  });
  const title = document.createElement('strong');
  title.textContent = %(title)s;
  const body = document.createElement('div');
  body.textContent = %(message)s;
  box.append(title, body);
  document.documentElement.appendChild(box);
  setTimeout(() => box.remove(), 3000);
  return true;
})()
"""

_SCROLL_JS = "window.scrollBy({top: %(dy)s, left: 0, behavior: %(behavior)s})"

_FRAME_SCROLL_JS = r"""
(() => {
%(lookup)s
  let win = null;
  try { win = el.contentWindow; } catch (e) { win = null; }
  if (!win) return {ok: false, error: 'frame has no window'};
  win.scrollBy({top: %(dy)s, left: 0, behavior: %(behavior)s});
  return {ok: true};
})()
"""


def _rect(raw: Any) -> Rect:
    if isinstance(raw, (list, tuple)) and len(raw) == 4:
        return Rect(*(float(v or 0) for v in raw))
    return Rect()


def build_element(data: dict[str, Any]) -> Element:
    el = Element(
        tag=str(data.get("tag") or "div"),
        attrs={str(k): str(v) for k, v in (data.get("attrs") or {}).items()},
        text=str(data.get("text") or ""),
        children=[build_element(c) for c in data.get("children") or []],
        rect=_rect(data.get("rect")),
        style={str(k): str(v) for k, v in (data.get("style") or {}).items()},
        props={k: v for k, v in (data.get("props") or {}).items() if v is not None},
        ref=data.get("ref"),
    )
    if "shadow" in data:
        el.shadow_root = Element(tag="#shadow-root", children=[build_element(c) for c in data["shadow"] or []])
    frame = data.get("frame")
    if isinstance(frame, dict):
        document = frame.get("document")
        el.frame = FrameContent(
            document=build_document(document) if isinstance(document, dict) else None,
            origin=str(frame.get("origin") or ""),
            cross_origin=bool(frame.get("crossOrigin")),
        )
    return el


def build_document(data: dict[str, Any]) -> Document:
    return Document(
        root=build_element(data.get("root") or {"tag": "html"}),
        title=str(data.get("title") or ""),
        url=str(data.get("url") or ""),
        viewport=_rect(data.get("viewport")),
        ready_state=str(data.get("readyState") or "complete"),
    )


class CdpBackend:
    def __init__(self, session: BrowserSession) -> None:
        self.session = session

    def _eval(self, script: str) -> Any:
        return self.session.eval_js(script)

    def _on_node(self, template: str, node: Element, **params: str) -> dict[str, Any]:
        if not node.ref:
            raise HttpClientError("node has no page reference")
        lookup = _LOOKUP_JS % {"ref": json.dumps(node.ref)}
        result = self._eval(template % {"lookup": lookup, **params})
        if not isinstance(result, dict) or not result.get("ok"):
            reason = result.get("error") if isinstance(result, dict) else None
            raise HttpClientError(str(reason or "page script failed"))
        return result

    def snapshot(self) -> Document:
        data = self._eval(_SNAPSHOT_JS % {"max_nodes": MAX_NODES})
        if not isinstance(data, dict):
            raise HttpClientError("snapshot script returned no document")
        return build_document(data)

    def click(self, node: Element) -> None:
        center = self._on_node(_CENTER_JS, node)
        self.session.click(float(center["x"]), float(center["y"]))

    def set_value(self, node: Element, value: str) -> None:
        self._on_node(_SET_VALUE_JS, node, value=json.dumps(value))

    def scroll_by(self, delta_y: float, *, smooth: bool = True, frame: Element | None = None) -> None:
        params = {"dy": json.dumps(delta_y), "behavior": json.dumps("smooth" if smooth else "instant")}
        if frame is not None:
            self._on_node(_FRAME_SCROLL_JS, frame, **params)
            return
        self._eval(_SCROLL_JS % params)

    def add_overlay(self, kind: OverlayKind, node: Element) -> str:
        result = self._on_node(_OVERLAY_JS, node, kind=json.dumps(kind.value))
        return str(result["id"])

    def remove_overlay(self, overlay_id: str) -> None:
        self._eval(_REMOVE_OVERLAY_JS % {"id": json.dumps(overlay_id)})

    def notify(self, title: str, message: str) -> None:
        self._eval(_NOTIFY_JS % {"title": json.dumps(title), "message": json.dumps(message)})
