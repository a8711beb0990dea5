"""Visibility predicate: is a candidate node currently usable as an action target."""

from __future__ import annotations

from .dom import Element, Rect


def is_displayed(el: Element) -> bool:
    if el.tag == "input" and el.input_type == "hidden":
        return False
    style = el.style
    if style.get("visibility") in {"hidden", "collapse"}:
        return False
    try:
        if float(style.get("opacity", "1") or "1") == 0:
            return False
    except ValueError:
        pass
    node: Element | None = el
    while node is not None:
        if node.style.get("display") == "none":
            return False
        node = node.parent
    return True


def has_size(el: Element) -> bool:
    return el.rect.width > 0 and el.rect.height > 0


def is_on_screen(el: Element, viewport: Rect) -> bool:
    return el.rect.intersects(viewport)


def is_visible(el: Element, viewport: Rect) -> bool:
    """On-screen, non-zero size and rendered."""
    return has_size(el) and is_displayed(el) and is_on_screen(el, viewport)


def is_disabled(el: Element) -> bool:
    if "disabled" in el.attrs or bool(el.props.get("disabled")):
        return True
    return (el.attrs.get("aria-disabled") or "").strip().lower() == "true"


def is_interactable(el: Element, viewport: Rect) -> bool:
    return is_visible(el, viewport) and not is_disabled(el)
