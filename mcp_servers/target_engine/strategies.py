"""
Strategy chain: ordered, fixed-confidence heuristics that locate a target within one scope.

Strategies are a closed set (`StrategyKind`) evaluated by the single dispatcher
`match_strategy`. Each returns the first candidate (document order) that passes
the visibility predicate, or None. Disabled nodes are still returned so callers can
report "found but unusable" instead of "not found".
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from .dom import Element, Scope, normalize_text
from .types import ActionKind, TargetDescriptor
from .visibility import is_visible

BUTTON_INPUT_TYPES = frozenset({"button", "submit", "reset"})
TEXT_INPUT_TYPES = frozenset({"text", "email", "search", "password", "tel", "url", "number", ""})


class StrategyKind(str, Enum):
    EXACT_BUTTON = "exact_button"
    EXACT_LINK = "exact_link"
    PARTIAL_BUTTON = "partial_button"
    PARTIAL_LINK = "partial_link"
    ARIA_LABEL = "aria_label"
    VALUE_ATTRIBUTE = "value_attribute"
    PARTIAL_ANY = "partial_any"
    SELECTOR = "selector"
    PLACEHOLDER = "placeholder"
    LABEL_FOR = "label_for"
    FIELD_ARIA_LABEL = "field_aria_label"
    FIRST_TEXT_INPUT = "first_text_input"


@dataclass(frozen=True, slots=True)
class StrategySpec:
    kind: StrategyKind
    name: str
    confidence: float


CLICK_CHAIN: tuple[StrategySpec, ...] = (
    StrategySpec(StrategyKind.EXACT_BUTTON, "exact_button", 1.00),
    StrategySpec(StrategyKind.EXACT_LINK, "exact_link", 0.95),
    StrategySpec(StrategyKind.PARTIAL_BUTTON, "partial_button", 0.70),
    StrategySpec(StrategyKind.PARTIAL_LINK, "partial_link", 0.65),
    StrategySpec(StrategyKind.ARIA_LABEL, "aria_label", 0.60),
    StrategySpec(StrategyKind.VALUE_ATTRIBUTE, "value_attribute", 0.50),
    StrategySpec(StrategyKind.PARTIAL_ANY, "partial_any", 0.40),
    StrategySpec(StrategyKind.SELECTOR, "selector", 0.30),
)

TYPE_CHAIN: tuple[StrategySpec, ...] = (
    StrategySpec(StrategyKind.PLACEHOLDER, "placeholder", 0.90),
    StrategySpec(StrategyKind.LABEL_FOR, "label_for", 0.80),
    StrategySpec(StrategyKind.FIELD_ARIA_LABEL, "aria_label", 0.60),
    StrategySpec(StrategyKind.SELECTOR, "selector", 0.40),
    StrategySpec(StrategyKind.FIRST_TEXT_INPUT, "first_text_input", 0.30),
)

# Partial-text strategies re-run once after scroll-and-retry.
RETRY_KINDS = frozenset(
    {
        StrategyKind.PARTIAL_BUTTON,
        StrategyKind.PARTIAL_LINK,
        StrategyKind.PARTIAL_ANY,
        StrategyKind.PLACEHOLDER,
        StrategyKind.LABEL_FOR,
        StrategyKind.FIELD_ARIA_LABEL,
    }
)


def chain_for(kind: ActionKind) -> tuple[StrategySpec, ...]:
    return TYPE_CHAIN if kind is ActionKind.TYPE else CLICK_CHAIN


def retry_chain(chain: Iterable[StrategySpec]) -> tuple[StrategySpec, ...]:
    return tuple(spec for spec in chain if spec.kind in RETRY_KINDS)


# ─────────────────────────────────────────────────────────────────────────────
# Candidate sets
# ─────────────────────────────────────────────────────────────────────────────


def is_button(el: Element) -> bool:
    if el.tag == "button" or el.role == "button":
        return True
    return el.tag == "input" and el.input_type in BUTTON_INPUT_TYPES


def is_link(el: Element) -> bool:
    return el.tag == "a" or el.role == "link"


def is_text_field(el: Element) -> bool:
    if el.tag == "textarea":
        return True
    if el.tag == "input":
        return el.input_type in TEXT_INPUT_TYPES
    return (el.attrs.get("contenteditable") or "").lower() in {"", "true"} and "contenteditable" in el.attrs


def button_label(el: Element) -> str:
    text = el.inner_text()
    if not text and el.tag == "input":
        text = normalize_text(el.value)
    return text


def button_text(el: Element) -> str:
    return button_label(el).lower()


def link_text(el: Element) -> str:
    return el.inner_text().lower()


def _lower_attr(el: Element, name: str) -> str:
    return normalize_text(el.attrs.get(name, "")).lower()


def _first_visible(candidates: Iterable[Element], scope: Scope, predicate: Callable[[Element], bool]) -> Element | None:
    viewport = scope.viewport
    for el in candidates:
        if predicate(el) and is_visible(el, viewport):
            return el
    return None


def _prefix_then_substring(
    candidates: Iterable[Element],
    scope: Scope,
    text_of: Callable[[Element], str],
    needle: str,
) -> Element | None:
    viewport = scope.viewport
    labelled = [(el, text_of(el)) for el in candidates if is_visible(el, viewport)]
    for el, text in labelled:
        if text and text.startswith(needle):
            return el
    for el, text in labelled:
        if needle in text:
            return el
    return None


def _label_target(label: Element, scope: Scope) -> Element | None:
    target_id = label.attrs.get("for")
    if target_id:
        for el in scope.elements():
            if el.id == target_id and is_text_field(el):
                return el
        return None
    for el in label.iter():
        if is_text_field(el):
            return el
    return None


def _query(scope: Scope, selector: str | None) -> list[Element]:
    if not selector or not selector.strip():
        return []
    return scope.query_all(selector)


# ─────────────────────────────────────────────────────────────────────────────
# Dispatcher
# ─────────────────────────────────────────────────────────────────────────────


def match_strategy(kind: StrategyKind, descriptor: TargetDescriptor, scope: Scope) -> Element | None:
    needle = normalize_text(descriptor.text).lower()

    if kind is StrategyKind.SELECTOR:
        return _first_visible(_query(scope, descriptor.selector), scope, lambda _el: True)
    if kind is StrategyKind.FIRST_TEXT_INPUT:
        return _first_visible(scope.elements(), scope, is_text_field)

    # Everything below matches on text.
    if not needle:
        return None

    if kind is StrategyKind.EXACT_BUTTON:
        return _first_visible(scope.elements(), scope, lambda el: is_button(el) and button_text(el) == needle)
    if kind is StrategyKind.EXACT_LINK:
        return _first_visible(scope.elements(), scope, lambda el: is_link(el) and link_text(el) == needle)
    if kind is StrategyKind.PARTIAL_BUTTON:
        return _prefix_then_substring((el for el in scope.elements() if is_button(el)), scope, button_text, needle)
    if kind is StrategyKind.PARTIAL_LINK:
        return _prefix_then_substring((el for el in scope.elements() if is_link(el)), scope, link_text, needle)
    if kind is StrategyKind.ARIA_LABEL:
        return _first_visible(scope.elements(), scope, lambda el: needle in _lower_attr(el, "aria-label"))
    if kind is StrategyKind.VALUE_ATTRIBUTE:
        return _first_visible(
            scope.elements(),
            scope,
            lambda el: ("value" in el.attrs or "value" in el.props) and needle in normalize_text(el.value).lower(),
        )
    if kind is StrategyKind.PARTIAL_ANY:
        return _prefix_then_substring(scope.elements(), scope, lambda el: el.own_text().lower(), needle)
    if kind is StrategyKind.PLACEHOLDER:
        return _first_visible(
            scope.elements(), scope, lambda el: is_text_field(el) and needle in _lower_attr(el, "placeholder")
        )
    if kind is StrategyKind.LABEL_FOR:
        viewport = scope.viewport
        for label in scope.elements():
            if label.tag != "label" or needle not in label.inner_text().lower():
                continue
            target = _label_target(label, scope)
            if target is not None and is_visible(target, viewport):
                return target
        return None
    if kind is StrategyKind.FIELD_ARIA_LABEL:
        return _first_visible(
            scope.elements(), scope, lambda el: is_text_field(el) and needle in _lower_attr(el, "aria-label")
        )
    raise AssertionError(f"Unhandled strategy kind: {kind!r}")
