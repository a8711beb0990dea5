"""Structural summarizer: a bounded, document-ordered digest of one scope."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .dom import Element, Scope, normalize_text
from .strategies import BUTTON_INPUT_TYPES, button_label, is_button, is_link
from .visibility import is_displayed

MAX_HEADINGS = 10
MAX_BUTTONS = 15
MAX_LINKS = 15
MAX_INPUTS = 10
MAX_LABEL_CHARS = 50
MAX_TEXT_CHARS = 2000

HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})
_NON_FIELD_INPUTS = BUTTON_INPUT_TYPES | {"hidden", "image"}


@dataclass(slots=True)
class ScopeSummary:
    title: str = ""
    headings: list[str] = field(default_factory=list)
    buttons: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    inputs: list[str] = field(default_factory=list)
    visible_text: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "headings": list(self.headings),
            "buttons": list(self.buttons),
            "links": list(self.links),
            "inputs": list(self.inputs),
            "visibleText": self.visible_text,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScopeSummary:
        return cls(
            title=str(data.get("title") or ""),
            headings=list(data.get("headings") or []),
            buttons=list(data.get("buttons") or []),
            links=list(data.get("links") or []),
            inputs=list(data.get("inputs") or []),
            visible_text=str(data.get("visibleText") or ""),
        )


def _is_field(el: Element) -> bool:
    if el.tag in {"textarea", "select"}:
        return True
    return el.tag == "input" and el.input_type not in _NON_FIELD_INPUTS


def describe_input(el: Element) -> str:
    for name in ("placeholder", "aria-label", "name"):
        label = normalize_text(el.attrs.get(name))
        if label:
            return label
    return "input"


def summarize_scope(scope: Scope) -> ScopeSummary:
    summary = ScopeSummary(title=normalize_text(scope.title))
    for el in scope.elements():
        if not is_displayed(el):
            continue
        if el.tag in HEADING_TAGS:
            if len(summary.headings) < MAX_HEADINGS:
                text = el.inner_text()
                if text:
                    summary.headings.append(text)
        elif is_button(el):
            if len(summary.buttons) < MAX_BUTTONS:
                label = button_label(el) or normalize_text(el.attrs.get("aria-label"))
                if label:
                    summary.buttons.append(label[:MAX_LABEL_CHARS])
        elif is_link(el):
            if len(summary.links) < MAX_LINKS:
                label = el.inner_text() or normalize_text(el.attrs.get("aria-label"))
                if label:
                    summary.links.append(label[:MAX_LABEL_CHARS])
        elif _is_field(el):
            if len(summary.inputs) < MAX_INPUTS:
                summary.inputs.append(describe_input(el))
    summary.visible_text = scope.visible_text()[:MAX_TEXT_CHARS]
    return summary


def format_summary(summary: ScopeSummary) -> str:
    """Render the digest as the plain-text block handed to a language model."""
    return "\n".join(
        [
            f"Page: {summary.title or 'Unknown'}",
            "",
            f"Headings: {', '.join(summary.headings) or 'None'}",
            "",
            f"Available Buttons: {', '.join(summary.buttons) or 'None'}",
            "",
            f"Available Links: {', '.join(summary.links) or 'None'}",
            "",
            f"Input Fields: {', '.join(summary.inputs) or 'None'}",
            "",
            "Visible Text (preview):",
            summary.visible_text,
        ]
    ).strip()
