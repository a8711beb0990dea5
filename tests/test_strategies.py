from __future__ import annotations

from mcp_servers.target_engine.dom import Rect, h, page, root_scope
from mcp_servers.target_engine.strategies import (
    CLICK_CHAIN,
    RETRY_KINDS,
    TYPE_CHAIN,
    StrategyKind,
    chain_for,
    match_strategy,
    retry_chain,
)
from mcp_servers.target_engine.types import ActionKind, TargetDescriptor


def _click(text: str | None = None, selector: str | None = None) -> TargetDescriptor:
    return TargetDescriptor(ActionKind.CLICK, text=text, selector=selector)


def _type(text: str | None = None, selector: str | None = None) -> TargetDescriptor:
    return TargetDescriptor(ActionKind.TYPE, text=text, selector=selector, value="x")


def test_chains_are_ordered_by_descending_confidence() -> None:
    for chain in (CLICK_CHAIN, TYPE_CHAIN):
        confidences = [spec.confidence for spec in chain]
        assert confidences == sorted(confidences, reverse=True)
    assert [s.name for s in CLICK_CHAIN][:2] == ["exact_button", "exact_link"]
    assert CLICK_CHAIN[0].confidence == 1.0
    assert [s.name for s in TYPE_CHAIN] == ["placeholder", "label_for", "aria_label", "selector", "first_text_input"]


def test_chain_names_and_confidences() -> None:
    assert [(s.name, s.confidence) for s in CLICK_CHAIN] == [
        ("exact_button", 1.00),
        ("exact_link", 0.95),
        ("partial_button", 0.70),
        ("partial_link", 0.65),
        ("aria_label", 0.60),
        ("value_attribute", 0.50),
        ("partial_any", 0.40),
        ("selector", 0.30),
    ]
    assert [s.confidence for s in TYPE_CHAIN] == [0.90, 0.80, 0.60, 0.40, 0.30]


def test_chain_for_picks_type_chain_only_for_type() -> None:
    assert chain_for(ActionKind.TYPE) is TYPE_CHAIN
    assert chain_for(ActionKind.CLICK) is CLICK_CHAIN
    assert chain_for(ActionKind.HIGHLIGHT) is CLICK_CHAIN


def test_retry_chain_keeps_only_partial_strategies() -> None:
    kinds = [s.kind for s in retry_chain(CLICK_CHAIN)]
    assert kinds == [StrategyKind.PARTIAL_BUTTON, StrategyKind.PARTIAL_LINK, StrategyKind.PARTIAL_ANY]
    assert all(s.kind in RETRY_KINDS for s in retry_chain(TYPE_CHAIN))


def test_exact_button_is_case_insensitive_and_whitespace_normalized() -> None:
    btn = h("button", "  Submit   Order ")
    scope = root_scope(page(btn))
    assert match_strategy(StrategyKind.EXACT_BUTTON, _click("submit order"), scope) is btn
    assert match_strategy(StrategyKind.EXACT_BUTTON, _click("Submit"), scope) is None


def test_input_submit_uses_value_as_label() -> None:
    btn = h("input", type="submit", value="Send")
    scope = root_scope(page(btn))
    assert match_strategy(StrategyKind.EXACT_BUTTON, _click("send"), scope) is btn


def test_partial_button_prefers_prefix_over_substring() -> None:
    inner = h("button", "Resubmit form")
    prefix = h("button", "Submit now")
    scope = root_scope(page(inner, prefix))
    assert match_strategy(StrategyKind.PARTIAL_BUTTON, _click("subm"), scope) is prefix
    assert match_strategy(StrategyKind.PARTIAL_BUTTON, _click("form"), scope) is inner


def test_links_match_anchor_and_role_link() -> None:
    anchor = h("a", "Pricing", href="/pricing")
    role_link = h("span", "Docs home", role="link")
    scope = root_scope(page(anchor, role_link))
    assert match_strategy(StrategyKind.EXACT_LINK, _click("pricing"), scope) is anchor
    assert match_strategy(StrategyKind.PARTIAL_LINK, _click("docs"), scope) is role_link


def test_aria_label_and_value_attribute() -> None:
    icon = h("div", aria_label="Close dialog", role="img")
    field = h("input", type="text", value="Berlin")
    scope = root_scope(page(icon, field))
    assert match_strategy(StrategyKind.ARIA_LABEL, _click("close"), scope) is icon
    assert match_strategy(StrategyKind.VALUE_ATTRIBUTE, _click("berl"), scope) is field


def test_partial_any_matches_own_text_of_any_element() -> None:
    div = h("div", "Accept all cookies")
    scope = root_scope(page(h("p", "Intro"), div))
    assert match_strategy(StrategyKind.PARTIAL_ANY, _click("cookies"), scope) is div


def test_invisible_candidates_are_skipped() -> None:
    hidden = h("button", "Go", style={"display": "none"})
    offscreen = h("button", "Go", rect=Rect(0, 5000, 80, 20))
    visible = h("button", "Go")
    scope = root_scope(page(hidden, offscreen, visible))
    assert match_strategy(StrategyKind.EXACT_BUTTON, _click("go"), scope) is visible


def test_disabled_nodes_are_still_returned() -> None:
    btn = h("button", "Pay", disabled=True)
    scope = root_scope(page(btn))
    assert match_strategy(StrategyKind.EXACT_BUTTON, _click("pay"), scope) is btn


def test_selector_strategy() -> None:
    btn = h("button", "Ok", id="confirm")
    second = h("button", "Cancel")
    scope = root_scope(page(btn, second))
    assert match_strategy(StrategyKind.SELECTOR, _click(selector="#confirm"), scope) is btn
    assert match_strategy(StrategyKind.SELECTOR, _click(selector="button:nth-child(2)"), scope) is second
    assert match_strategy(StrategyKind.SELECTOR, _click(selector="a + b"), scope) is None
    assert match_strategy(StrategyKind.SELECTOR, _click(text="ok"), scope) is None


def test_text_strategies_need_text() -> None:
    scope = root_scope(page(h("button", "Ok")))
    assert match_strategy(StrategyKind.PARTIAL_ANY, _click(selector="button"), scope) is None


def test_type_placeholder_label_and_aria() -> None:
    email = h("input", type="email", placeholder="Email Address")
    named = h("input", type="text", id="city")
    label = h("label", "City", for_="city")
    wrapped_input = h("textarea")
    wrapping_label = h("label", "Comments", wrapped_input)
    aria = h("input", type="search", aria_label="Search catalog")
    scope = root_scope(page(email, label, named, wrapping_label, aria))

    assert match_strategy(StrategyKind.PLACEHOLDER, _type("email address"), scope) is email
    assert match_strategy(StrategyKind.LABEL_FOR, _type("city"), scope) is named
    assert match_strategy(StrategyKind.LABEL_FOR, _type("comments"), scope) is wrapped_input
    assert match_strategy(StrategyKind.FIELD_ARIA_LABEL, _type("catalog"), scope) is aria


def test_first_text_input_skips_non_text_fields() -> None:
    checkbox = h("input", type="checkbox")
    text = h("input")
    scope = root_scope(page(checkbox, text))
    assert match_strategy(StrategyKind.FIRST_TEXT_INPUT, _type("anything"), scope) is text
