from __future__ import annotations

import pytest
from lxml.cssselect import SelectorError

from mcp_servers.target_engine.base import DescriptorError
from mcp_servers.target_engine.dom import compile_selector, h, iframe, page, root_scope, shadow_scope
from mcp_servers.target_engine.types import ActionKind, TargetDescriptor


def test_query_all_matches_in_document_order() -> None:
    first = h("a", "Docs", href="/docs", class_="nav primary")
    second = h("a", "Blog", href="https://blog.example", class_="nav")
    form = h("form", h("input", name="email", id="email"), id="signup")
    scope = root_scope(page(first, second, form))

    assert scope.query_all("a.nav") == [first, second]
    assert scope.query_all("a.primary") == [first]
    assert scope.query_all("a[href^=https]") == [second]
    assert scope.query_all("#signup > input[name=email]") == form.children
    assert scope.query_all("body a:nth-child(2)") == [second]
    assert scope.query_all("a:hover") == []


def test_query_all_reflects_live_properties() -> None:
    field = h("input", type="text", props={"value": "hello"})
    btn = h("button", "Pay", props={"disabled": True})
    box = h("input", type="checkbox", props={"checked": True})
    scope = root_scope(page(field, btn, box))

    assert scope.query_all("input[value=hello]") == [field]
    assert scope.query_all("button:disabled") == [btn]
    assert scope.query_all(":checked") == [box]


def test_query_all_stays_inside_its_scope() -> None:
    inner = h("button", "Buy")
    host = h("shop-cart", shadow=[inner])
    framed = h("button", "Pay")
    doc = page(host, iframe(page(framed)))
    root = root_scope(doc)

    assert root.query_all("button") == []
    shadow = shadow_scope(root, host, 0)
    assert shadow.query_all("button") == [inner]
    assert shadow.query_all("*") == [inner]


def test_compile_selector_rejects_invalid_input() -> None:
    for bad in ("", "div >", "a:frobnicate", "[unterminated"):
        with pytest.raises(SelectorError):
            compile_selector(bad)


def test_invalid_selector_fails_descriptor_validation() -> None:
    with pytest.raises(DescriptorError) as excinfo:
        TargetDescriptor(ActionKind.CLICK, selector="button:frobnicate").validate()
    assert excinfo.value.details == {"selector": "button:frobnicate"}
    TargetDescriptor(ActionKind.CLICK, selector="li:nth-child(odd) > a").validate()
