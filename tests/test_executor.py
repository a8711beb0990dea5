from __future__ import annotations

import pytest

from mcp_servers.target_engine import executor as executor_mod
from mcp_servers.target_engine.backends.memory import MemoryBackend
from mcp_servers.target_engine.base import (
    ERR_DISABLED,
    ERR_INACCESSIBLE,
    ERR_NOT_FOUND,
    ERR_NOT_INTERACTABLE,
    ERR_STOPPED,
    DescriptorError,
)
from mcp_servers.target_engine.config import EngineConfig
from mcp_servers.target_engine.dom import Rect, h, iframe, page
from mcp_servers.target_engine.executor import ActionExecutor
from mcp_servers.target_engine.safety import SafetyRegistry
from mcp_servers.target_engine.strategies import StrategyKind
from mcp_servers.target_engine.types import ActionKind, Direction, ResolutionFailure, ResolutionResult, TargetDescriptor


@pytest.fixture()
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    calls: list[float] = []
    monkeypatch.setattr(executor_mod.time, "sleep", lambda s: calls.append(s))
    return calls


def _executor(doc, **config) -> tuple[ActionExecutor, MemoryBackend, SafetyRegistry]:  # noqa: ANN001
    backend = MemoryBackend(doc)
    registry = SafetyRegistry()
    return ActionExecutor(backend, registry, EngineConfig(**config)), backend, registry


def test_click_exact_button_shows_and_removes_overlay(sleeps: list[float]) -> None:
    btn = h("button", "Submit")
    seen_overlays: list[int] = []
    btn.props["onclick"] = lambda _node: seen_overlays.append(len(doc.overlays))
    doc = page(btn)
    executor, backend, _ = _executor(doc)

    result = executor.execute(TargetDescriptor(ActionKind.CLICK, text="Submit"))

    assert result.success is True
    assert result.strategy == "exact_button"
    assert result.confidence == 1.0
    assert btn.events == ["click"]
    # Overlay is gone before the click is dispatched.
    assert seen_overlays == [0]
    assert doc.overlays == []
    assert sleeps == [0.3, 0.3]


def test_click_partial_match_reports_lower_confidence(sleeps: list[float]) -> None:
    executor, _, _ = _executor(page(h("button", "Submit")))
    result = executor.execute(TargetDescriptor(ActionKind.CLICK, text="Subm"))
    assert result.success is True
    assert result.strategy == "partial_button"
    assert result.confidence == pytest.approx(0.70)


def test_click_without_overlays_does_not_sleep(sleeps: list[float]) -> None:
    btn = h("button", "Ok")
    executor, _, _ = _executor(page(btn), overlays=False)
    assert executor.execute(TargetDescriptor(ActionKind.CLICK, text="ok")).success
    assert sleeps == []
    assert btn.events == ["click"]


def test_type_into_placeholder_field(sleeps: list[float]) -> None:
    field = h("input", type="email", placeholder="Email Address")
    doc = page(field)
    executor, _, _ = _executor(doc)

    result = executor.execute(
        TargetDescriptor(ActionKind.TYPE, text="Email", value="a@b.com")
    )

    assert result.success is True
    assert result.strategy == "placeholder"
    assert result.confidence == pytest.approx(0.90)
    assert field.value == "a@b.com"
    assert field.events == ["focus", "input", "change"]
    assert "outline" not in field.style
    assert doc.overlays == []


def test_stopped_registry_short_circuits_before_resolution(sleeps: list[float]) -> None:
    btn = h("button", "Submit")
    backend = MemoryBackend(page(btn))
    registry = SafetyRegistry()
    calls: list[StrategyKind] = []

    def spy(kind, descriptor, scope):  # noqa: ANN001, ARG001
        calls.append(kind)
        return None

    executor = ActionExecutor(backend, registry, EngineConfig(), matcher=spy)
    registry.activate()

    for kind in (ActionKind.CLICK, ActionKind.SCROLL, ActionKind.SCRAPE):
        result = executor.execute(TargetDescriptor(kind, text="Submit"))
        assert result.success is False
        assert result.error == ERR_STOPPED
    assert calls == []
    assert backend.snapshots == 0
    assert btn.events == []


def test_descriptor_validation_fails_fast(sleeps: list[float]) -> None:
    executor, backend, _ = _executor(page())
    with pytest.raises(DescriptorError):
        executor.execute(TargetDescriptor(ActionKind.CLICK))
    with pytest.raises(DescriptorError):
        executor.execute(TargetDescriptor(ActionKind.TYPE, text="  ", value="x"))
    assert backend.snapshots == 0


def test_disabled_target_is_found_but_unusable(sleeps: list[float]) -> None:
    btn = h("button", "Pay", disabled=True)
    executor, _, _ = _executor(page(btn))
    result = executor.execute(TargetDescriptor(ActionKind.CLICK, text="Pay"))
    assert result.success is False
    assert result.error == ERR_DISABLED
    assert result.strategy == "exact_button"
    assert btn.events == []


def test_not_interactable_when_node_is_off_screen(sleeps: list[float]) -> None:
    far = h("button", "Far", rect=Rect(0, 9000, 100, 20))
    backend = MemoryBackend(page(far))
    executor = ActionExecutor(
        backend,
        SafetyRegistry(),
        EngineConfig(),
        matcher=lambda kind, descriptor, scope: far if kind is StrategyKind.EXACT_BUTTON else None,
    )
    result = executor.execute(TargetDescriptor(ActionKind.CLICK, text="Far"))
    assert result.error == ERR_NOT_INTERACTABLE
    assert far.events == []


def test_not_found_lists_attempted_strategies(sleeps: list[float]) -> None:
    executor, _, _ = _executor(page(h("p", "text")))
    result = executor.execute(TargetDescriptor(ActionKind.CLICK, text="Missing"))
    assert result.success is False
    assert result.error == ERR_NOT_FOUND
    assert result.attempted and result.attempted[0] == "exact_button"


def test_page_handler_failure_is_reported_not_raised(sleeps: list[float]) -> None:
    def boom(_node):  # noqa: ANN001
        raise RuntimeError("handler exploded")

    executor, _, _ = _executor(page(h("button", "Go", props={"onclick": boom})))
    result = executor.execute(TargetDescriptor(ActionKind.CLICK, text="Go"))
    assert result.success is False
    assert result.error == "execution failed: handler exploded"


def test_highlight_applies_and_restores_outline(sleeps: list[float]) -> None:
    btn = h("button", "Docs", style={"outline": "none"})
    doc = page(btn)
    executor, _, _ = _executor(doc)
    result = executor.execute(TargetDescriptor(ActionKind.HIGHLIGHT, text="Docs"))
    assert result.success is True
    assert btn.style["outline"] == "none"
    assert btn.events == []
    assert sleeps == [0.9]


def test_scrape_page_and_target(sleeps: list[float]) -> None:
    doc = page(h("h1", "Welcome"), h("script", "var x = 1"), h("button", "Start trial"))
    executor, _, _ = _executor(doc)

    whole = executor.execute(TargetDescriptor(ActionKind.SCRAPE))
    assert whole.data == "Welcome Start trial"

    one = executor.execute(TargetDescriptor(ActionKind.SCRAPE, text="start"))
    assert one.success is True
    assert one.data == "Start trial"


def test_scroll_directions(sleeps: list[float]) -> None:
    executor, backend, _ = _executor(page(), scroll_step=500)
    down = executor.execute(TargetDescriptor(ActionKind.SCROLL))
    up = executor.execute(TargetDescriptor(ActionKind.SCROLL, direction=Direction.UP))
    assert down.data == {"direction": "DOWN", "deltaY": 500}
    assert up.data == {"direction": "UP", "deltaY": -500}
    assert backend.scrolls == [500, -500]


def test_wait_sleeps_in_slices(sleeps: list[float]) -> None:
    executor, _, _ = _executor(page(), poll_interval=0.1)
    result = executor.execute(TargetDescriptor(ActionKind.WAIT, duration_ms=250))
    assert result.success is True
    assert result.data == {"waitedMs": 250}
    assert sum(sleeps) == pytest.approx(0.25)
    assert max(sleeps) <= 0.1 + 1e-9


def test_wait_is_interrupted_by_stop(monkeypatch: pytest.MonkeyPatch) -> None:
    executor, _, registry = _executor(page(), poll_interval=0.1)
    slices: list[float] = []

    def fake_sleep(seconds: float) -> None:
        slices.append(seconds)
        if len(slices) == 2:
            registry.activate()

    monkeypatch.setattr(executor_mod.time, "sleep", fake_sleep)
    result = executor.execute(TargetDescriptor(ActionKind.WAIT, duration_ms=5000))
    assert result.error == ERR_STOPPED
    assert len(slices) == 2


def test_finish_marks_result_finished(sleeps: list[float]) -> None:
    executor, _, _ = _executor(page())
    result = executor.execute(TargetDescriptor(ActionKind.FINISH))
    assert result.success is True
    assert result.finished is True


def test_summarize_root_and_pinned_scope(sleeps: list[float]) -> None:
    doc = page(h("h1", "Store"), iframe(page(h("button", "Checkout"), title="cart")), title="Shop")
    executor, _, _ = _executor(doc)

    root = executor.execute(TargetDescriptor(ActionKind.SUMMARIZE_SCOPE))
    assert root.data["title"] == "Shop"
    assert root.data["headings"] == ["Store"]
    assert root.scope_path == ["root"]

    framed = executor.execute(TargetDescriptor(ActionKind.SUMMARIZE_SCOPE), within=["root", "root>frame:0"])
    assert framed.data["title"] == "cart"
    assert framed.data["buttons"] == ["Checkout"]

    gone = executor.execute(TargetDescriptor(ActionKind.SUMMARIZE_SCOPE), within=["root", "root>frame:3"])
    assert gone.error == ERR_INACCESSIBLE


def test_wait_for_element_polls_until_present(sleeps: list[float]) -> None:
    doc = page()
    executor, backend, _ = _executor(doc, poll_interval=0.1)
    original = backend.snapshot

    def snapshot():
        if backend.snapshots == 2:
            doc.body().append(h("button", "Late"))
        return original()

    backend.snapshot = snapshot  # type: ignore[method-assign]
    found = executor.wait_for_element(TargetDescriptor(ActionKind.CLICK, text="Late"), timeout=1.0)
    assert isinstance(found, ResolutionResult)
    assert found.strategy == "exact_button"
    assert backend.scrolls == []


def test_wait_for_element_times_out(sleeps: list[float]) -> None:
    executor, _, _ = _executor(page(), poll_interval=0.1)
    missing = executor.wait_for_element(TargetDescriptor(ActionKind.CLICK, text="Nope"), timeout=0.2)
    assert isinstance(missing, ResolutionFailure)
    assert missing.error == ERR_NOT_FOUND
    assert len(sleeps) == 2


def test_wait_for_enabled_returns_once_the_target_is_enabled(sleeps: list[float]) -> None:
    btn = h("button", "Pay", disabled=True)
    executor, backend, _ = _executor(page(btn), poll_interval=0.1)
    original = backend.snapshot

    def snapshot():
        if backend.snapshots == 3:
            del btn.attrs["disabled"]
        return original()

    backend.snapshot = snapshot  # type: ignore[method-assign]
    ready = executor.wait_for_enabled(TargetDescriptor(ActionKind.CLICK, text="Pay"), timeout=1.0)
    assert isinstance(ready, ResolutionResult)
    assert ready.node is btn
    assert len(sleeps) == 3


def test_wait_for_enabled_reports_disabled_or_missing_on_timeout(sleeps: list[float]) -> None:
    executor, _, _ = _executor(page(h("button", "Pay", aria_disabled="true")), poll_interval=0.1)
    stuck = executor.wait_for_enabled(TargetDescriptor(ActionKind.CLICK, text="Pay"), timeout=0.2)
    assert isinstance(stuck, ResolutionFailure)
    assert stuck.error == ERR_DISABLED
    assert stuck.attempted == ["exact_button"]
    assert len(sleeps) == 2

    missing = executor.wait_for_enabled(TargetDescriptor(ActionKind.CLICK, text="Gone"), timeout=0.0)
    assert isinstance(missing, ResolutionFailure)
    assert missing.error == ERR_NOT_FOUND


def test_wait_for_enabled_observes_stop_between_polls(monkeypatch: pytest.MonkeyPatch) -> None:
    executor, backend, registry = _executor(page(h("button", "Pay", disabled=True)), poll_interval=0.1)
    monkeypatch.setattr(executor_mod.time, "sleep", lambda _s: registry.activate())

    stopped = executor.wait_for_enabled(TargetDescriptor(ActionKind.CLICK, text="Pay"), timeout=5.0)
    assert isinstance(stopped, ResolutionFailure)
    assert stopped.error == ERR_STOPPED
    assert backend.snapshots == 1
