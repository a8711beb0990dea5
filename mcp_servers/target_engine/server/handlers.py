"""
Tool handlers.

Each handler has the signature ``handler(ctx, arguments) -> ToolResult``.
Malformed arguments raise `DescriptorError`; the server turns it into an error result.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..base import DescriptorError
from ..parser import descriptor_from_message, parse_action_response
from ..safety import StopTrigger
from ..sequence import DEFAULT_MAX_STEPS
from ..summarizer import ScopeSummary, format_summary
from ..types import ActionKind, ActionResult, ResolutionFailure, TargetDescriptor
from .types import ToolResult

if TYPE_CHECKING:
    from ..context import EngineContext

Handler = Callable[["EngineContext", dict[str, Any]], ToolResult]


def _within(arguments: dict[str, Any]) -> list[str] | None:
    raw = arguments.get("within")
    if raw is None:
        return None
    if not isinstance(raw, list) or not all(isinstance(part, str) for part in raw):
        raise DescriptorError(
            tool="act",
            action="validate",
            reason="within must be a list of scope ids",
            suggestion="Pass the scopePath returned by a previous call",
        )
    return raw or None


def _timeout_seconds(raw: Any, name: str = "waitTimeoutMs") -> float | None:
    if raw is None:
        return None
    try:
        return max(0.0, float(raw) / 1000.0)
    except (TypeError, ValueError):
        raise DescriptorError(
            tool="act",
            action="validate",
            reason=f"Invalid {name}: {raw!r}",
            suggestion="Pass a number of milliseconds",
        ) from None


def handle_act(ctx: EngineContext, arguments: dict[str, Any]) -> ToolResult:
    descriptor = descriptor_from_message(arguments)
    within = _within(arguments)
    executor = ctx.executor

    timeout = _timeout_seconds(arguments.get("waitTimeoutMs"))
    if timeout is not None and descriptor.has_target:
        found = executor.wait_for_element(descriptor, timeout, within=within)
        if isinstance(found, ResolutionFailure):
            result = ActionResult.fail(found.error, attempted=found.attempted or None)
            return ToolResult.json(result.to_dict())
        # Pin the follow-up to the scope where the target appeared.
        within = found.scope_path or within

    enabled_timeout = _timeout_seconds(arguments.get("waitForEnabledMs"), "waitForEnabledMs")
    if enabled_timeout is not None and descriptor.has_target:
        ready = executor.wait_for_enabled(descriptor, enabled_timeout, within=within)
        if isinstance(ready, ResolutionFailure):
            result = ActionResult.fail(ready.error, attempted=ready.attempted or None)
            return ToolResult.json(result.to_dict())
        within = ready.scope_path or within

    result = executor.execute(descriptor, within=within)
    return ToolResult.json(result.to_dict())


def handle_summarize(ctx: EngineContext, arguments: dict[str, Any]) -> ToolResult:
    result = ctx.executor.execute(TargetDescriptor(ActionKind.SUMMARIZE_SCOPE), within=_within(arguments))
    if not result.success:
        return ToolResult.json(result.to_dict())
    text = format_summary(ScopeSummary.from_dict(result.data or {}))
    return ToolResult.text(text, data=result.to_dict())


def _steps(arguments: dict[str, Any]) -> list[TargetDescriptor]:
    script = arguments.get("script")
    if isinstance(script, str) and script.strip():
        steps = []
        for block in script.strip().split("\n\n"):
            if not block.strip():
                continue
            parsed = parse_action_response(block)
            if not parsed.ok or parsed.descriptor is None:
                raise DescriptorError(
                    tool="run",
                    action="parse",
                    reason=f"Could not parse step {len(steps) + 1}",
                    suggestion="Each block needs an ACTION: line",
                    details={"block": block.strip()[:200]},
                )
            steps.append(parsed.descriptor)
        return steps

    raw = arguments.get("steps")
    if not isinstance(raw, list) or not raw:
        raise DescriptorError(
            tool="run",
            action="validate",
            reason="steps must be a non-empty list",
            suggestion='Pass steps=[{"actionKind": "CLICK", "text": "..."}] or a script',
        )
    return [descriptor_from_message(step) for step in raw]


def handle_run(ctx: EngineContext, arguments: dict[str, Any]) -> ToolResult:
    steps = _steps(arguments)
    try:
        max_steps = int(arguments.get("maxSteps") or DEFAULT_MAX_STEPS)
    except (TypeError, ValueError):
        max_steps = DEFAULT_MAX_STEPS
    max_steps = max(1, min(max_steps, DEFAULT_MAX_STEPS))

    runner = ctx.runner(max_steps=max_steps, stop_on_failure=bool(arguments.get("stopOnFailure", True)))
    outcome = runner.run(steps)
    return ToolResult.json(outcome.to_dict())


def _history_limit(raw: Any) -> int | None:
    if raw is None:
        return None
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        limit = 0
    if isinstance(raw, bool) or limit < 1:
        raise DescriptorError(
            tool="emergency_stop",
            action="history",
            reason=f"limit must be a positive integer, got {raw!r}",
            suggestion="Omit limit for the full history or pass 1 or more",
        )
    return limit


def handle_emergency_stop(ctx: EngineContext, arguments: dict[str, Any]) -> ToolResult:
    action = str(arguments.get("action") or "status").strip().lower()
    safety = ctx.safety

    if action == "activate":
        event = safety.activate(StopTrigger.PROGRAMMATIC)
        return ToolResult.json(
            {"activated": event is not None, "event": event.to_dict() if event else None, **safety.status()}
        )
    if action == "deactivate":
        return ToolResult.json({"deactivated": safety.deactivate(), **safety.status()})
    if action == "status":
        return ToolResult.json(safety.status())
    if action == "history":
        events = safety.history(_history_limit(arguments.get("limit")))
        return ToolResult.json({"events": [e.to_dict() for e in events]})
    if action == "clear_history":
        safety.clear_history()
        return ToolResult.json({"cleared": True})

    raise DescriptorError(
        tool="emergency_stop",
        action=action,
        reason=f"Unknown action: {action!r}",
        suggestion="Use activate, deactivate, status, history or clear_history",
    )


HANDLERS: dict[str, Handler] = {
    "act": handle_act,
    "summarize": handle_summarize,
    "run": handle_run,
    "emergency_stop": handle_emergency_stop,
}
