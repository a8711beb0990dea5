"""
Action executor.

Turns a descriptor into an effect on the page and an `ActionResult`:
- every action checks the stop flag first
- targeted actions resolve through `BoundaryTraversal`, then re-check the node
- effects that raise are reported as "execution failed: <message>"

Only malformed descriptors raise (`DescriptorError`).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING

from .backends import OverlayKind
from .base import (
    ERR_DISABLED,
    ERR_INACCESSIBLE,
    ERR_NOT_INTERACTABLE,
    ERR_STOPPED,
    execution_error,
)
from .config import EngineConfig
from .dom import Element, root_scope
from .strategies import match_strategy
from .summarizer import summarize_scope
from .traversal import BoundaryTraversal, Inaccessible, Matcher, locate_scope, poll_count
from .types import ActionKind, ActionResult, Direction, ResolutionFailure, ResolutionResult, TargetDescriptor
from .visibility import is_disabled, is_visible

if TYPE_CHECKING:
    from .backends import PageBackend
    from .safety import SafetyRegistry

logger = logging.getLogger("mcp.target_engine.executor")

CLICK_GROW_MS = 300
CLICK_FADE_MS = 300
OUTLINE_MS = 900


class ActionExecutor:
    def __init__(
        self,
        backend: PageBackend,
        registry: SafetyRegistry,
        config: EngineConfig | None = None,
        matcher: Matcher = match_strategy,
    ) -> None:
        self.backend = backend
        self.registry = registry
        self.config = config or EngineConfig()
        self.traversal = BoundaryTraversal(backend, self.config, registry, matcher)

    def execute(self, descriptor: TargetDescriptor, *, within: Sequence[str] | None = None) -> ActionResult:
        descriptor.validate()
        kind = descriptor.action_kind
        if self.registry.is_stopped:
            logger.info("action_refused kind=%s reason=stopped", kind.value)
            return ActionResult.fail(ERR_STOPPED)

        try:
            result = self._dispatch(descriptor, within)
        except Exception as exc:  # noqa: BLE001
            logger.error("action_failed kind=%s error=%s", kind.value, exc)
            result = ActionResult.fail(execution_error(exc))

        logger.info(
            "action kind=%s success=%s strategy=%s confidence=%s error=%s",
            kind.value,
            result.success,
            result.strategy,
            result.confidence,
            result.error,
        )
        return result

    def _dispatch(self, descriptor: TargetDescriptor, within: Sequence[str] | None) -> ActionResult:
        kind = descriptor.action_kind
        if kind is ActionKind.CLICK:
            return self._click(descriptor, within)
        if kind is ActionKind.TYPE:
            return self._type(descriptor, within)
        if kind is ActionKind.HIGHLIGHT:
            return self._highlight(descriptor, within)
        if kind is ActionKind.SCRAPE:
            return self._scrape(descriptor, within)
        if kind is ActionKind.SCROLL:
            return self._scroll(descriptor)
        if kind is ActionKind.WAIT:
            return self._wait(descriptor)
        if kind is ActionKind.SUMMARIZE_SCOPE:
            return self._summarize(within)
        if kind is ActionKind.FINISH:
            return ActionResult.ok(finished=True)
        raise AssertionError(f"Unhandled action kind: {kind!r}")

    # ─────────────────────────────────────────────────────────────────────────
    # Targeted actions
    # ─────────────────────────────────────────────────────────────────────────

    def _resolve(
        self, descriptor: TargetDescriptor, within: Sequence[str] | None
    ) -> ResolutionResult | ActionResult:
        resolution = self.traversal.resolve(descriptor, within=within)
        if isinstance(resolution, ResolutionFailure):
            logger.debug(
                "resolution_failed error=%s attempted=%s skipped=%d",
                resolution.error,
                resolution.attempted,
                resolution.skipped_boundaries,
            )
            return ActionResult.fail(resolution.error, attempted=resolution.attempted)
        return resolution

    def _unusable(self, resolution: ResolutionResult) -> ActionResult | None:
        node = resolution.node
        error: str | None = None
        if is_disabled(node):
            error = ERR_DISABLED
        elif resolution.scope is not None and not is_visible(node, resolution.scope.viewport):
            error = ERR_NOT_INTERACTABLE
        if error is None:
            return None
        return ActionResult.fail(
            error,
            strategy=resolution.strategy,
            confidence=resolution.confidence,
            scope_path=resolution.scope_path,
        )

    @staticmethod
    def _succeeded(resolution: ResolutionResult, **kwargs) -> ActionResult:  # noqa: ANN003
        return ActionResult.ok(
            strategy=resolution.strategy,
            confidence=resolution.confidence,
            scope_path=resolution.scope_path,
            **kwargs,
        )

    def _click(self, descriptor: TargetDescriptor, within: Sequence[str] | None) -> ActionResult:
        resolution = self._resolve(descriptor, within)
        if isinstance(resolution, ActionResult):
            return resolution
        unusable = self._unusable(resolution)
        if unusable is not None:
            return unusable
        self._acknowledge(OverlayKind.CLICK, resolution.node, CLICK_GROW_MS, CLICK_FADE_MS)
        if self.registry.is_stopped:
            return ActionResult.fail(ERR_STOPPED)
        self.backend.click(resolution.node)
        return self._succeeded(resolution)

    def _type(self, descriptor: TargetDescriptor, within: Sequence[str] | None) -> ActionResult:
        resolution = self._resolve(descriptor, within)
        if isinstance(resolution, ActionResult):
            return resolution
        unusable = self._unusable(resolution)
        if unusable is not None:
            return unusable
        self._acknowledge(OverlayKind.OUTLINE, resolution.node, OUTLINE_MS)
        if self.registry.is_stopped:
            return ActionResult.fail(ERR_STOPPED)
        self.backend.set_value(resolution.node, descriptor.value or "")
        return self._succeeded(resolution)

    def _highlight(self, descriptor: TargetDescriptor, within: Sequence[str] | None) -> ActionResult:
        resolution = self._resolve(descriptor, within)
        if isinstance(resolution, ActionResult):
            return resolution
        self._acknowledge(OverlayKind.OUTLINE, resolution.node, OUTLINE_MS)
        return self._succeeded(resolution)

    def _scrape(self, descriptor: TargetDescriptor, within: Sequence[str] | None) -> ActionResult:
        if not descriptor.has_target:
            text = root_scope(self.backend.snapshot()).visible_text()
            return ActionResult.ok(data=text)
        resolution = self._resolve(descriptor, within)
        if isinstance(resolution, ActionResult):
            return resolution
        node = resolution.node
        return self._succeeded(resolution, data=node.inner_text() or node.value)

    def _acknowledge(self, kind: OverlayKind, node: Element, *phases_ms: int) -> None:
        """Show a transient overlay on `node`; it is always removed before returning."""
        if not self.config.overlays:
            return
        overlay_id = self.backend.add_overlay(kind, node)
        try:
            for ms in phases_ms:
                time.sleep(ms / 1000.0)
        finally:
            try:
                self.backend.remove_overlay(overlay_id)
            except Exception as exc:  # noqa: BLE001
                logger.warning("overlay_remove_failed id=%s error=%s", overlay_id, exc)

    # ─────────────────────────────────────────────────────────────────────────
    # Untargeted actions
    # ─────────────────────────────────────────────────────────────────────────

    def _scroll(self, descriptor: TargetDescriptor) -> ActionResult:
        direction = descriptor.direction or Direction.DOWN
        delta = self.config.scroll_step if direction is Direction.DOWN else -self.config.scroll_step
        self.backend.scroll_by(delta, smooth=True)
        return ActionResult.ok(data={"direction": direction.value, "deltaY": delta})

    def _wait(self, descriptor: TargetDescriptor) -> ActionResult:
        duration_ms = descriptor.duration_ms if descriptor.duration_ms is not None else self.config.wait_default_ms
        remaining = max(0, duration_ms) / 1000.0
        while remaining > 0:
            if self.registry.is_stopped:
                return ActionResult.fail(ERR_STOPPED)
            step = min(self.config.poll_interval, remaining)
            time.sleep(step)
            remaining -= step
        return ActionResult.ok(data={"waitedMs": duration_ms})

    def _summarize(self, within: Sequence[str] | None) -> ActionResult:
        document = self.backend.snapshot()
        if within:
            access = locate_scope(document, within)
            if isinstance(access, Inaccessible):
                return ActionResult.fail(ERR_INACCESSIBLE)
            scope = access.scope
        else:
            scope = root_scope(document)
        return ActionResult.ok(data=summarize_scope(scope).to_dict(), scope_path=scope.path)

    # ─────────────────────────────────────────────────────────────────────────
    # Polling
    # ─────────────────────────────────────────────────────────────────────────

    def wait_for_element(
        self,
        descriptor: TargetDescriptor,
        timeout: float | None = None,
        *,
        within: Sequence[str] | None = None,
    ) -> ResolutionResult | ResolutionFailure:
        """Poll resolution until the target appears, the timeout elapses or a stop is triggered."""
        descriptor.validate()
        timeout = self.config.element_timeout if timeout is None else timeout
        polls = poll_count(timeout, self.config.poll_interval)
        last = ResolutionFailure(error=ERR_STOPPED)
        for attempt in range(polls + 1):
            if self.registry.is_stopped:
                return ResolutionFailure(error=ERR_STOPPED, attempted=last.attempted)
            outcome = self.traversal.resolve(descriptor, within=within, retry=False)
            if isinstance(outcome, ResolutionResult):
                return outcome
            last = outcome
            if outcome.error == ERR_INACCESSIBLE:
                break
            if attempt < polls:
                time.sleep(self.config.poll_interval)
        return last

    def wait_for_enabled(
        self,
        descriptor: TargetDescriptor,
        timeout: float | None = None,
        *,
        within: Sequence[str] | None = None,
    ) -> ResolutionResult | ResolutionFailure:
        """Poll until the target resolves to a node that is not disabled.

        A target that never appears reports the resolution error; one that stays
        disabled reports `ERR_DISABLED`. The stop flag is checked before every poll.
        """
        descriptor.validate()
        timeout = self.config.enabled_timeout if timeout is None else timeout
        polls = poll_count(timeout, self.config.poll_interval)
        last = ResolutionFailure(error=ERR_STOPPED)
        for attempt in range(polls + 1):
            if self.registry.is_stopped:
                return ResolutionFailure(error=ERR_STOPPED, attempted=last.attempted)
            outcome = self.traversal.resolve(descriptor, within=within, retry=False)
            if isinstance(outcome, ResolutionResult):
                if not is_disabled(outcome.node):
                    return outcome
                last = ResolutionFailure(error=ERR_DISABLED, attempted=[outcome.strategy])
            else:
                last = outcome
                if outcome.error == ERR_INACCESSIBLE:
                    break
            if attempt < polls:
                time.sleep(self.config.poll_interval)
        logger.info("wait_for_enabled_gave_up error=%s timeout=%s", last.error, timeout)
        return last
