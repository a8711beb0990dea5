"""
Boundary traversal: run the strategy chain across the scope tree.

Scopes are visited breadth-first from the root (or from a pinned scope). Child
scopes come from shadow hosts and `iframe`/`frame` elements in document order.
The first scope whose chain yields a match at or above the confidence floor
wins. Frames that cannot be entered are skipped and counted.
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .base import ERR_INACCESSIBLE, ERR_NOT_FOUND, ERR_STOPPED
from .config import EngineConfig
from .dom import FRAME_TAGS, Document, Element, Scope, ScopeKind, frame_scope, root_scope, shadow_scope
from .strategies import StrategyKind, StrategySpec, chain_for, match_strategy, retry_chain
from .types import ResolutionFailure, ResolutionResult, TargetDescriptor

if TYPE_CHECKING:
    from .backends import PageBackend
    from .safety import SafetyRegistry

logger = logging.getLogger("mcp.target_engine.traversal")

Matcher = Callable[[StrategyKind, TargetDescriptor, Scope], "Element | None"]


@dataclass(slots=True)
class Accessible:
    scope: Scope


@dataclass(slots=True)
class Inaccessible:
    reason: str


FrameAccess = Accessible | Inaccessible


def poll_count(timeout: float, interval: float) -> int:
    """Number of poll intervals that fit in `timeout`."""
    return max(0, math.ceil(timeout / interval)) if interval > 0 else 0


def frame_access(parent: Scope, host: Element, ordinal: int) -> FrameAccess:
    content = host.frame
    if content is None or content.document is None:
        return Inaccessible("frame has no document")
    if content.cross_origin:
        return Inaccessible(f"cross-origin frame {content.origin or '(unknown origin)'}")
    return Accessible(frame_scope(parent, host, content.document, ordinal))


def child_scopes(scope: Scope) -> list[tuple[str, FrameAccess]]:
    """Direct child scopes of `scope`, keyed by scope id, in document order."""
    out: list[tuple[str, FrameAccess]] = []
    shadows = frames = 0
    for host in scope.boundaries():
        if host.shadow_root is not None:
            child = shadow_scope(scope, host, shadows)
            shadows += 1
            out.append((child.scope_id, Accessible(child)))
        if host.tag in FRAME_TAGS:
            out.append((f"{scope.scope_id}>frame:{frames}", frame_access(scope, host, frames)))
            frames += 1
    return out


def locate_scope(document: Document, scope_path: Sequence[str]) -> FrameAccess:
    """Walk a previously reported scope path down from the root."""
    if not scope_path or scope_path[0] != "root":
        return Inaccessible(f"unknown scope path {list(scope_path)!r}")
    current = root_scope(document)
    for scope_id in scope_path[1:]:
        access = dict(child_scopes(current)).get(scope_id)
        if access is None:
            return Inaccessible(f"scope {scope_id} is gone")
        if isinstance(access, Inaccessible):
            return access
        current = access.scope
    return Accessible(current)


def scroll_target(document: Document, within: Sequence[str] | None) -> tuple[Element | None, Document]:
    """Frame element whose document scrolls for a pinned scope (None: the top window), and that document."""
    if within:
        access = locate_scope(document, within)
        scope = access.scope if isinstance(access, Accessible) else None
        while scope is not None and scope.kind is not ScopeKind.FRAME:
            scope = scope.parent
        if scope is not None:
            return scope.host, scope.document
    return None, document


class BoundaryTraversal:
    def __init__(
        self,
        backend: PageBackend,
        config: EngineConfig | None = None,
        registry: SafetyRegistry | None = None,
        matcher: Matcher = match_strategy,
    ) -> None:
        self.backend = backend
        self.config = config or EngineConfig()
        self.registry = registry
        self.matcher = matcher

    def _stopped(self) -> bool:
        return self.registry is not None and self.registry.is_stopped

    def resolve(
        self,
        descriptor: TargetDescriptor,
        *,
        within: Sequence[str] | None = None,
        retry: bool = True,
    ) -> ResolutionResult | ResolutionFailure:
        """Resolve a descriptor to one node. Never raises for a missing target."""
        descriptor.validate()
        chain = chain_for(descriptor.action_kind)
        document = self.backend.snapshot()
        outcome = self._search(document, descriptor, chain, within)
        if isinstance(outcome, ResolutionResult) or not retry or outcome.error != ERR_NOT_FOUND:
            return outcome

        partial = retry_chain(chain)
        if not partial or not (descriptor.text or "").strip():
            return outcome
        if self._stopped():
            return ResolutionFailure(error=ERR_STOPPED, attempted=outcome.attempted)

        host, scrolled = scroll_target(document, within)
        top = scrolled.viewport.y
        logger.debug("scroll_and_retry delta=%s delay_ms=%s", self.config.retry_scroll, self.config.retry_delay_ms)
        self.backend.scroll_by(self.config.retry_scroll, smooth=False, frame=host)
        time.sleep(self.config.retry_delay_ms / 1000.0)

        document = self.backend.snapshot()
        retried = self._search(document, descriptor, partial, within)
        if isinstance(retried, ResolutionResult):
            return retried
        host, scrolled = scroll_target(document, within)
        moved = scrolled.viewport.y - top
        if moved:
            self.backend.scroll_by(-moved, smooth=False, frame=host)
        attempted = outcome.attempted + [f"retry:{name}" for name in retried.attempted]
        return ResolutionFailure(
            error=retried.error,
            attempted=attempted,
            skipped_boundaries=max(outcome.skipped_boundaries, retried.skipped_boundaries),
        )

    def _search(
        self,
        document: Document,
        descriptor: TargetDescriptor,
        chain: Sequence[StrategySpec],
        within: Sequence[str] | None,
    ) -> ResolutionResult | ResolutionFailure:
        if within:
            access = locate_scope(document, within)
            if isinstance(access, Inaccessible):
                logger.debug("pinned_scope_inaccessible path=%s reason=%s", list(within), access.reason)
                return ResolutionFailure(error=ERR_INACCESSIBLE)
            start = access.scope
        else:
            start = root_scope(document)

        attempted: list[str] = []
        skipped = 0
        queue = deque([start])
        while queue:
            scope = queue.popleft()
            hit = self._run_chain(scope, descriptor, chain, attempted)
            if hit is not None:
                return hit
            for scope_id, access in child_scopes(scope):
                if isinstance(access, Accessible):
                    queue.append(access.scope)
                else:
                    skipped += 1
                    logger.debug("boundary_skipped scope=%s reason=%s", scope_id, access.reason)
        return ResolutionFailure(error=ERR_NOT_FOUND, attempted=attempted, skipped_boundaries=skipped)

    def _run_chain(
        self,
        scope: Scope,
        descriptor: TargetDescriptor,
        chain: Sequence[StrategySpec],
        attempted: list[str],
    ) -> ResolutionResult | None:
        for spec in chain:
            if spec.confidence < self.config.min_confidence:
                continue
            if spec.name not in attempted:
                attempted.append(spec.name)
            node = self.matcher(spec.kind, descriptor, scope)
            if node is not None:
                logger.debug(
                    "resolved strategy=%s confidence=%.2f scope=%s node=%s",
                    spec.name,
                    spec.confidence,
                    scope.scope_id,
                    node.describe(),
                )
                return ResolutionResult(
                    node=node, strategy=spec.name, confidence=spec.confidence, scope_path=scope.path, scope=scope
                )
        return None

    def wait_for_frame(self, scope_path: Sequence[str], timeout: float | None = None) -> FrameAccess:
        """Poll until the frame at `scope_path` is accessible and finished loading."""
        timeout = self.config.frame_timeout if timeout is None else timeout
        polls = poll_count(timeout, self.config.poll_interval)
        last: FrameAccess = Inaccessible("frame not found")
        for attempt in range(polls + 1):
            if self._stopped():
                return Inaccessible(ERR_STOPPED)
            last = locate_scope(self.backend.snapshot(), scope_path)
            if isinstance(last, Accessible) and last.scope.document.ready_state == "complete":
                return last
            if attempt < polls:
                time.sleep(self.config.poll_interval)
        if isinstance(last, Accessible):
            return Inaccessible(f"frame still loading (readyState={last.scope.document.ready_state})")
        return last
