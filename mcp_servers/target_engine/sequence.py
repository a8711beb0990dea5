"""
Multi-step sequences.

`SequenceRunner` executes descriptors in order through an `ActionExecutor`,
registered with the safety registry for the whole run. `TaskMemory` keeps a short
history of what happened, rendered for a language-model prompt.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .base import ERR_STOPPED
from .parser import actions_equal
from .types import ActionKind, ActionResult, Direction, TargetDescriptor

if TYPE_CHECKING:
    from .executor import ActionExecutor
    from .safety import SafetyRegistry

logger = logging.getLogger("mcp.target_engine.sequence")

DEFAULT_MAX_STEPS = 20
STEP_DELAY_MS = 300
STUCK_REPEATS = 3


class StepOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class ActionRecord:
    descriptor: TargetDescriptor
    outcome: StepOutcome
    error: str | None = None
    timestamp: float = field(default_factory=time.time)


class TaskMemory:
    """Recent step history plus the click targets that succeeded or failed."""

    def __init__(self, max_history: int = 10) -> None:
        self._records: deque[ActionRecord] = deque(maxlen=max_history)
        self._clicked: set[str] = set()
        self._failed: set[str] = set()

    def record(self, descriptor: TargetDescriptor, outcome: StepOutcome, error: str | None = None) -> None:
        self._records.append(ActionRecord(descriptor, outcome, error))
        if descriptor.action_kind is ActionKind.CLICK and descriptor.text:
            key = descriptor.text.lower()
            if outcome is StepOutcome.SUCCESS:
                self._clicked.add(key)
            else:
                self._failed.add(key)

    def was_clicked(self, text: str) -> bool:
        return text.lower() in self._clicked

    def has_failed(self, text: str) -> bool:
        return text.lower() in self._failed

    @property
    def records(self) -> list[ActionRecord]:
        return list(self._records)

    @property
    def last(self) -> ActionRecord | None:
        return self._records[-1] if self._records else None

    def failed_count(self) -> int:
        return sum(1 for rec in self._records if rec.outcome is StepOutcome.FAILED)

    def clear(self) -> None:
        self._records.clear()
        self._clicked.clear()
        self._failed.clear()

    def to_prompt(self) -> str:
        if not self._records:
            return ""
        lines = []
        for i, rec in enumerate(self._records, start=1):
            action = rec.descriptor.action_kind.value
            if rec.descriptor.text:
                action += f' "{rec.descriptor.text}"'
            outcome = "ok" if rec.outcome is StepOutcome.SUCCESS else f"failed ({rec.error or rec.outcome.value})"
            lines.append(f"{i}. {action} -> {outcome}")
        return "Previous actions:\n" + "\n".join(lines)


@dataclass(slots=True)
class SequenceResult:
    success: bool
    message: str
    results: list[ActionResult] = field(default_factory=list)
    history: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "results": [r.to_dict() for r in self.results],
            "history": self.history,
        }


class SequenceRunner:
    def __init__(
        self,
        executor: ActionExecutor,
        registry: SafetyRegistry,
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
        step_delay_ms: int = STEP_DELAY_MS,
        stop_on_failure: bool = True,
        memory: TaskMemory | None = None,
    ) -> None:
        self.executor = executor
        self.registry = registry
        self.max_steps = max_steps
        self.step_delay_ms = step_delay_ms
        self.stop_on_failure = stop_on_failure
        self.memory = memory or TaskMemory()

    def run(self, descriptors: Iterable[TargetDescriptor]) -> SequenceResult:
        steps = list(descriptors)
        for step in steps:
            step.validate()
        self.memory.clear()
        results: list[ActionResult] = []

        with self.registry.guard("sequence") as cancelled:
            outcome = self._run_steps(steps, results, cancelled.is_set)

        outcome.history = self.memory.to_prompt()
        logger.info("sequence_done success=%s message=%s steps=%d", outcome.success, outcome.message, len(results))
        return outcome

    def _run_steps(
        self, steps: list[TargetDescriptor], results: list[ActionResult], cancelled: Callable[[], bool]
    ) -> SequenceResult:
        last: TargetDescriptor | None = None
        repeats = 0
        for index, step in enumerate(steps):
            if index >= self.max_steps:
                return SequenceResult(True, "Max steps reached", results)
            if cancelled():
                return SequenceResult(False, ERR_STOPPED, results)
            if index > 0 and self.step_delay_ms > 0:
                time.sleep(self.step_delay_ms / 1000.0)

            if last is not None and actions_equal(step, last):
                repeats += 1
            else:
                repeats = 1
            last = step

            if repeats >= STUCK_REPEATS:
                logger.warning("sequence_stuck step=%d action=%s", index + 1, step.action_kind.value)
                self.memory.record(step, StepOutcome.SKIPPED, f"Repeated {STUCK_REPEATS} times")
                for unstick in (
                    TargetDescriptor(ActionKind.SCROLL, direction=Direction.DOWN),
                    TargetDescriptor(ActionKind.WAIT),
                ):
                    results.append(self.executor.execute(unstick))
                repeats = 0
                continue

            if step.action_kind is ActionKind.CLICK and step.text and self.memory.has_failed(step.text):
                logger.info("sequence_skip_failed_target text=%r", step.text)
                self.memory.record(step, StepOutcome.SKIPPED, "Previously failed")
                continue

            result = self.executor.execute(step)
            results.append(result)
            if result.success:
                self.memory.record(step, StepOutcome.SUCCESS)
            else:
                self.memory.record(step, StepOutcome.FAILED, result.error)
                if result.error == ERR_STOPPED or self.stop_on_failure:
                    return SequenceResult(False, f"Step {index + 1} failed: {result.error}", results)
            if result.finished:
                return SequenceResult(True, "Finished", results)

        return SequenceResult(True, f"Completed {len(steps)} step(s)", results)
