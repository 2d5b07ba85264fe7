from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Tuple

from habla.contracts import StageTimings


class RunStage(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    TRANSCRIBING = "transcribing"
    TRANSLATING = "translating"
    DONE = "done"
    FAILED = "failed"


# stage name reported on failure for each working state
STAGE_LABELS: Dict[RunStage, str] = {
    RunStage.IDLE: "configure",
    RunStage.ACQUIRING: "acquire",
    RunStage.TRANSCRIBING: "transcribe",
    RunStage.TRANSLATING: "translate",
}

_NEXT: Dict[RunStage, RunStage] = {
    RunStage.IDLE: RunStage.ACQUIRING,
    RunStage.ACQUIRING: RunStage.TRANSCRIBING,
    RunStage.TRANSCRIBING: RunStage.TRANSLATING,
    RunStage.TRANSLATING: RunStage.DONE,
}


class StageTransitionError(RuntimeError):
    pass


@dataclass
class RunStageTracker:
    """Forward-only stage machine for one run; every transition is timestamped."""

    clock: Callable[[], float] = time.perf_counter
    state: RunStage = RunStage.IDLE
    last_error: str | None = None
    transitions: List[Tuple[RunStage, float]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.transitions.append((self.state, self.clock()))

    def advance(self, to: RunStage) -> None:
        if _NEXT.get(self.state) != to:
            raise StageTransitionError(f"cannot move from {self.state.value} to {to.value}")
        self.state = to
        self.transitions.append((to, self.clock()))

    def fail(self, detail: str) -> str:
        """Move to FAILED and return the label of the stage that failed."""
        if self.state in (RunStage.DONE, RunStage.FAILED):
            raise StageTransitionError(f"cannot fail from {self.state.value}")
        label = STAGE_LABELS[self.state]
        self.state = RunStage.FAILED
        self.last_error = detail
        self.transitions.append((RunStage.FAILED, self.clock()))
        return label

    def span(self, stage: RunStage) -> float:
        for i, (s, start) in enumerate(self.transitions):
            if s != stage:
                continue
            end = self.transitions[i + 1][1] if i + 1 < len(self.transitions) else self.clock()
            return max(0.0, end - start)
        return 0.0

    def timings(self) -> StageTimings:
        start = self.transitions[0][1]
        end = self.transitions[-1][1]
        acquire = self.span(RunStage.ACQUIRING)
        transcribe = self.span(RunStage.TRANSCRIBING)
        translate = self.span(RunStage.TRANSLATING)
        total = max(end - start, acquire + transcribe + translate)
        return StageTimings(acquire=acquire, transcribe=transcribe, translate=translate, total=total)
