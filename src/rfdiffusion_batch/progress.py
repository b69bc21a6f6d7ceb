"""
Translate workload log text into progress updates.

Lines are first classified into typed workload events by a replaceable
``LineClassifier``; a ``ProgressModel`` then maps events onto the RUNNING
progress band. Classification looks at one line at a time and keeps no state.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Optional, Protocol, Union

from .config import DEFAULT_DIFFUSION_STEPS
from .status import StatusUpdate, running


@dataclass(frozen=True)
class PhaseStarted:
    phase: str


@dataclass(frozen=True)
class StepCompleted:
    step: int


@dataclass(frozen=True)
class SavingStarted:
    pass


WorkloadEvent = Union[PhaseStarted, StepCompleted, SavingStarted]


class LineClassifier(Protocol):
    def classify(self, line: str) -> Optional[WorkloadEvent]:
        ...


_STEP_RE = re.compile(r"step\s*(\d+)")


class RFdiffusionLineClassifier:
    """Case-sensitive substring rules, first match wins."""

    def classify(self, line: str) -> Optional[WorkloadEvent]:
        if "Calculating IGSO3" in line:
            return PhaseStarted(phase="diffusion")
        m = _STEP_RE.search(line)
        if m:
            return StepCompleted(step=int(m.group(1)))
        if "Saving" in line or "Writing" in line:
            return SavingStarted()
        return None


@dataclass(frozen=True)
class ProgressModel:
    max_steps: int = DEFAULT_DIFFUSION_STEPS
    phase_progress: int = 40
    step_span: int = 45
    saving_progress: int = 85

    def __post_init__(self) -> None:
        if self.max_steps <= 0:
            raise ValueError("max_steps must be > 0")

    def step_progress(self, step: int) -> int:
        value = self.phase_progress + (step * self.step_span) // self.max_steps
        return max(self.phase_progress, min(value, self.phase_progress + self.step_span))

    def to_update(self, event: WorkloadEvent) -> Optional[StatusUpdate]:
        if isinstance(event, PhaseStarted):
            return running(self.phase_progress, "Initializing diffusion process")
        if isinstance(event, StepCompleted):
            return running(self.step_progress(event.step), f"Diffusion step {event.step}")
        if isinstance(event, SavingStarted):
            return running(self.saving_progress, "Saving results")
        return None


class LogProgressTranslator:
    def __init__(self, classifier: LineClassifier | None = None, model: ProgressModel | None = None) -> None:
        self.classifier = classifier or RFdiffusionLineClassifier()
        self.model = model or ProgressModel()

    def feed(self, line: str) -> Optional[StatusUpdate]:
        event = self.classifier.classify(line.rstrip("\r\n"))
        if event is None:
            return None
        return self.model.to_update(event)


__all__ = [
    "LineClassifier",
    "LogProgressTranslator",
    "PhaseStarted",
    "ProgressModel",
    "RFdiffusionLineClassifier",
    "SavingStarted",
    "StepCompleted",
    "WorkloadEvent",
]
