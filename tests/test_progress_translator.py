from __future__ import annotations

from typing import Optional

import pytest

from rfdiffusion_batch.progress import (
    LogProgressTranslator,
    PhaseStarted,
    ProgressModel,
    RFdiffusionLineClassifier,
    SavingStarted,
    StepCompleted,
    WorkloadEvent,
)
from rfdiffusion_batch.status import JobState


def test_classifier_recognizes_workload_events() -> None:
    c = RFdiffusionLineClassifier()
    assert c.classify("Calculating IGSO3 tables") == PhaseStarted(phase="diffusion")
    assert c.classify("diffusion step 10") == StepCompleted(step=10)
    assert c.classify("Timestep 7 done") == StepCompleted(step=7)
    assert c.classify("step12") == StepCompleted(step=12)
    assert c.classify("Saving design_0.pdb") == SavingStarted()
    assert c.classify("Writing trajectory") == SavingStarted()
    assert c.classify("loading checkpoint") is None


def test_classifier_priority_and_case_sensitivity() -> None:
    c = RFdiffusionLineClassifier()
    # Phase marker wins over a step token on the same line.
    assert c.classify("Calculating IGSO3 step 3") == PhaseStarted(phase="diffusion")
    # Step wins over saving.
    assert c.classify("Saving step 5") == StepCompleted(step=5)
    assert c.classify("calculating igso3") is None
    assert c.classify("saving results") is None
    assert c.classify("STEP 4") is None


def test_step_progress_with_default_step_count() -> None:
    update = LogProgressTranslator().feed("diffusion step 10\n")
    assert update is not None
    assert update.state is JobState.RUNNING
    assert update.progress == 49
    assert update.message == "Diffusion step 10"


@pytest.mark.parametrize(
    ("step", "expected"),
    [(0, 40), (1, 40), (25, 62), (49, 84), (50, 85), (500, 85)],
)
def test_step_progress_stays_in_step_band(step: int, expected: int) -> None:
    assert ProgressModel().step_progress(step) == expected


def test_step_count_is_configurable() -> None:
    translator = LogProgressTranslator(model=ProgressModel(max_steps=100))
    update = translator.feed("diffusion step 50")
    assert update is not None and update.progress == 62

    with pytest.raises(ValueError):
        ProgressModel(max_steps=0)


def test_phase_and_saving_updates() -> None:
    translator = LogProgressTranslator()
    phase = translator.feed("Calculating IGSO3")
    saving = translator.feed("Writing outputs to /tmp/outputs")
    assert phase is not None and (phase.progress, phase.message) == (40, "Initializing diffusion process")
    assert saving is not None and (saving.progress, saving.message) == (85, "Saving results")
    assert translator.feed("unrelated chatter") is None


def test_translator_accepts_replacement_classifier() -> None:
    class _EpochClassifier:
        def classify(self, line: str) -> Optional[WorkloadEvent]:
            if line.startswith("epoch="):
                return StepCompleted(step=int(line.split("=", 1)[1]))
            return None

    translator = LogProgressTranslator(_EpochClassifier(), ProgressModel(max_steps=10))
    update = translator.feed("epoch=5")
    assert update is not None and update.progress == 62
    assert translator.feed("diffusion step 10") is None
