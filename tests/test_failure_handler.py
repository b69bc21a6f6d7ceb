from __future__ import annotations

import io
from pathlib import Path

import pytest

from rfdiffusion_batch.errors import ExecutionError, InputAcquisitionError
from rfdiffusion_batch.failure import DEFAULT_DIAGNOSTIC, FailureHandler, describe_failure, extract_diagnostic
from rfdiffusion_batch.status import JobState, StatusUpdate


class _Recorder:
    def __init__(self) -> None:
        self.updates: list[StatusUpdate] = []

    def report(self, update: StatusUpdate) -> None:
        self.updates.append(update)

    def close(self, timeout: float | None = None) -> None:
        pass


def test_extract_diagnostic_returns_last_error_line_in_tail(tmp_path: Path) -> None:
    log = tmp_path / "execution.log"
    log.write_text(
        "\n".join(
            ["an error long ago"] + [f"diffusion step {i}" for i in range(30)] + ["Error: disk full", "cleaning up"]
        )
        + "\n",
        encoding="utf-8",
    )
    assert extract_diagnostic(str(log)) == "Error: disk full"


def test_extract_diagnostic_is_case_insensitive_and_bounded(tmp_path: Path) -> None:
    log = tmp_path / "execution.log"
    log.write_text("RuntimeERROR: CUDA out of memory\n" + "ok\n" * 25, encoding="utf-8")
    assert extract_diagnostic(str(log)) == DEFAULT_DIAGNOSTIC
    assert extract_diagnostic(str(log), tail_lines=30) == "RuntimeERROR: CUDA out of memory"


def test_extract_diagnostic_missing_log_uses_default(tmp_path: Path) -> None:
    assert extract_diagnostic(str(tmp_path / "missing.log")) == "Unknown error occurred"


def test_describe_failure_maps_exit_codes() -> None:
    assert describe_failure("plain") == ("plain", 1)
    assert describe_failure(ExecutionError("failed", returncode=3)) == ("failed", 3)
    assert describe_failure(ExecutionError("killed", returncode=-9))[1] == 1
    assert describe_failure(RuntimeError("oops")) == ("internal: oops", 1)


def test_fail_reports_last_known_progress_and_exits() -> None:
    rec = _Recorder()
    err = io.StringIO()
    handler = FailureHandler(rec, stream=err)
    with pytest.raises(SystemExit) as e:
        handler.fail(InputAcquisitionError("Failed to download target PDB", missing="s3://b/t.pdb"), progress=25)
    assert e.value.code == 1
    assert err.getvalue() == "ERROR: Failed to download target PDB\n"
    assert rec.updates == [StatusUpdate(state=JobState.FAILED, progress=25, message="Failed to download target PDB")]


def test_fail_can_report_zero_progress_for_compatibility() -> None:
    rec = _Recorder()
    handler = FailureHandler(rec, zero_progress=True, stream=io.StringIO())
    with pytest.raises(SystemExit):
        handler.fail("boom", progress=49)
    assert rec.updates[0].progress == 0
