from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import shutil
import subprocess
import sys
from typing import Callable, Optional, TextIO

from .errors import AcceleratorUnavailableError, JobError, JobTerminated

logger = logging.getLogger("WorkloadRunner")

AcceleratorProbe = Callable[[], None]
LineHandler = Callable[[str], None]


def probe_nvidia_smi() -> None:
    """Raise AcceleratorUnavailableError unless ``nvidia-smi`` runs cleanly."""
    message = "NVIDIA GPU not available or nvidia-smi not found"
    exe = shutil.which("nvidia-smi")
    if not exe:
        raise AcceleratorUnavailableError(message)
    try:
        result = subprocess.run([exe], capture_output=True, text=True, timeout=60)
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise AcceleratorUnavailableError(message) from exc
    if result.returncode != 0:
        logger.error("nvidia-smi exited %d: %s", result.returncode, (result.stderr or "").strip()[:300])
        raise AcceleratorUnavailableError(message)
    for line in (result.stdout or "").splitlines():
        logger.info("nvidia-smi: %s", line)


def skip_accelerator_probe() -> None:
    logger.warning("Accelerator check disabled; running without GPU validation")


@dataclass(frozen=True)
class ExecutionRecord:
    exit_code: int
    log_path: str
    line_count: int

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class WorkloadRunner:
    """
    Run a shell command and tee its merged output.

    Each line goes, in order, to the execution log, the console, and the line
    handler before the next line is read. Returns once the process has exited
    and the pipe is drained.
    """

    def __init__(
        self,
        *,
        workdir: str,
        log_path: str,
        on_line: Optional[LineHandler] = None,
        echo: Optional[TextIO] = None,
    ) -> None:
        self.workdir = workdir
        self.log_path = log_path
        self._on_line = on_line
        self._echo = echo

    def run(self, command: str) -> ExecutionRecord:
        if not Path(self.workdir).is_dir():
            raise JobError(f"workload directory not found: {self.workdir}", code="execution.missing_workdir")
        Path(self.log_path).parent.mkdir(parents=True, exist_ok=True)
        echo = self._echo if self._echo is not None else sys.stdout

        logger.info("Command: %s", command)
        try:
            proc = subprocess.Popen(
                command,
                shell=True,
                executable=shutil.which("bash") or None,
                cwd=self.workdir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                env=os.environ.copy(),
            )
        except OSError as exc:
            raise JobError(f"failed to start workload: {exc}", code="execution.spawn_failed") from exc

        stdout = proc.stdout
        if stdout is None:
            proc.kill()
            proc.wait()
            raise JobError("workload output pipe was not opened", code="execution.spawn_failed")

        count = 0
        try:
            with open(self.log_path, "w", encoding="utf-8") as log:
                for line in stdout:
                    count += 1
                    log.write(line)
                    log.flush()
                    echo.write(line)
                    echo.flush()
                    if self._on_line is not None:
                        try:
                            self._on_line(line)
                        except JobTerminated:
                            raise
                        except Exception:
                            logger.exception("workload.line handler failed on line %d", count)
        except BaseException:
            proc.kill()
            proc.wait()
            raise
        exit_code = proc.wait()
        logger.info("workload.exit code=%d lines=%d", exit_code, count)
        return ExecutionRecord(exit_code=exit_code, log_path=self.log_path, line_count=count)


__all__ = [
    "AcceleratorProbe",
    "ExecutionRecord",
    "WorkloadRunner",
    "probe_nvidia_smi",
    "skip_accelerator_probe",
]
