from __future__ import annotations

from collections import deque
import logging
import sys
from typing import NoReturn, TextIO

from .errors import JobError
from .status import JobState, StatusSink, StatusUpdate

logger = logging.getLogger("FailureHandler")

DEFAULT_DIAGNOSTIC = "Unknown error occurred"
DIAGNOSTIC_TAIL_LINES = 20


def extract_diagnostic(
    log_path: str,
    *,
    tail_lines: int = DIAGNOSTIC_TAIL_LINES,
    default: str = DEFAULT_DIAGNOSTIC,
) -> str:
    """Return the last line mentioning "error" (any case) within the log tail."""
    try:
        with open(log_path, "r", encoding="utf-8", errors="replace") as f:
            tail = deque(f, maxlen=max(1, int(tail_lines)))
    except OSError:
        return default
    for line in reversed(tail):
        if "error" in line.lower():
            return line.rstrip("\r\n")
    return default


def describe_failure(error: BaseException | str) -> tuple[str, int]:
    """Map an error to (message, process exit code)."""
    if isinstance(error, str):
        return error, 1
    if isinstance(error, JobError):
        return error.message, int(error.exit_code) or 1
    return f"internal: {error}", 1


class FailureHandler:
    def __init__(self, reporter: StatusSink, *, zero_progress: bool = False, stream: TextIO | None = None) -> None:
        self._reporter = reporter
        self._zero_progress = zero_progress
        self._stream = stream

    def fail(self, error: BaseException | str, *, progress: int = 0) -> NoReturn:
        message, exit_code = describe_failure(error)
        stream = self._stream if self._stream is not None else sys.stderr
        print(f"ERROR: {message}", file=stream, flush=True)
        code = getattr(error, "code", "internal")
        logger.error("job.failed code=%s exit=%d: %s", code, exit_code, message)
        reported = 0 if self._zero_progress else max(0, min(int(progress), 100))
        self._reporter.report(StatusUpdate(state=JobState.FAILED, progress=reported, message=message))
        raise SystemExit(exit_code)


__all__ = [
    "DEFAULT_DIAGNOSTIC",
    "DIAGNOSTIC_TAIL_LINES",
    "FailureHandler",
    "describe_failure",
    "extract_diagnostic",
]
