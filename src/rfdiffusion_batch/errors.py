from __future__ import annotations


class JobError(RuntimeError):
    """Fatal job condition. Each subclass carries a stable ``code`` prefix."""

    code = "job.failed"
    exit_code = 1

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ConfigurationError(JobError, ValueError):
    code = "config.invalid"


class WeightAcquisitionError(JobError):
    code = "weights.unavailable"


class InputAcquisitionError(JobError):
    code = "inputs.unavailable"

    def __init__(self, message: str, *, missing: str = "", code: str | None = None) -> None:
        super().__init__(message, code=code)
        self.missing = missing


class AcceleratorUnavailableError(JobError):
    code = "execution.no_accelerator"


class ExecutionError(JobError):
    code = "execution.failed"

    def __init__(self, message: str, *, returncode: int, diagnostic: str = "") -> None:
        super().__init__(message)
        self.returncode = int(returncode)
        self.diagnostic = diagnostic
        # Shells only carry 0-255; signals surface as negative return codes.
        self.exit_code = self.returncode if 0 < self.returncode < 256 else 1


class NoOutputsError(JobError):
    code = "outputs.empty"


class ResultUploadError(JobError):
    code = "outputs.upload_failed"


class JobTerminated(JobError):
    code = "job.terminated"
    exit_code = 143


class ArtifactTransferError(RuntimeError):
    """A single object-store transfer failed."""


__all__ = [
    "AcceleratorUnavailableError",
    "ArtifactTransferError",
    "ConfigurationError",
    "ExecutionError",
    "InputAcquisitionError",
    "JobError",
    "JobTerminated",
    "NoOutputsError",
    "ResultUploadError",
    "WeightAcquisitionError",
]
