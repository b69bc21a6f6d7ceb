from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Mapping

from .errors import ConfigurationError
from .stager import S3Location


DEFAULT_INPUTS_DIR = "/tmp/inputs"
DEFAULT_OUTPUTS_DIR = "/tmp/outputs"
DEFAULT_MODELS_DIR = "/app/models"
DEFAULT_WORKDIR = "/app/RFdiffusion"
DEFAULT_ORIGIN_DOWNLOAD_SCRIPT = "/app/RFdiffusion/scripts/download_models.sh"
DEFAULT_OUTPUT_EXTENSION = ".pdb"
DEFAULT_DIFFUSION_STEPS = 50
DEFAULT_STATUS_TIMEOUT_SECONDS = 10.0
EXECUTION_LOG_NAME = "execution.log"
MODELS_CACHE_PREFIX = "models/"


def is_truthy(value: object) -> bool:
    s = str(value or "").strip().lower()
    return s in {"1", "true", "t", "yes", "y"}


@dataclass(frozen=True)
class JobDescriptor:
    """Identity, command, and object references of one job execution."""

    job_id: str
    command: str
    input_bucket: str | None = None
    input_pdb_key: str | None = None
    target_pdb_key: str | None = None
    scaffold_prefix: str | None = None
    output_prefix: str | None = None
    job_type: str = ""
    batch_job_id: str = ""

    def __post_init__(self) -> None:
        if not self.job_id:
            raise ConfigurationError("JOB_ID environment variable is required", code="config.missing_job_id")
        if not self.command:
            raise ConfigurationError(
                "RFDIFFUSION_COMMAND environment variable is required",
                code="config.missing_command",
            )

    @property
    def output_location(self) -> S3Location | None:
        """Result destination, or None when uploads are not configured."""
        if not self.input_bucket or not self.output_prefix:
            return None
        return S3Location(bucket=self.input_bucket, key=self.output_prefix)


@dataclass(frozen=True)
class ScratchLayout:
    inputs_dir: str = DEFAULT_INPUTS_DIR
    outputs_dir: str = DEFAULT_OUTPUTS_DIR
    models_dir: str = DEFAULT_MODELS_DIR
    workdir: str = DEFAULT_WORKDIR

    @property
    def execution_log_path(self) -> str:
        return os.path.join(self.outputs_dir, EXECUTION_LOG_NAME)


@dataclass(frozen=True)
class StatusEndpoint:
    base_url: str = ""
    token: str = ""
    timeout_seconds: float = DEFAULT_STATUS_TIMEOUT_SECONDS

    def enabled(self) -> bool:
        return bool(self.base_url)


@dataclass(frozen=True)
class JobConfig:
    job: JobDescriptor
    scratch: ScratchLayout = field(default_factory=ScratchLayout)
    status: StatusEndpoint = field(default_factory=StatusEndpoint)
    model_cache_bucket: str | None = None
    origin_download_script: str = DEFAULT_ORIGIN_DOWNLOAD_SCRIPT
    output_extension: str = DEFAULT_OUTPUT_EXTENSION
    diffusion_steps: int = DEFAULT_DIFFUSION_STEPS
    require_accelerator: bool = True
    failure_progress_zero: bool = False


def _get(env: Mapping[str, str], name: str, default: str = "") -> str:
    return (env.get(name) or default).strip()


def _optional(env: Mapping[str, str], name: str) -> str | None:
    return _get(env, name) or None


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _get(env, name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", code="config.invalid_int") from None


def _float_setting(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _get(env, name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", code="config.invalid_float") from None


def job_id_from_env(environ: Mapping[str, str] | None = None) -> str:
    """Best-effort job id, readable before the full config validates."""
    env = os.environ if environ is None else environ
    return _get(env, "JOB_ID")


def status_endpoint_from_env(environ: Mapping[str, str] | None = None) -> StatusEndpoint:
    env = os.environ if environ is None else environ
    return StatusEndpoint(
        base_url=_get(env, "API_ENDPOINT").rstrip("/"),
        token=_get(env, "API_TOKEN"),
        timeout_seconds=_float_setting(env, "RFD_STATUS_TIMEOUT_SECONDS", DEFAULT_STATUS_TIMEOUT_SECONDS),
    )


def config_from_env(environ: Mapping[str, str] | None = None) -> JobConfig:
    """Build and validate the job configuration once, at startup."""
    env = os.environ if environ is None else environ

    job = JobDescriptor(
        job_id=_get(env, "JOB_ID"),
        command=_get(env, "RFDIFFUSION_COMMAND"),
        input_bucket=_optional(env, "INPUT_S3_BUCKET"),
        input_pdb_key=_optional(env, "INPUT_PDB_KEY"),
        target_pdb_key=_optional(env, "TARGET_PDB_KEY"),
        scaffold_prefix=_optional(env, "SCAFFOLD_S3_PREFIX"),
        output_prefix=_optional(env, "OUTPUT_S3_PREFIX"),
        job_type=_get(env, "JOB_TYPE"),
        batch_job_id=_get(env, "AWS_BATCH_JOB_ID"),
    )

    scratch = ScratchLayout(
        inputs_dir=_get(env, "RFD_INPUTS_DIR", DEFAULT_INPUTS_DIR),
        outputs_dir=_get(env, "RFD_OUTPUTS_DIR", DEFAULT_OUTPUTS_DIR),
        models_dir=_get(env, "RFD_MODELS_DIR", DEFAULT_MODELS_DIR),
        workdir=_get(env, "RFD_WORKDIR", DEFAULT_WORKDIR),
    )

    output_extension = _get(env, "RFD_OUTPUT_EXTENSION", DEFAULT_OUTPUT_EXTENSION)
    if not output_extension.startswith("."):
        output_extension = f".{output_extension}"

    diffusion_steps = _int_setting(env, "RFD_DIFFUSION_STEPS", DEFAULT_DIFFUSION_STEPS)
    if diffusion_steps <= 0:
        raise ConfigurationError("RFD_DIFFUSION_STEPS must be > 0", code="config.invalid_steps")

    require_raw = _get(env, "RFD_REQUIRE_GPU")
    return JobConfig(
        job=job,
        scratch=scratch,
        status=status_endpoint_from_env(env),
        model_cache_bucket=_optional(env, "MODEL_S3_BUCKET"),
        origin_download_script=_get(env, "RFD_ORIGIN_DOWNLOAD_SCRIPT", DEFAULT_ORIGIN_DOWNLOAD_SCRIPT),
        output_extension=output_extension,
        diffusion_steps=diffusion_steps,
        require_accelerator=is_truthy(require_raw) if require_raw else True,
        failure_progress_zero=is_truthy(env.get("RFD_FAILURE_PROGRESS_ZERO")),
    )


__all__ = [
    "EXECUTION_LOG_NAME",
    "JobConfig",
    "JobDescriptor",
    "MODELS_CACHE_PREFIX",
    "ScratchLayout",
    "StatusEndpoint",
    "config_from_env",
    "is_truthy",
    "job_id_from_env",
    "status_endpoint_from_env",
]
