from __future__ import annotations

from datetime import datetime
import enum
import logging
from pathlib import Path
import shutil
from typing import TextIO

from .config import JobConfig
from .errors import (
    ArtifactTransferError,
    ExecutionError,
    InputAcquisitionError,
    JobError,
    NoOutputsError,
    ResultUploadError,
)
from .execution import AcceleratorProbe, WorkloadRunner, probe_nvidia_smi, skip_accelerator_probe
from .failure import FailureHandler, extract_diagnostic
from .progress import LineClassifier, LogProgressTranslator, ProgressModel
from .stager import ArtifactStager, S3ArtifactStager, S3Location
from .status import JobState, StatusSink, StatusUpdate, running
from .weights import OriginDownloader, ScriptOriginDownloader, WeightsProvisioner, WeightsSource

logger = logging.getLogger("JobOrchestrator")

OUTPUT_EXCLUDE_PATTERNS = ("*.log", "*.tmp")
TRANSIENT_OUTPUT_PATTERN = "*.tmp"
LOG_UPLOAD_KEY = "logs/execution.log"


class JobStage(str, enum.Enum):
    INIT = "INIT"
    WEIGHTS_READY = "WEIGHTS_READY"
    INPUTS_READY = "INPUTS_READY"
    EXECUTING = "EXECUTING"
    OUTPUTS_VERIFIED = "OUTPUTS_VERIFIED"
    RESULTS_UPLOADED = "RESULTS_UPLOADED"
    TERMINAL = "TERMINAL"


class JobOrchestrator:
    """
    Drives one job through its stages, strictly in order.

    ``run`` returns 0 after reporting SUCCEEDED. Any fatal condition is routed
    through the FailureHandler, which reports FAILED and raises SystemExit.
    Scratch cleanup runs exactly once on every exit path.
    """

    def __init__(
        self,
        config: JobConfig,
        *,
        reporter: StatusSink,
        stager: ArtifactStager | None = None,
        origin: OriginDownloader | None = None,
        accelerator_probe: AcceleratorProbe | None = None,
        classifier: LineClassifier | None = None,
        echo: TextIO | None = None,
        error_stream: TextIO | None = None,
    ) -> None:
        self.config = config
        self._reporter = reporter
        self._stager = stager if stager is not None else S3ArtifactStager()
        self._origin = origin if origin is not None else ScriptOriginDownloader(config.origin_download_script)
        if accelerator_probe is None:
            accelerator_probe = probe_nvidia_smi if config.require_accelerator else skip_accelerator_probe
        self._probe = accelerator_probe
        self._translator = LogProgressTranslator(classifier, ProgressModel(max_steps=config.diffusion_steps))
        self._failure = FailureHandler(reporter, zero_progress=config.failure_progress_zero, stream=error_stream)
        self._echo = echo
        self.stage = JobStage.INIT
        self.last_progress = 0
        self.succeeded = False
        self.outputs: list[Path] = []
        self._cleaned = False

    def run(self) -> int:
        job = self.config.job
        logger.info("=== RFdiffusion AWS Batch Job Starting ===")
        logger.info("Job ID: %s", job.job_id)
        logger.info("Job Type: %s", job.job_type or "unknown")
        logger.info("AWS Batch Job ID: %s", job.batch_job_id or "unknown")
        try:
            try:
                self._run_stages()
            except JobError as exc:
                self._abort(exc)
            except KeyboardInterrupt:
                self._abort(JobError("job interrupted", code="job.interrupted"))
            except Exception as exc:
                logger.exception("job.internal failure during stage %s", self.stage.value)
                self._abort(exc)
            return 0
        finally:
            self.stage = JobStage.TERMINAL
            self.cleanup()

    def _run_stages(self) -> None:
        self._emit(running(5, "Job started, initializing environment"))
        Path(self.config.scratch.inputs_dir).mkdir(parents=True, exist_ok=True)
        Path(self.config.scratch.outputs_dir).mkdir(parents=True, exist_ok=True)

        self._acquire_weights()
        self.stage = JobStage.WEIGHTS_READY

        self._acquire_inputs()
        self.stage = JobStage.INPUTS_READY

        self._execute()

        self._verify_outputs()
        self.stage = JobStage.OUTPUTS_VERIFIED

        self._upload_results()
        self.stage = JobStage.RESULTS_UPLOADED

        for path in self.outputs:
            logger.info("generated %s", path)
        count = len(self.outputs)
        self._emit(
            StatusUpdate(
                state=JobState.SUCCEEDED,
                progress=100,
                message=f"Job completed successfully - generated {count} designs",
            )
        )
        logger.info("=== RFdiffusion AWS Batch Job Completed Successfully ===")
        logger.info("Job completed at: %s", datetime.now().isoformat(timespec="seconds"))

    def _abort(self, exc: BaseException) -> None:
        # SUCCEEDED is final once emitted; a late error only gets logged.
        if self.succeeded:
            logger.warning(
                "job.%s after SUCCEEDED was reported; keeping success: %s",
                getattr(exc, "code", "internal"),
                exc,
            )
            return
        self._failure.fail(exc, progress=self.last_progress)

    def _emit(self, update: StatusUpdate) -> None:
        self.last_progress = update.progress
        if update.state is JobState.SUCCEEDED:
            self.succeeded = True
        self._reporter.report(update)

    def _on_workload_line(self, line: str) -> None:
        update = self._translator.feed(line)
        if update is not None:
            self._emit(update)

    def _acquire_weights(self) -> None:
        provisioner = WeightsProvisioner(
            stager=self._stager,
            origin=self._origin,
            models_dir=self.config.scratch.models_dir,
            cache_bucket=self.config.model_cache_bucket,
        )
        if provisioner.needs_transfer:
            logger.info("Downloading RFdiffusion models...")
            self._emit(running(10, "Downloading model weights"))
        source = provisioner.ensure()
        if source is WeightsSource.PRESENT:
            self._emit(running(15, "Using cached model weights"))
        else:
            self._emit(running(20, "Model weights ready"))

    def _acquire_inputs(self) -> None:
        job = self.config.job
        inputs_dir = Path(self.config.scratch.inputs_dir)
        requested = [job.input_pdb_key, job.target_pdb_key, job.scaffold_prefix]
        if not job.input_bucket:
            if any(requested):
                logger.warning("INPUT_S3_BUCKET is not set; skipping input downloads")
            return

        if job.input_pdb_key:
            remote = S3Location(bucket=job.input_bucket, key=job.input_pdb_key)
            self._fetch_input(remote, str(inputs_dir / "input.pdb"), "Failed to download input PDB")
            self._emit(running(25, "Input PDB downloaded"))

        if job.target_pdb_key:
            remote = S3Location(bucket=job.input_bucket, key=job.target_pdb_key)
            self._fetch_input(remote, str(inputs_dir / "target.pdb"), "Failed to download target PDB")
            self._emit(running(27, "Target PDB downloaded"))

        if job.scaffold_prefix:
            remote = S3Location(bucket=job.input_bucket, key=job.scaffold_prefix)
            try:
                self._stager.fetch_directory(remote, str(inputs_dir / "scaffolds"))
            except ArtifactTransferError as exc:
                raise InputAcquisitionError(
                    f"Failed to download scaffold files from {remote.uri}", missing=remote.uri
                ) from exc
            self._emit(running(30, "Scaffold files downloaded"))

    def _fetch_input(self, remote: S3Location, local_path: str, what: str) -> None:
        try:
            self._stager.fetch(remote, local_path)
        except ArtifactTransferError as exc:
            raise InputAcquisitionError(f"{what} from {remote.uri}", missing=remote.uri) from exc

    def _execute(self) -> None:
        self.stage = JobStage.EXECUTING
        self._emit(running(35, "Starting RFdiffusion execution"))
        logger.info("Checking GPU availability...")
        self._probe()
        logger.info("GPU check passed, executing RFdiffusion...")

        runner = WorkloadRunner(
            workdir=self.config.scratch.workdir,
            log_path=self.config.scratch.execution_log_path,
            on_line=self._on_workload_line,
            echo=self._echo,
        )
        record = runner.run(self.config.job.command)
        if not record.succeeded:
            logger.error("RFdiffusion execution failed with exit code: %d", record.exit_code)
            diagnostic = extract_diagnostic(record.log_path)
            raise ExecutionError(
                f"RFdiffusion execution failed (exit code {record.exit_code}): {diagnostic}",
                returncode=record.exit_code,
                diagnostic=diagnostic,
            )
        logger.info("RFdiffusion execution completed successfully")
        self._emit(running(90, "RFdiffusion completed, preparing results"))

    def _verify_outputs(self) -> None:
        outputs_dir = Path(self.config.scratch.outputs_dir)
        pattern = f"*{self.config.output_extension}"
        self.outputs = sorted(p for p in outputs_dir.rglob(pattern) if p.is_file())
        if not self.outputs:
            raise NoOutputsError(f"No output {self.config.output_extension.lstrip('.').upper()} files were generated")
        logger.info("Generated %d %s files", len(self.outputs), self.config.output_extension)

    def _upload_results(self) -> None:
        destination = self.config.job.output_location
        if destination is None:
            logger.info("No S3 configuration provided, results remain local")
            return
        logger.info("Uploading results to: %s", destination.uri)
        try:
            self._stager.upload_directory(self.config.scratch.outputs_dir, destination, OUTPUT_EXCLUDE_PATTERNS)
        except ArtifactTransferError as exc:
            raise ResultUploadError(f"Failed to upload results to {destination.uri}") from exc

        log_path = Path(self.config.scratch.execution_log_path)
        if log_path.is_file():
            try:
                self._stager.upload(str(log_path), destination.child(LOG_UPLOAD_KEY))
            except ArtifactTransferError as exc:
                logger.warning("Warning: Failed to upload logs (non-fatal): %s", exc)

        logger.info("Results uploaded successfully")
        self._emit(running(95, "Results uploaded to S3"))

    def cleanup(self) -> None:
        """Remove scratch inputs and transient output files. Idempotent."""
        if self._cleaned:
            return
        self._cleaned = True
        logger.info("Cleaning up temporary files...")
        inputs_dir = Path(self.config.scratch.inputs_dir)
        if inputs_dir.is_dir():
            for entry in inputs_dir.iterdir():
                _remove_path(entry)
        outputs_dir = Path(self.config.scratch.outputs_dir)
        if outputs_dir.is_dir():
            for entry in list(outputs_dir.rglob(TRANSIENT_OUTPUT_PATTERN)):
                _remove_path(entry)


def _remove_path(path: Path) -> None:
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("cleanup could not remove %s: %s", path, exc)


__all__ = ["JobOrchestrator", "JobStage", "OUTPUT_EXCLUDE_PATTERNS"]
