from .config import JobConfig, JobDescriptor, ScratchLayout, StatusEndpoint, config_from_env
from .errors import (
    AcceleratorUnavailableError,
    ArtifactTransferError,
    ConfigurationError,
    ExecutionError,
    InputAcquisitionError,
    JobError,
    JobTerminated,
    NoOutputsError,
    ResultUploadError,
    WeightAcquisitionError,
)
from .execution import ExecutionRecord, WorkloadRunner
from .failure import FailureHandler, extract_diagnostic
from .orchestrator import JobOrchestrator, JobStage
from .progress import (
    LineClassifier,
    LogProgressTranslator,
    PhaseStarted,
    ProgressModel,
    RFdiffusionLineClassifier,
    SavingStarted,
    StepCompleted,
)
from .stager import ArtifactReference, ArtifactStager, S3ArtifactStager, S3Location
from .status import JobState, StatusReporter, StatusUpdate
from .weights import ScriptOriginDownloader, WeightsProvisioner, WeightsSource

__all__ = [
    "AcceleratorUnavailableError",
    "ArtifactReference",
    "ArtifactStager",
    "ArtifactTransferError",
    "ConfigurationError",
    "ExecutionError",
    "ExecutionRecord",
    "FailureHandler",
    "InputAcquisitionError",
    "JobConfig",
    "JobDescriptor",
    "JobError",
    "JobOrchestrator",
    "JobStage",
    "JobState",
    "JobTerminated",
    "LineClassifier",
    "LogProgressTranslator",
    "NoOutputsError",
    "PhaseStarted",
    "ProgressModel",
    "RFdiffusionLineClassifier",
    "ResultUploadError",
    "S3ArtifactStager",
    "S3Location",
    "SavingStarted",
    "ScratchLayout",
    "ScriptOriginDownloader",
    "StatusEndpoint",
    "StatusReporter",
    "StatusUpdate",
    "StepCompleted",
    "WeightAcquisitionError",
    "WeightsProvisioner",
    "WeightsSource",
    "WorkloadRunner",
    "config_from_env",
    "extract_diagnostic",
]
