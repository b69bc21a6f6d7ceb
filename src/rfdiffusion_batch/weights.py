from __future__ import annotations

import enum
import logging
from pathlib import Path
import shutil
import subprocess
from typing import Protocol

from .config import MODELS_CACHE_PREFIX
from .errors import ArtifactTransferError, JobTerminated, WeightAcquisitionError
from .stager import ArtifactStager, S3Location

logger = logging.getLogger("WeightsProvisioner")


class WeightsSource(str, enum.Enum):
    PRESENT = "present"
    CACHE = "cache"
    ORIGIN = "origin"


class OriginDownloader(Protocol):
    def download(self, models_dir: str) -> None:
        ...


class ScriptOriginDownloader:
    """Runs the upstream weights download script: ``bash <script> <models_dir>``."""

    def __init__(self, script_path: str) -> None:
        self.script_path = script_path

    def download(self, models_dir: str) -> None:
        shell = shutil.which("bash") or "bash"
        cmd = [shell, self.script_path, models_dir]
        logger.info("weights.origin running %s", " ".join(cmd))
        try:
            subprocess.run(cmd, check=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise WeightAcquisitionError("Failed to download model weights") from exc


def weights_present(models_dir: str) -> bool:
    p = Path(models_dir)
    if not p.is_dir():
        return False
    return any(p.iterdir())


def clear_directory(path: str) -> None:
    """Remove every entry under ``path``, leaving the directory itself."""
    for entry in Path(path).iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()


class WeightsProvisioner:
    """
    Cache-first weights acquisition.

    - A non-empty local directory is used as-is.
    - Otherwise the S3 cache (``s3://<bucket>/models/``) is tried once when configured.
    - Any cache failure falls back to a single origin download.
    """

    def __init__(
        self,
        *,
        stager: ArtifactStager,
        origin: OriginDownloader,
        models_dir: str,
        cache_bucket: str | None = None,
    ) -> None:
        self._stager = stager
        self._origin = origin
        self._models_dir = models_dir
        self._cache_bucket = (cache_bucket or "").strip() or None

    @property
    def needs_transfer(self) -> bool:
        return not weights_present(self._models_dir)

    def ensure(self) -> WeightsSource:
        if not self.needs_transfer:
            logger.info("Models already present, skipping download")
            return WeightsSource.PRESENT

        Path(self._models_dir).mkdir(parents=True, exist_ok=True)
        if self._cache_bucket:
            remote = S3Location(bucket=self._cache_bucket, key=MODELS_CACHE_PREFIX)
            logger.info("Attempting to download models from S3: %s", remote.uri)
            try:
                self._stager.fetch_directory(remote, self._models_dir)
                logger.info("Models downloaded from S3 cache")
                return WeightsSource.CACHE
            except ArtifactTransferError as exc:
                logger.warning("S3 download failed, downloading from original source... (%s)", exc)
                try:
                    clear_directory(self._models_dir)
                except OSError as clear_exc:
                    raise WeightAcquisitionError(
                        f"Failed to clear partial model weights in {self._models_dir}"
                    ) from clear_exc
        else:
            logger.info("Downloading models from original source...")

        try:
            self._origin.download(self._models_dir)
        except (WeightAcquisitionError, JobTerminated):
            raise
        except Exception as exc:
            raise WeightAcquisitionError("Failed to download model weights") from exc
        return WeightsSource.ORIGIN


__all__ = [
    "OriginDownloader",
    "ScriptOriginDownloader",
    "WeightsProvisioner",
    "WeightsSource",
    "clear_directory",
    "weights_present",
]
