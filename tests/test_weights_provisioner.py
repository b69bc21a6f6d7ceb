from __future__ import annotations

from pathlib import Path

import pytest

from rfdiffusion_batch.errors import ArtifactTransferError, WeightAcquisitionError
from rfdiffusion_batch.stager import ArtifactReference, S3Location
from rfdiffusion_batch.weights import ScriptOriginDownloader, WeightsProvisioner, WeightsSource


class _CacheStager:
    def __init__(self, calls: list[str], *, reachable: bool) -> None:
        self.calls = calls
        self.reachable = reachable

    def fetch_directory(self, remote_prefix: S3Location, local_dir: str) -> list[ArtifactReference]:
        self.calls.append(f"cache:{remote_prefix.uri}")
        if not self.reachable:
            raise ArtifactTransferError("cache unreachable")
        p = Path(local_dir) / "Base_ckpt.pt"
        p.write_bytes(b"weights")
        return [ArtifactReference(remote=remote_prefix.child(p.name), local_path=str(p))]


class _Origin:
    def __init__(self, calls: list[str], *, reachable: bool = True) -> None:
        self.calls = calls
        self.reachable = reachable

    def download(self, models_dir: str) -> None:
        self.calls.append("origin")
        if not self.reachable:
            raise WeightAcquisitionError("Failed to download model weights")
        (Path(models_dir) / "Base_ckpt.pt").write_bytes(b"weights")


def test_present_weights_skip_all_transfers(tmp_path: Path) -> None:
    models = tmp_path / "models"
    models.mkdir()
    (models / "Base_ckpt.pt").write_bytes(b"weights")
    calls: list[str] = []
    p = WeightsProvisioner(
        stager=_CacheStager(calls, reachable=True),  # type: ignore[arg-type]
        origin=_Origin(calls),
        models_dir=str(models),
        cache_bucket="cache",
    )
    assert p.needs_transfer is False
    assert p.ensure() is WeightsSource.PRESENT
    assert calls == []


def test_reachable_cache_is_used_without_origin(tmp_path: Path) -> None:
    calls: list[str] = []
    p = WeightsProvisioner(
        stager=_CacheStager(calls, reachable=True),  # type: ignore[arg-type]
        origin=_Origin(calls),
        models_dir=str(tmp_path / "models"),
        cache_bucket="cache",
    )
    assert p.ensure() is WeightsSource.CACHE
    assert calls == ["cache:s3://cache/models/"]


def test_unreachable_cache_falls_back_to_origin_once(tmp_path: Path) -> None:
    calls: list[str] = []
    models = tmp_path / "models"
    models.mkdir()
    p = WeightsProvisioner(
        stager=_CacheStager(calls, reachable=False),  # type: ignore[arg-type]
        origin=_Origin(calls),
        models_dir=str(models),
        cache_bucket="cache",
    )
    assert p.ensure() is WeightsSource.ORIGIN
    assert calls == ["cache:s3://cache/models/", "origin"]


class _InterruptedCacheStager:
    def fetch_directory(self, remote_prefix: S3Location, local_dir: str) -> list[ArtifactReference]:
        (Path(local_dir) / "Base_ckpt.pt").write_bytes(b"half")
        (Path(local_dir) / "sub").mkdir()
        (Path(local_dir) / "sub" / "Complex_base_ckpt.pt").write_bytes(b"half")
        raise ArtifactTransferError("connection reset")


class _RecordingOrigin:
    def __init__(self) -> None:
        self.seen: list[list[str]] = []

    def download(self, models_dir: str) -> None:
        self.seen.append(sorted(p.name for p in Path(models_dir).iterdir()))
        (Path(models_dir) / "Base_ckpt.pt").write_bytes(b"weights")


def test_partial_cache_download_is_cleared_before_origin(tmp_path: Path) -> None:
    models = tmp_path / "models"
    origin = _RecordingOrigin()
    p = WeightsProvisioner(
        stager=_InterruptedCacheStager(),  # type: ignore[arg-type]
        origin=origin,
        models_dir=str(models),
        cache_bucket="cache",
    )
    assert p.ensure() is WeightsSource.ORIGIN
    assert origin.seen == [[]]
    assert sorted(x.name for x in models.iterdir()) == ["Base_ckpt.pt"]
    assert (models / "Base_ckpt.pt").read_bytes() == b"weights"


def test_no_cache_configured_goes_straight_to_origin(tmp_path: Path) -> None:
    calls: list[str] = []
    p = WeightsProvisioner(
        stager=_CacheStager(calls, reachable=True),  # type: ignore[arg-type]
        origin=_Origin(calls),
        models_dir=str(tmp_path / "models"),
    )
    assert p.ensure() is WeightsSource.ORIGIN
    assert calls == ["origin"]


def test_cache_and_origin_failure_is_fatal(tmp_path: Path) -> None:
    calls: list[str] = []
    p = WeightsProvisioner(
        stager=_CacheStager(calls, reachable=False),  # type: ignore[arg-type]
        origin=_Origin(calls, reachable=False),
        models_dir=str(tmp_path / "models"),
        cache_bucket="cache",
    )
    with pytest.raises(WeightAcquisitionError) as e:
        p.ensure()
    assert e.value.message == "Failed to download model weights"
    assert calls == ["cache:s3://cache/models/", "origin"]


def test_script_origin_downloader_runs_script_with_models_dir(tmp_path: Path) -> None:
    script = tmp_path / "download_models.sh"
    script.write_text('#!/bin/bash\nset -e\nmkdir -p "$1"\necho ok > "$1/Base_ckpt.pt"\n', encoding="utf-8")
    models = tmp_path / "models"
    ScriptOriginDownloader(str(script)).download(str(models))
    assert (models / "Base_ckpt.pt").read_text(encoding="utf-8").strip() == "ok"


def test_script_origin_downloader_failure_raises(tmp_path: Path) -> None:
    script = tmp_path / "download_models.sh"
    script.write_text("#!/bin/bash\nexit 7\n", encoding="utf-8")
    with pytest.raises(WeightAcquisitionError):
        ScriptOriginDownloader(str(script)).download(str(tmp_path / "models"))
