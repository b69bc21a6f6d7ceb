from __future__ import annotations

from dataclasses import dataclass
import fnmatch
import logging
from pathlib import Path
from typing import Any, Iterable, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ArtifactTransferError

logger = logging.getLogger("ArtifactStager")


@dataclass(frozen=True)
class S3Location:
    bucket: str
    key: str = ""

    def __post_init__(self) -> None:
        if not self.bucket:
            raise ValueError("bucket is required")

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    @property
    def prefix(self) -> str:
        """Key normalised as a directory prefix ("" or ending in "/")."""
        k = self.key.lstrip("/")
        if k and not k.endswith("/"):
            k += "/"
        return k

    def child(self, rel: str) -> "S3Location":
        return S3Location(bucket=self.bucket, key=f"{self.prefix}{rel.lstrip('/')}")

    def __str__(self) -> str:
        return self.uri


@dataclass(frozen=True)
class ArtifactReference:
    remote: S3Location
    local_path: str


class ArtifactStager(Protocol):
    def fetch(self, remote: S3Location, local_path: str) -> ArtifactReference:
        ...

    def fetch_directory(self, remote_prefix: S3Location, local_dir: str) -> list[ArtifactReference]:
        ...

    def upload(self, local_path: str, remote: S3Location) -> ArtifactReference:
        ...

    def upload_directory(
        self,
        local_dir: str,
        remote_prefix: S3Location,
        exclude_patterns: Iterable[str] = (),
    ) -> list[ArtifactReference]:
        ...


def is_excluded(rel_path: str, patterns: Iterable[str]) -> bool:
    name = rel_path.rsplit("/", 1)[-1]
    for pattern in patterns:
        if fnmatch.fnmatchcase(rel_path, pattern) or fnmatch.fnmatchcase(name, pattern):
            return True
    return False


def _safe_child_path(root: Path, rel: str) -> Path:
    p = (root / rel).resolve()
    r = root.resolve()
    if r == p or r in p.parents:
        return p
    raise ArtifactTransferError(f"object key escapes destination directory: {rel}")


class S3ArtifactStager:
    """Object transfers between local scratch and S3. One attempt per call."""

    def __init__(self, client: Any | None = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3", config=Config(signature_version="s3v4"))
        return self._client

    def fetch(self, remote: S3Location, local_path: str) -> ArtifactReference:
        dst = Path(local_path)
        dst.parent.mkdir(parents=True, exist_ok=True)
        logger.info("stager.fetch %s -> %s", remote.uri, dst)
        try:
            self.client.download_file(remote.bucket, remote.key, str(dst))
        except (BotoCoreError, ClientError, OSError) as exc:
            raise ArtifactTransferError(f"failed to download {remote.uri}") from exc
        return ArtifactReference(remote=remote, local_path=str(dst))

    def fetch_directory(self, remote_prefix: S3Location, local_dir: str) -> list[ArtifactReference]:
        root = Path(local_dir)
        root.mkdir(parents=True, exist_ok=True)
        prefix = remote_prefix.prefix
        logger.info("stager.fetch_directory %s -> %s", remote_prefix.uri, root)
        fetched: list[ArtifactReference] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=remote_prefix.bucket, Prefix=prefix):
                for obj in page.get("Contents") or []:
                    key = str(obj.get("Key") or "")
                    rel = key[len(prefix):].lstrip("/")
                    if not rel or key.endswith("/"):
                        continue
                    dst = _safe_child_path(root, rel)
                    dst.parent.mkdir(parents=True, exist_ok=True)
                    self.client.download_file(remote_prefix.bucket, key, str(dst))
                    fetched.append(
                        ArtifactReference(remote=S3Location(bucket=remote_prefix.bucket, key=key), local_path=str(dst))
                    )
        except (BotoCoreError, ClientError, OSError) as exc:
            raise ArtifactTransferError(f"failed to download {remote_prefix.uri}") from exc
        if not fetched:
            raise ArtifactTransferError(f"no objects found under {remote_prefix.uri}")
        logger.info("stager.fetch_directory %s: %d objects", remote_prefix.uri, len(fetched))
        return fetched

    def upload(self, local_path: str, remote: S3Location) -> ArtifactReference:
        src = Path(local_path)
        if not src.is_file():
            raise ArtifactTransferError(f"local artifact not found: {src}")
        logger.info("stager.upload %s -> %s", src, remote.uri)
        try:
            self.client.upload_file(str(src), remote.bucket, remote.key)
        except (BotoCoreError, ClientError, OSError) as exc:
            raise ArtifactTransferError(f"failed to upload {src} to {remote.uri}") from exc
        return ArtifactReference(remote=remote, local_path=str(src))

    def upload_directory(
        self,
        local_dir: str,
        remote_prefix: S3Location,
        exclude_patterns: Iterable[str] = (),
    ) -> list[ArtifactReference]:
        root = Path(local_dir)
        if not root.is_dir():
            raise ArtifactTransferError(f"local directory not found: {root}")
        patterns = tuple(exclude_patterns)
        uploaded: list[ArtifactReference] = []
        for path in sorted(p for p in root.rglob("*") if p.is_file()):
            rel = path.relative_to(root).as_posix()
            if is_excluded(rel, patterns):
                continue
            uploaded.append(self.upload(str(path), remote_prefix.child(rel)))
        logger.info("stager.upload_directory %s -> %s: %d files", root, remote_prefix.uri, len(uploaded))
        return uploaded


__all__ = [
    "ArtifactReference",
    "ArtifactStager",
    "S3ArtifactStager",
    "S3Location",
    "is_excluded",
]
