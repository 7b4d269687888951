"""Pluggable storage for rendered report artifacts.

Reports keep only a reference; bytes live behind ``store``/``fetch``. Both
backends are content-addressed (ref = sha256 hex), so storing the same bytes
twice yields the same ref and never duplicates data.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.models.report_artifact import ReportArtifact

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"


def content_ref(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class BlobStore(ABC):
    """``store(bytes) -> ref`` / ``fetch(ref) -> bytes``.

    ``db`` is the caller's session; backends that persist through it take part
    in the caller's transaction, so a report row and its artifact commit together.
    """

    @abstractmethod
    def store(self, db: Session, data: bytes, content_type: str = PDF_CONTENT_TYPE) -> str:
        ...

    @abstractmethod
    def fetch(self, db: Session, ref: str) -> bytes:
        """Return stored bytes. Raises KeyError when ref is unknown."""
        ...


class DatabaseBlobStore(BlobStore):
    """Artifacts in the ``report_artifacts`` table."""

    def store(self, db: Session, data: bytes, content_type: str = PDF_CONTENT_TYPE) -> str:
        ref = content_ref(data)
        if db.get(ReportArtifact, ref) is None:
            db.add(
                ReportArtifact(
                    ref=ref,
                    content_type=content_type,
                    size_bytes=len(data),
                    content=data,
                )
            )
            db.flush()
        return ref

    def fetch(self, db: Session, ref: str) -> bytes:
        artifact = db.get(ReportArtifact, ref)
        if artifact is None:
            raise KeyError(ref)
        return artifact.content


class FileSystemBlobStore(BlobStore):
    """Artifacts as files under ``root``, sharded by the first two hex chars."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, ref: str) -> Path:
        if len(ref) != 64 or any(c not in "0123456789abcdef" for c in ref):
            raise KeyError(ref)
        return self.root / ref[:2] / f"{ref}.pdf"

    def store(self, db: Session, data: bytes, content_type: str = PDF_CONTENT_TYPE) -> str:
        ref = content_ref(data)
        path = self._path(ref)
        if path.exists():
            return ref
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a temp file and rename so readers never see partial bytes
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("artifact_stored: ref=%s bytes=%d", ref, len(data))
        return ref

    def fetch(self, db: Session, ref: str) -> bytes:
        path = self._path(ref)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise KeyError(ref) from None


def get_blob_store(settings: Settings | None = None) -> BlobStore:
    """Return the blob store selected by REPORT_BLOB_STORE."""
    if settings is None:
        settings = get_settings()
    kind = getattr(settings, "report_blob_store", "database")
    if kind == "filesystem":
        return FileSystemBlobStore(settings.report_blob_dir)
    if kind != "database":
        raise ValueError(f"Unsupported REPORT_BLOB_STORE: {kind}")
    return DatabaseBlobStore()
