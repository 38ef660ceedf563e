"""Blob storage uploader interface and filesystem implementation."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Protocol

logger = logging.getLogger(__name__)


class BlobStoreError(RuntimeError):
    """Upload rejected or failed."""


class BlobStore(Protocol):
    def upload(self, path: str, content: bytes, *, content_type: str) -> str:
        """Store `content` at `path` (overwriting) and return the stored path."""


class LocalBlobStore:
    """Stores blobs under a root directory, mirroring the object key layout."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def upload(self, path: str, content: bytes, *, content_type: str) -> str:
        key = PurePosixPath(path)
        if key.is_absolute() or ".." in key.parts or not key.parts:
            raise BlobStoreError(f"Invalid blob path: {path!r}")
        target = self.root.joinpath(*key.parts)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as error:
            raise BlobStoreError(f"Storage upload failed for {path}: {error}") from error
        logger.debug("Stored blob %s (%s, %s bytes)", path, content_type, len(content))
        return str(key)
