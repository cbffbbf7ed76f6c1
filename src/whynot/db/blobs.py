"""
Blob Store - content-addressed files

Bytes are stored once under ``<root>/<sha256>``. A blob is written to a
temporary file in the same directory and renamed into place, so a reader
either finds the complete file or nothing.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from whynot.core.utils import content_hash, is_content_hash

logger = logging.getLogger(__name__)


class BlobStore:
    """Storage interface for content-addressed blobs."""

    def put(self, data: bytes) -> str:
        raise NotImplementedError

    def get(self, digest: str) -> Optional[bytes]:
        raise NotImplementedError

    def exists(self, digest: str) -> bool:
        raise NotImplementedError


class FileBlobStore(BlobStore):
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def init_dir(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, digest: str) -> Path:
        if not is_content_hash(digest):
            raise ValueError(f"Not a content hash: {digest!r}")
        return self.root / digest

    def exists(self, digest: str) -> bool:
        try:
            return self.path_for(digest).is_file()
        except ValueError:
            return False

    def put(self, data: bytes) -> str:
        """Store ``data`` and return its hash. Existing blobs are reused."""
        digest = content_hash(data)
        path = self.path_for(digest)
        if path.is_file():
            logger.debug(f"Blob already exists: {digest}")
            return digest

        fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=self.root)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        return digest

    def get(self, digest: str) -> Optional[bytes]:
        try:
            return self.path_for(digest).read_bytes()
        except (FileNotFoundError, ValueError):
            return None

    def count(self) -> int:
        """Number of stored blobs (temporary files excluded)."""
        if not self.root.is_dir():
            return 0
        return sum(1 for p in self.root.iterdir() if is_content_hash(p.name))
