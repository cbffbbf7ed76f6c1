"""
Content Store

Facade over the record store and the blob store. This is the only storage
interface the crawler and the web server use; every SQLite or filesystem
failure surfaces as ``StorageError``.
"""

import logging
import mimetypes
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional

from whynot.core.constants import BLOB_DIRNAME, UrlKind, is_html
from whynot.core.utils import content_hash
from whynot.db.blobs import FileBlobStore
from whynot.db.connection import db_path_for, quick_check
from whynot.db.records import ArchiveRecord, SqliteRecordStore, blob_ref, doc_ref

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class StorageError(Exception):
    """Archive store could not be opened, read or written."""


@dataclass(frozen=True)
class StoreOutcome:
    record: ArchiveRecord
    changed: bool
    blob_reused: bool = False


def _content_type(url: str, headers: Mapping[str, str]) -> str:
    ct = headers.get("content-type")
    if ct:
        return ct
    guessed, _ = mimetypes.guess_type(url)
    return guessed or DEFAULT_CONTENT_TYPE


class ContentStore:
    """
    Archive of fetched URLs.

    Layout under ``data_dir``:
    - ``whynot.db/archive.sqlite3``: records, HTML documents, out-links
    - ``imgs/<sha256>``: every non-HTML body
    """

    def __init__(self, data_dir: str | Path, *, readonly: bool = False):
        self.data_dir = Path(data_dir)
        self.readonly = readonly
        self.db_path = db_path_for(self.data_dir)
        self.records = SqliteRecordStore(str(self.db_path))
        self.blobs = FileBlobStore(self.data_dir / BLOB_DIRNAME)

    def open(self) -> "ContentStore":
        """
        Prepare and verify the store.

        Raises:
            StorageError: missing (read-only mode) or corrupt database
        """
        try:
            if self.readonly:
                if not self.db_path.is_file():
                    raise StorageError(f"No archive database at {self.db_path}")
            else:
                self.blobs.init_dir()
                self.records.init_db()
            result = quick_check(self.db_path)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open archive at {self.data_dir}: {e}") from e
        if result != "ok":
            raise StorageError(f"Archive database failed integrity check: {result}")
        logger.info(f"Opened archive at {self.data_dir} (readonly={self.readonly})")
        return self

    def _check_writable(self) -> None:
        if self.readonly:
            raise StorageError("Archive store is read-only")

    # --- records ---

    def put(self, record: ArchiveRecord, body: bytes | None = None) -> None:
        self._check_writable()
        try:
            self.records.put(record, body)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write record for {record.url}: {e}") from e

    def get(self, url: str) -> Optional[ArchiveRecord]:
        try:
            return self.records.get(url)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read record for {url}: {e}") from e

    def get_many(self, urls: Iterable[str]) -> dict[str, ArchiveRecord]:
        try:
            return self.records.get_many(urls)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read records: {e}") from e

    def list_recent(
        self, kind: UrlKind, offset: int = 0, limit: int = 20
    ) -> list[ArchiveRecord]:
        try:
            return self.records.list_recent(kind, offset=offset, limit=limit)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list records: {e}") from e

    def count(self, kind: UrlKind | None = None) -> int:
        try:
            return self.records.count(kind)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count records: {e}") from e

    def content_type_for_blob(self, digest: str) -> Optional[str]:
        try:
            return self.records.content_type_for_hash(digest)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read blob metadata: {e}") from e

    def add_links(self, src: str, dsts: Iterable[str]) -> int:
        self._check_writable()
        try:
            return self.records.add_links(src, dsts)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to record links from {src}: {e}") from e

    # --- blobs ---

    def put_blob(self, data: bytes) -> str:
        self._check_writable()
        try:
            return self.blobs.put(data)
        except OSError as e:
            raise StorageError(f"Failed to write blob: {e}") from e

    def get_blob(self, digest: str) -> Optional[bytes]:
        try:
            return self.blobs.get(digest)
        except OSError as e:
            raise StorageError(f"Failed to read blob {digest}: {e}") from e

    def has_blob(self, digest: str) -> bool:
        return self.blobs.exists(digest)

    def blob_path(self, digest: str) -> Path:
        return self.blobs.path_for(digest)

    # --- bodies ---

    def read_body(self, record: ArchiveRecord) -> Optional[bytes]:
        """Stored bytes for ``record``, wherever they live."""
        if record.is_document:
            try:
                return self.records.get_document(record.content_hash)
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read document for {record.url}: {e}") from e
        return self.get_blob(record.content_hash)

    def store_response(
        self,
        url: str,
        kind: UrlKind,
        status: int,
        headers: Mapping[str, str],
        body: bytes,
        *,
        parent: str | None = None,
        title: str | None = None,
        final_url: str | None = None,
    ) -> StoreOutcome:
        """
        Archive one fetched response.

        An unchanged body (same hash and status as the stored record) leaves
        the record untouched. Non-HTML bodies go to the blob store, where
        identical bytes are stored once however many URLs point at them.
        The blob is in place before the record that references it commits.
        ``final_url`` is where redirects ended, kept as the base for the
        body's relative links.
        """
        digest = content_hash(body)
        existing = self.get(url)
        if (
            existing is not None
            and existing.content_hash == digest
            and existing.http_status == status
        ):
            return StoreOutcome(record=existing, changed=False)

        content_type = _content_type(url, headers)
        blob_reused = False
        if is_html(content_type):
            storage_ref = doc_ref(digest)
            document = body
        else:
            blob_reused = self.has_blob(digest)
            self.put_blob(body)
            storage_ref = blob_ref(digest)
            document = None

        record = ArchiveRecord(
            url=url,
            kind=kind.value,
            content_hash=digest,
            storage_ref=storage_ref,
            content_type=content_type,
            http_status=status,
            size=len(body),
            fetched_at=int(time.time()),
            etag=headers.get("etag"),
            last_modified=headers.get("last-modified"),
            title=title,
            parent=parent,
            final_url=final_url if final_url != url else None,
        )
        self.put(record, document)
        return StoreOutcome(record=record, changed=True, blob_reused=blob_reused)
