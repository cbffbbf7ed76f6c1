"""
Archive Records - URL → record mapping

One row per archived URL. HTML bodies live next to the records in the
``documents`` table, keyed by content hash, so a record and its body are
committed in the same transaction.
"""

import sqlite3
from dataclasses import dataclass, fields
from typing import Iterable, Optional

from whynot.core.constants import UrlKind
from whynot.db.connection import add_missing_columns, get_connection, init_schema

DOC_REF_PREFIX = "doc:"
BLOB_REF_PREFIX = "blob:"

# SQLite default SQLITE_MAX_VARIABLE_NUMBER is 999 on older builds
_IN_CHUNK = 500


@dataclass(frozen=True)
class ArchiveRecord:
    url: str
    kind: str
    content_hash: str
    storage_ref: str
    content_type: str
    http_status: int
    size: int
    fetched_at: int
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    title: Optional[str] = None
    parent: Optional[str] = None
    # Set when the fetch was redirected; relative links resolve against it
    final_url: Optional[str] = None

    @property
    def base_url(self) -> str:
        return self.final_url or self.url

    @property
    def is_document(self) -> bool:
        return self.storage_ref.startswith(DOC_REF_PREFIX)

    @property
    def is_blob(self) -> bool:
        return self.storage_ref.startswith(BLOB_REF_PREFIX)


COLUMNS = tuple(f.name for f in fields(ArchiveRecord))
_SELECT = f"SELECT {', '.join(COLUMNS)} FROM records"


SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    url TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    storage_ref TEXT NOT NULL,
    content_type TEXT NOT NULL,
    http_status INTEGER NOT NULL,
    size INTEGER NOT NULL,
    fetched_at INTEGER NOT NULL,
    etag TEXT,
    last_modified TEXT,
    title TEXT,
    parent TEXT,
    final_url TEXT
) WITHOUT ROWID;

CREATE INDEX IF NOT EXISTS idx_records_kind_fetched ON records(kind, fetched_at);
CREATE INDEX IF NOT EXISTS idx_records_hash ON records(content_hash);

CREATE TABLE IF NOT EXISTS documents (
    content_hash TEXT PRIMARY KEY,
    body BLOB NOT NULL
) WITHOUT ROWID;

CREATE TABLE IF NOT EXISTS links (
    src TEXT NOT NULL,
    dst TEXT NOT NULL,
    PRIMARY KEY (src, dst)
) WITHOUT ROWID;
CREATE INDEX IF NOT EXISTS idx_links_dst ON links(dst);
"""


def doc_ref(content_hash: str) -> str:
    return f"{DOC_REF_PREFIX}{content_hash}"


def blob_ref(content_hash: str) -> str:
    return f"{BLOB_REF_PREFIX}{content_hash}"


def _row_to_record(row: tuple) -> ArchiveRecord:
    return ArchiveRecord(**dict(zip(COLUMNS, row)))


class RecordStore:
    """Storage interface for archive records."""

    def put(self, record: ArchiveRecord, body: bytes | None = None) -> None:
        raise NotImplementedError

    def get(self, url: str) -> Optional[ArchiveRecord]:
        raise NotImplementedError

    def get_many(self, urls: Iterable[str]) -> dict[str, ArchiveRecord]:
        raise NotImplementedError

    def get_document(self, content_hash: str) -> Optional[bytes]:
        raise NotImplementedError


class SqliteRecordStore(RecordStore):
    """
    SQLite-backed record store.

    ``put`` is a single transaction: readers observe either the previous row
    or the new one.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def init_db(self) -> None:
        init_schema(self.db_path, SCHEMA)
        add_missing_columns(self.db_path, "records", {"final_url": "TEXT"})

    def put(self, record: ArchiveRecord, body: bytes | None = None) -> None:
        placeholders = ", ".join("?" * len(COLUMNS))
        updates = ", ".join(f"{c} = excluded.{c}" for c in COLUMNS if c != "url")
        con = get_connection(self.db_path)
        try:
            with con:
                if body is not None:
                    con.execute(
                        "INSERT OR IGNORE INTO documents (content_hash, body) VALUES (?, ?)",
                        (record.content_hash, sqlite3.Binary(body)),
                    )
                con.execute(
                    f"""
                    INSERT INTO records ({', '.join(COLUMNS)})
                    VALUES ({placeholders})
                    ON CONFLICT(url) DO UPDATE SET {updates}
                    """,
                    tuple(getattr(record, c) for c in COLUMNS),
                )
        finally:
            con.close()

    def get(self, url: str) -> Optional[ArchiveRecord]:
        con = get_connection(self.db_path)
        try:
            row = con.execute(f"{_SELECT} WHERE url = ?", (url,)).fetchone()
            return _row_to_record(row) if row else None
        finally:
            con.close()

    def get_many(self, urls: Iterable[str]) -> dict[str, ArchiveRecord]:
        """Look up many URLs at once; missing URLs are simply absent."""
        wanted = list(dict.fromkeys(urls))
        found: dict[str, ArchiveRecord] = {}
        if not wanted:
            return found

        con = get_connection(self.db_path)
        try:
            for i in range(0, len(wanted), _IN_CHUNK):
                chunk = wanted[i : i + _IN_CHUNK]
                ph = ",".join("?" * len(chunk))
                for row in con.execute(f"{_SELECT} WHERE url IN ({ph})", chunk):
                    record = _row_to_record(row)
                    found[record.url] = record
            return found
        finally:
            con.close()

    def get_document(self, content_hash: str) -> Optional[bytes]:
        con = get_connection(self.db_path)
        try:
            row = con.execute(
                "SELECT body FROM documents WHERE content_hash = ?", (content_hash,)
            ).fetchone()
            return bytes(row[0]) if row else None
        finally:
            con.close()

    def content_type_for_hash(self, content_hash: str) -> Optional[str]:
        """Content type of any record pointing at ``content_hash``."""
        con = get_connection(self.db_path)
        try:
            row = con.execute(
                "SELECT content_type FROM records WHERE content_hash = ? "
                "ORDER BY fetched_at LIMIT 1",
                (content_hash,),
            ).fetchone()
            return row[0] if row else None
        finally:
            con.close()

    def count(self, kind: UrlKind | None = None) -> int:
        con = get_connection(self.db_path)
        try:
            if kind is None:
                cur = con.execute("SELECT COUNT(*) FROM records")
            else:
                cur = con.execute(
                    "SELECT COUNT(*) FROM records WHERE kind = ?", (kind.value,)
                )
            return cur.fetchone()[0]
        finally:
            con.close()

    def list_recent(
        self, kind: UrlKind, offset: int = 0, limit: int = 20
    ) -> list[ArchiveRecord]:
        """Records of one kind, newest first."""
        con = get_connection(self.db_path)
        try:
            cur = con.execute(
                f"{_SELECT} WHERE kind = ? ORDER BY fetched_at DESC, url LIMIT ? OFFSET ?",
                (kind.value, limit, offset),
            )
            return [_row_to_record(row) for row in cur.fetchall()]
        finally:
            con.close()

    def all_records(self) -> list[ArchiveRecord]:
        con = get_connection(self.db_path)
        try:
            cur = con.execute(f"{_SELECT} ORDER BY url")
            return [_row_to_record(row) for row in cur.fetchall()]
        finally:
            con.close()

    def add_links(self, src: str, dsts: Iterable[str]) -> int:
        """Record out-links discovered on ``src``. Returns number of new rows."""
        rows = [(src, dst) for dst in dict.fromkeys(dsts)]
        if not rows:
            return 0
        con = get_connection(self.db_path)
        try:
            with con:
                before = con.total_changes
                con.executemany(
                    "INSERT OR IGNORE INTO links (src, dst) VALUES (?, ?)", rows
                )
                return con.total_changes - before
        finally:
            con.close()

    def links_from(self, src: str) -> list[str]:
        con = get_connection(self.db_path)
        try:
            cur = con.execute(
                "SELECT dst FROM links WHERE src = ? ORDER BY dst", (src,)
            )
            return [row[0] for row in cur.fetchall()]
        finally:
            con.close()
