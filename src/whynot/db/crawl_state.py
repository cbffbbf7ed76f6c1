"""
Crawl State - persisted seen set and frontier entry states

Manages the URL lifecycle of one crawl run: pending → in_progress →
done/failed, plus the failure log. A run that is interrupted leaves
pending/in_progress rows behind, and the next run resumes from them.
"""

import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Optional

from whynot.core.constants import EntryState, UrlKind
from whynot.core.utils import url_hash
from whynot.db.connection import get_connection, init_schema
from whynot.db.store import StorageError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS urls (
    url_hash TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    kind TEXT NOT NULL,
    parent TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    http_status INTEGER,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_urls_status ON urls(status);

CREATE TABLE IF NOT EXISTS crawl_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL,
    status TEXT NOT NULL,
    http_code INTEGER,
    error_message TEXT,
    created_at INTEGER DEFAULT (strftime('%s', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_crawl_logs_url ON crawl_logs(url);
CREATE INDEX IF NOT EXISTS idx_crawl_logs_created ON crawl_logs(created_at);
"""

UNFINISHED = (EntryState.PENDING.value, EntryState.IN_PROGRESS.value)


@dataclass
class UrlItem:
    url: str
    kind: UrlKind
    parent: Optional[str]
    status: EntryState


class CrawlState:
    """
    Persisted crawl run state.

    Lives in the archive database next to the records. All methods raise
    ``StorageError`` on SQLite failures.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _run(self, fn, *args) -> Any:
        con = get_connection(self.db_path)
        try:
            with con:
                return fn(con, *args)
        except sqlite3.Error as e:
            raise StorageError(f"Crawl state error: {e}") from e
        finally:
            con.close()

    def init_db(self) -> None:
        try:
            init_schema(self.db_path, SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot initialise crawl state: {e}") from e

    def start_run(self) -> bool:
        """
        Prepare the table for a crawl run.

        Returns:
            True if an interrupted run is being resumed, False for a fresh run
        """

        def _start(con: sqlite3.Connection) -> bool:
            placeholders = ",".join("?" * len(UNFINISHED))
            unfinished = con.execute(
                f"SELECT COUNT(*) FROM urls WHERE status IN ({placeholders})",
                UNFINISHED,
            ).fetchone()[0]
            if unfinished:
                con.execute(
                    "UPDATE urls SET status = ?, updated_at = ? WHERE status = ?",
                    (
                        EntryState.PENDING.value,
                        int(time.time()),
                        EntryState.IN_PROGRESS.value,
                    ),
                )
                return True
            con.execute("DELETE FROM urls")
            return False

        resumed = self._run(_start)
        if resumed:
            logger.info("Resuming interrupted crawl run")
        return resumed

    def add(self, url: str, kind: UrlKind, parent: Optional[str] = None) -> bool:
        """
        Add a URL to the run's seen set.

        Returns:
            True if added, False if already present
        """
        now = int(time.time())

        def _add(con: sqlite3.Connection) -> bool:
            cur = con.execute(
                """
                INSERT OR IGNORE INTO urls (url_hash, url, kind, parent, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    url_hash(url),
                    url,
                    kind.value,
                    parent,
                    EntryState.PENDING.value,
                    now,
                    now,
                ),
            )
            return cur.rowcount > 0

        return self._run(_add)

    def mark(
        self, url: str, state: EntryState, http_status: Optional[int] = None
    ) -> None:
        def _mark(con: sqlite3.Connection) -> None:
            con.execute(
                """
                UPDATE urls SET status = ?, http_status = COALESCE(?, http_status), updated_at = ?
                WHERE url_hash = ?
                """,
                (state.value, http_status, int(time.time()), url_hash(url)),
            )

        self._run(_mark)

    def seen_urls(self) -> list[str]:
        """Every URL of the current run, in discovery order."""
        return self._run(
            lambda con: [
                row[0] for row in con.execute("SELECT url FROM urls ORDER BY rowid")
            ]
        )

    def pending(self) -> list[UrlItem]:
        """Unfinished entries in discovery order."""

        def _pending(con: sqlite3.Connection) -> list[UrlItem]:
            cur = con.execute(
                "SELECT url, kind, parent, status FROM urls WHERE status = ? ORDER BY rowid",
                (EntryState.PENDING.value,),
            )
            return [
                UrlItem(
                    url=row[0],
                    kind=UrlKind(row[1]),
                    parent=row[2],
                    status=EntryState(row[3]),
                )
                for row in cur.fetchall()
            ]

        return self._run(_pending)

    def get(self, url: str) -> Optional[UrlItem]:
        def _get(con: sqlite3.Connection) -> Optional[UrlItem]:
            row = con.execute(
                "SELECT url, kind, parent, status FROM urls WHERE url_hash = ?",
                (url_hash(url),),
            ).fetchone()
            if not row:
                return None
            return UrlItem(
                url=row[0],
                kind=UrlKind(row[1]),
                parent=row[2],
                status=EntryState(row[3]),
            )

        return self._run(_get)

    def counts(self) -> dict[str, int]:
        """Number of URLs per state."""

        def _counts(con: sqlite3.Connection) -> dict[str, int]:
            result = {state.value: 0 for state in EntryState}
            for status, cnt in con.execute(
                "SELECT status, COUNT(*) FROM urls GROUP BY status"
            ):
                result[status] = cnt
            return result

        return self._run(_counts)

    # --- failure log ---

    def log_attempt(
        self,
        url: str,
        status: str,
        http_code: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Append one row to the crawl log."""
        self._run(
            lambda con: con.execute(
                "INSERT INTO crawl_logs (url, status, http_code, error_message) VALUES (?, ?, ?, ?)",
                (url, status, http_code, error_message),
            )
        )

    def recent_logs(self, limit: int = 50) -> list[dict[str, Any]]:
        def _recent(con: sqlite3.Connection) -> list[dict[str, Any]]:
            cur = con.execute(
                """
                SELECT url, status, http_code, error_message, created_at
                FROM crawl_logs ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            )
            columns = ["url", "status", "http_code", "error_message", "created_at"]
            return [dict(zip(columns, row)) for row in cur.fetchall()]

        return self._run(_recent)
