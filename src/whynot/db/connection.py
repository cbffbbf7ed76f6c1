"""
SQLite connection helpers.

Every store opens a short-lived connection per operation and closes it in a
``finally`` block; WAL mode lets the web server read while the spider writes.
"""

import sqlite3
from pathlib import Path

from whynot.core.constants import DB_DIRNAME, DB_FILENAME

BUSY_TIMEOUT_SEC = 30


def db_path_for(data_dir: str | Path) -> Path:
    """Database file inside ``<data>/whynot.db/``."""
    return Path(data_dir) / DB_DIRNAME / DB_FILENAME


def get_connection(db_path: str | Path) -> sqlite3.Connection:
    con = sqlite3.connect(str(db_path), timeout=BUSY_TIMEOUT_SEC)
    con.execute("PRAGMA foreign_keys=ON")
    return con


def init_schema(db_path: str | Path, schema: str) -> None:
    """Create the parent directory and apply ``schema`` in WAL mode."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    con = get_connection(db_path)
    try:
        con.execute("PRAGMA journal_mode=WAL")
        con.executescript(schema)
    finally:
        con.close()


def quick_check(db_path: str | Path) -> str:
    """Run ``PRAGMA quick_check`` and return its first result row."""
    con = get_connection(db_path)
    try:
        row = con.execute("PRAGMA quick_check").fetchone()
        return row[0] if row else "no result"
    finally:
        con.close()


def add_missing_columns(
    db_path: str | Path, table: str, columns: dict[str, str]
) -> list[str]:
    """Add nullable ``columns`` (name -> type) absent from an older ``table``."""
    con = get_connection(db_path)
    try:
        existing = {row[1] for row in con.execute(f"PRAGMA table_info({table})")}
        added = [name for name in columns if name not in existing]
        with con:
            for name in added:
                con.execute(f"ALTER TABLE {table} ADD COLUMN {name} {columns[name]}")
        return added
    finally:
        con.close()
