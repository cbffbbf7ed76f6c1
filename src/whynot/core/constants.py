"""
Shared constants: on-disk layout, URL kinds and entry states.
"""

from enum import Enum

# <data>/imgs/<hash> and <data>/whynot.db/
BLOB_DIRNAME = "imgs"
DB_DIRNAME = "whynot.db"
DB_FILENAME = "archive.sqlite3"

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")

# Content-addressed responses never change
IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


class UrlKind(str, Enum):
    SEED = "seed"
    LIST = "list"
    ARTICLE = "article"
    IMAGE = "image"


class EntryState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


def is_html(content_type: str | None) -> bool:
    if not content_type:
        return False
    return content_type.split(";", 1)[0].strip().lower() in HTML_CONTENT_TYPES
