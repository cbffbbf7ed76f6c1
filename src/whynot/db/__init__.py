"""
Archive storage: records, content-addressed blobs and crawl state.
"""

from whynot.db.records import ArchiveRecord
from whynot.db.store import ContentStore, StorageError, StoreOutcome
from whynot.db.crawl_state import CrawlState, UrlItem

__all__ = [
    "ArchiveRecord",
    "ContentStore",
    "StorageError",
    "StoreOutcome",
    "CrawlState",
    "UrlItem",
]
