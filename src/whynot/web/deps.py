"""
API Dependencies

Per-app objects live on ``app.state`` and are handed to routes through
these dependency functions.
"""

import threading
from typing import Optional

from cachetools import LRUCache
from fastapi import Request

from whynot.core.config import settings
from whynot.db.store import ContentStore
from whynot.web.mirror import MirrorMap
from whynot.web.rewrite import LinkRewriter


class BlobTypes:
    """Content type of each blob, cached since blobs never change."""

    def __init__(self, store: ContentStore, maxsize: int = settings.WEB_BLOB_CACHE_SIZE):
        self.store = store
        self._types: LRUCache[str, str] = LRUCache(maxsize=max(1, maxsize))
        self._lock = threading.Lock()

    def get(self, digest: str) -> Optional[str]:
        with self._lock:
            cached = self._types.get(digest)
        if cached is not None:
            return cached
        content_type = self.store.content_type_for_blob(digest)
        if content_type is not None:
            with self._lock:
                self._types[digest] = content_type
        return content_type


def get_store(request: Request) -> ContentStore:
    return request.app.state.store


def get_mirror(request: Request) -> MirrorMap:
    return request.app.state.mirror


def get_rewriter(request: Request) -> LinkRewriter:
    return request.app.state.rewriter


def get_blob_types(request: Request) -> BlobTypes:
    return request.app.state.blob_types
