"""
Frontier - discovered URLs waiting to be crawled

Tiered breadth-first queue plus the run's seen set. Seed and list pages are
always handed out before articles, and articles before images, so
pagination is fully expanded before deep content.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Optional

from whynot.core.constants import EntryState, UrlKind
from whynot.core.utils import normalize_url
from whynot.db.crawl_state import CrawlState

logger = logging.getLogger(__name__)

# Dequeue order; seeds share the list tier
TIERS: tuple[tuple[UrlKind, ...], ...] = (
    (UrlKind.SEED, UrlKind.LIST),
    (UrlKind.ARTICLE,),
    (UrlKind.IMAGE,),
)


@dataclass
class FrontierEntry:
    url: str
    kind: UrlKind
    state: EntryState = EntryState.PENDING
    parent: Optional[str] = None


def _tier_of(kind: UrlKind) -> int:
    for i, kinds in enumerate(TIERS):
        if kind in kinds:
            return i
    raise ValueError(f"Unknown kind: {kind}")


class Frontier:
    """
    Crawl frontier shared by all workers.

    Every method that touches the queues or the seen set holds the
    condition's lock. When a ``CrawlState`` journal is given, additions and
    state changes are persisted so an interrupted run can be resumed.
    """

    def __init__(self, journal: Optional[CrawlState] = None):
        self._journal = journal
        self._queues: list[deque[FrontierEntry]] = [deque() for _ in TIERS]
        self._seen: set[str] = set()
        self._inflight: dict[str, FrontierEntry] = {}
        self._changed = asyncio.Condition()
        self._closed = False

    async def enqueue(
        self, url: str, kind: UrlKind, parent: Optional[str] = None
    ) -> bool:
        """
        Add a URL to the frontier.

        Args:
            url: absolute URL, or relative to ``parent``
            kind: classification of the URL
            parent: URL of the page the link was found on

        Returns:
            True if added, False if not an http(s) URL or already seen
        """
        normalized = normalize_url(parent or url, url)
        if normalized is None:
            return False

        async with self._changed:
            if normalized in self._seen:
                return False
            if self._journal is not None:
                self._journal.add(normalized, kind, parent)
            self._seen.add(normalized)
            self._queues[_tier_of(kind)].append(
                FrontierEntry(url=normalized, kind=kind, parent=parent)
            )
            self._changed.notify()
            return True

    def _pop(self) -> Optional[FrontierEntry]:
        for queue in self._queues:
            if queue:
                return queue.popleft()
        return None

    async def dequeue(self) -> Optional[FrontierEntry]:
        """
        Take the next entry, waiting while other workers may still add work.

        Returns:
            The entry, now ``in_progress``, or None once the frontier is
            drained (empty with nothing in flight) or closed
        """
        async with self._changed:
            while True:
                if self._closed:
                    return None
                entry = self._pop()
                if entry is not None:
                    entry.state = EntryState.IN_PROGRESS
                    self._inflight[entry.url] = entry
                    if self._journal is not None:
                        self._journal.mark(entry.url, EntryState.IN_PROGRESS)
                    return entry
                if not self._inflight:
                    # Drained: wake the other waiters so they exit too
                    self._changed.notify_all()
                    return None
                await self._changed.wait()

    async def complete(
        self,
        entry: FrontierEntry,
        ok: bool,
        http_status: Optional[int] = None,
    ) -> None:
        """Record the outcome of an entry and release it."""
        entry.state = EntryState.DONE if ok else EntryState.FAILED
        async with self._changed:
            try:
                if self._journal is not None:
                    self._journal.mark(entry.url, entry.state, http_status)
            finally:
                self._inflight.pop(entry.url, None)
                self._changed.notify_all()

    async def close(self) -> None:
        """Stop handing out entries. In-flight entries may still complete."""
        async with self._changed:
            self._closed = True
            self._changed.notify_all()

    def restore(self, pending: Iterable[FrontierEntry], seen: Iterable[str]) -> int:
        """
        Load a resumed run: ``seen`` URLs are never re-enqueued and
        ``pending`` entries are queued again. Call before workers start.
        """
        self._seen.update(seen)
        count = 0
        for entry in pending:
            self._seen.add(entry.url)
            entry.state = EntryState.PENDING
            self._queues[_tier_of(entry.kind)].append(entry)
            count += 1
        return count

    @property
    def closed(self) -> bool:
        return self._closed

    def size(self) -> int:
        """Number of queued (not in-flight) entries."""
        return sum(len(q) for q in self._queues)

    def inflight(self) -> int:
        return len(self._inflight)

    def seen_count(self) -> int:
        return len(self._seen)

    def is_seen(self, url: str) -> bool:
        normalized = normalize_url(url, url)
        return normalized is not None and normalized in self._seen
