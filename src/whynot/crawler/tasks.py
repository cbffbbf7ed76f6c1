"""
Crawler Tasks

Worker pool consuming the frontier. One unit of work is
fetch → parse → persist → enqueue discoveries → mark done.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from whynot.core.config import settings
from whynot.core.constants import UrlKind, is_html
from whynot.crawler.classifier import Classifier
from whynot.crawler.fetcher import Fetcher, Permanent, Retryable
from whynot.crawler.frontier import Frontier, FrontierEntry
from whynot.crawler.parser import ParseResult, parse
from whynot.db.crawl_state import CrawlState
from whynot.db.records import ArchiveRecord
from whynot.db.store import ContentStore, StorageError

logger = logging.getLogger(__name__)


@dataclass
class CrawlStats:
    fetched: int = 0
    stored: int = 0
    unchanged: int = 0
    not_modified: int = 0
    skipped: int = 0
    failed: int = 0
    blobs_reused: int = 0
    discovered: int = 0
    started_at: float = field(default_factory=time.time)

    def summary(self) -> str:
        elapsed = time.time() - self.started_at
        return (
            f"fetched={self.fetched} stored={self.stored} "
            f"unchanged={self.unchanged} not_modified={self.not_modified} "
            f"skipped={self.skipped} failed={self.failed} "
            f"blobs_reused={self.blobs_reused} discovered={self.discovered} "
            f"elapsed={elapsed:.1f}s"
        )


class Crawler:
    """
    Runs one crawl pass over a frontier with a bounded pool of workers.

    The frontier is owned by the crawler and shared by its workers; nothing
    here is module-level state.
    """

    def __init__(
        self,
        store: ContentStore,
        fetcher: Fetcher,
        classifier: Classifier,
        frontier: Optional[Frontier] = None,
        journal: Optional[CrawlState] = None,
        workers: int = settings.CRAWL_WORKERS,
    ):
        self.store = store
        self.fetcher = fetcher
        self.classifier = classifier
        self.journal = journal
        self.frontier = frontier if frontier is not None else Frontier(journal)
        self.workers = max(1, workers)
        self.stats = CrawlStats()

    def _log_failure(
        self,
        url: str,
        status: str,
        http_code: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        if self.journal is not None:
            self.journal.log_attempt(url, status, http_code, error_message)

    async def _parse(
        self, content_type: str, body: bytes, url: str
    ) -> ParseResult:
        if not is_html(content_type):
            return ParseResult()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, parse, content_type, body, url, self.classifier
        )

    def _image_archived(self, record: Optional[ArchiveRecord]) -> bool:
        return (
            record is not None
            and record.is_blob
            and self.store.has_blob(record.content_hash)
        )

    async def process_entry(
        self, entry: FrontierEntry
    ) -> tuple[bool, Optional[int]]:
        """
        Crawl a single frontier entry.

        Returns:
            (ok, http_status) to record on the entry
        """
        url = entry.url
        try:
            existing = self.store.get(url)

            if entry.kind == UrlKind.IMAGE and self._image_archived(existing):
                logger.debug(f"Image already archived: {url}")
                self.stats.skipped += 1
                return True, existing.http_status

            result = await self.fetcher.fetch(
                url,
                etag=existing.etag if existing else None,
                last_modified=existing.last_modified if existing else None,
            )

            if isinstance(result, Retryable):
                logger.warning(
                    f"Giving up on {url} after {result.attempts} attempts: {result.reason}"
                )
                self._log_failure(
                    url,
                    "dead_letter",
                    result.status,
                    f"Max attempts ({result.attempts}) exceeded: {result.reason}",
                )
                self.stats.failed += 1
                return False, result.status

            if isinstance(result, Permanent):
                logger.warning(f"Permanent failure for {url}: {result.reason}")
                self._log_failure(url, "http_error", result.status, result.reason)
                self.stats.failed += 1
                return False, result.status

            self.stats.fetched += 1

            if result.not_modified:
                if existing is None:
                    self._log_failure(url, "http_error", 304, "Unexpected 304")
                    self.stats.failed += 1
                    return False, 304
                # Record stays as is; its stored links still need crawling
                self.stats.not_modified += 1
                body = self.store.read_body(existing) or b""
                parsed = await self._parse(
                    existing.content_type, body, existing.base_url
                )
                status = existing.http_status
            else:
                content_type = result.content_type
                parsed = await self._parse(content_type, result.body, result.base_url)
                outcome = self.store.store_response(
                    url,
                    entry.kind,
                    result.status,
                    result.headers,
                    result.body,
                    parent=entry.parent,
                    title=parsed.title,
                    final_url=result.final_url,
                )
                if outcome.changed:
                    self.stats.stored += 1
                    logger.info(f"Archived {entry.kind.value}: {url}")
                else:
                    self.stats.unchanged += 1
                if outcome.blob_reused:
                    self.stats.blobs_reused += 1
                status = result.status

            await self._enqueue_discoveries(url, parsed)
            return True, status

        except StorageError as e:
            logger.error(f"Storage error for {url}: {e}")
            self._log_failure(url, "storage_error", error_message=str(e))
            self.stats.failed += 1
            return False, None

    async def _enqueue_discoveries(self, url: str, parsed: ParseResult) -> None:
        added = 0
        for link in parsed.links:
            if await self.frontier.enqueue(link.url, link.kind, parent=url):
                added += 1
        for asset in parsed.assets:
            if await self.frontier.enqueue(asset, UrlKind.IMAGE, parent=url):
                added += 1
        if parsed.outlinks:
            self.store.add_links(url, parsed.outlinks)
        self.stats.discovered += added
        if added:
            logger.debug(f"Enqueued {added} URLs from {url}")

    async def _worker(self, worker_id: int) -> None:
        logger.debug(f"Worker {worker_id} started")
        while True:
            entry = await self.frontier.dequeue()
            if entry is None:
                break

            ok, http_status = False, None
            try:
                ok, http_status = await self.process_entry(entry)
            except Exception as e:
                logger.error(f"Unexpected error processing {entry.url}: {e}", exc_info=True)
                self.stats.failed += 1
            finally:
                try:
                    await self.frontier.complete(entry, ok, http_status)
                except StorageError as e:
                    logger.error(f"Could not record outcome for {entry.url}: {e}")
        logger.debug(f"Worker {worker_id} stopped")

    async def run(self, seeds: Iterable[str] = ()) -> CrawlStats:
        """
        Enqueue ``seeds`` and crawl until the frontier is drained or closed.

        Entries restored into the frontier beforehand are crawled as well.
        """
        for seed in seeds:
            await self.frontier.enqueue(seed, UrlKind.SEED)

        logger.info(
            f"Crawl started: workers={self.workers} queued={self.frontier.size()}"
        )
        tasks = [
            asyncio.create_task(self._worker(i)) for i in range(self.workers)
        ]
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Crawl cancelled")
            for task in tasks:
                task.cancel()
            raise

        logger.info(f"Crawl finished: {self.stats.summary()}")
        return self.stats

    async def request_shutdown(self) -> None:
        """Stop dequeuing; in-flight entries finish and are persisted."""
        if not self.frontier.closed:
            logger.info("Shutdown requested, finishing in-flight entries")
        await self.frontier.close()
