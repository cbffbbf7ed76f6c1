"""
Crawler Pipeline Tests

Per-entry failure handling and graceful shutdown, with a stub fetcher.
"""

import asyncio
from typing import Optional

import pytest

from whynot.core.constants import EntryState
from whynot.crawler.fetcher import Fetched, Permanent
from whynot.crawler.tasks import Crawler
from whynot.db.store import ContentStore, StorageError

SITE = "http://127.0.0.1"
INDEX = f"{SITE}/index"
PAGE_A = f"{SITE}/a"
PAGE_B = f"{SITE}/b"

PAGES = {
    INDEX: b'<a href="/a">a</a> <a href="/b">b</a>',
    PAGE_A: b"<p>a</p>",
    PAGE_B: b"<p>b</p>",
}


class StubFetcher:
    """Serves ``pages``; a request for ``hold`` waits until released."""

    def __init__(self, pages: dict[str, bytes], hold: Optional[str] = None):
        self.pages = pages
        self.hold = hold
        self.requested: list[str] = []
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch(self, url, proxy=None, *, etag=None, last_modified=None):
        self.requested.append(url)
        if url == self.hold:
            self.started.set()
            await self.release.wait()
        body = self.pages.get(url)
        if body is None:
            return Permanent(url, "HTTP 404", status=404)
        return Fetched(
            url=url, status=200, headers={"content-type": "text/html"}, body=body
        )


@pytest.mark.asyncio
async def test_storage_failure_fails_only_that_entry(
    store, journal, classifier, monkeypatch
):
    original = ContentStore.store_response

    def store_response(self, url, *args, **kwargs):
        if url == PAGE_B:
            raise StorageError("disk full")
        return original(self, url, *args, **kwargs)

    monkeypatch.setattr(ContentStore, "store_response", store_response)
    crawler = Crawler(store, StubFetcher(PAGES), classifier, journal=journal, workers=2)
    stats = await crawler.run([INDEX])

    assert journal.get(PAGE_B).status == EntryState.FAILED
    assert journal.get(PAGE_A).status == EntryState.DONE
    assert journal.get(INDEX).status == EntryState.DONE
    assert store.get(PAGE_B) is None
    assert store.get(PAGE_A) is not None
    assert stats.failed == 1

    logs = journal.recent_logs()
    assert [(log["url"], log["status"]) for log in logs] == [
        (PAGE_B, "storage_error")
    ]
    assert "disk full" in logs[0]["error_message"]


@pytest.mark.asyncio
async def test_shutdown_finishes_in_flight_and_keeps_pending(
    store, journal, classifier
):
    fetcher = StubFetcher(PAGES, hold=PAGE_A)
    crawler = Crawler(store, fetcher, classifier, journal=journal, workers=1)
    run = asyncio.create_task(crawler.run([INDEX]))

    await asyncio.wait_for(fetcher.started.wait(), timeout=5)
    assert journal.get(PAGE_A).status == EntryState.IN_PROGRESS
    await crawler.request_shutdown()
    fetcher.release.set()
    await asyncio.wait_for(run, timeout=5)

    # The in-flight page was archived; the queued one was never started
    assert store.get(PAGE_A) is not None
    assert PAGE_B not in fetcher.requested
    counts = journal.counts()
    assert counts[EntryState.DONE.value] == 2
    assert counts[EntryState.PENDING.value] == 1
    assert counts[EntryState.IN_PROGRESS.value] == 0
    assert journal.get(PAGE_B).status == EntryState.PENDING

    assert journal.start_run() is True
    assert [item.url for item in journal.pending()] == [PAGE_B]


@pytest.mark.asyncio
async def test_closed_frontier_hands_out_nothing(store, journal, classifier):
    fetcher = StubFetcher(PAGES)
    crawler = Crawler(store, fetcher, classifier, journal=journal, workers=3)
    await crawler.request_shutdown()
    await crawler.run([INDEX])

    assert fetcher.requested == []
    assert journal.get(INDEX).status == EntryState.PENDING
