"""
Spider

One crawl pass of the target site into a data directory. Opens the
archive, resumes an interrupted run if there is one, and drives the
worker pool until the frontier drains or a shutdown signal arrives.
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Iterable, Optional

import aiohttp

from whynot.core.config import settings
from whynot.core.utils import normalize_url
from whynot.crawler.classifier import Classifier, ClassifierRules, load_rules
from whynot.crawler.fetcher import Fetcher
from whynot.crawler.frontier import Frontier, FrontierEntry
from whynot.crawler.scheduler import HostThrottle, SchedulerConfig
from whynot.crawler.tasks import Crawler, CrawlStats
from whynot.db.crawl_state import CrawlState
from whynot.db.store import ContentStore

logger = logging.getLogger(__name__)


def resolve_seeds(site_url: str, seeds: Iterable[str]) -> list[str]:
    """Seed paths or URLs resolved against the site root."""
    resolved = []
    for seed in seeds:
        url = normalize_url(site_url, seed)
        if url is None:
            logger.warning(f"Ignoring invalid seed: {seed}")
            continue
        if url not in resolved:
            resolved.append(url)
    return resolved


def _restore(frontier: Frontier, journal: CrawlState) -> None:
    pending = [
        FrontierEntry(url=item.url, kind=item.kind, parent=item.parent)
        for item in journal.pending()
    ]
    restored = frontier.restore(pending, journal.seen_urls())
    logger.info(
        f"Restored {restored} pending URLs ({frontier.seen_count()} already seen)"
    )


def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop, crawler: Crawler, pending: set
) -> list[signal.Signals]:
    def _stop() -> None:
        task = loop.create_task(crawler.request_shutdown())
        pending.add(task)
        task.add_done_callback(pending.discard)

    installed = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _stop)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Cannot install handler for {sig.name}")
    return installed


async def run_spider(
    output: str | Path,
    proxy: Optional[str] = None,
    *,
    site_url: Optional[str] = None,
    seeds: Optional[Iterable[str]] = None,
    rules: Optional[ClassifierRules] = None,
    workers: int = settings.CRAWL_WORKERS,
    throttle_config: Optional[SchedulerConfig] = None,
    max_attempts: int = settings.CRAWL_MAX_ATTEMPTS,
    backoff_base: float = settings.CRAWL_BACKOFF_BASE_SEC,
    verify_tls: bool = settings.CRAWL_VERIFY_TLS,
    handle_signals: bool = True,
) -> CrawlStats:
    """
    Crawl the site into ``output``.

    Args:
        output: data directory (``imgs/`` and ``whynot.db/`` are created)
        proxy: optional HTTP proxy URL for every request
        site_url: primary site, defaults to ``WHYNOT_SITE_URL``
        seeds: seed paths or URLs, defaults to ``WHYNOT_SEEDS``
        rules: classifier table, defaults to ``WHYNOT_RULES_FILE`` or the
            built-in rules for the site
        workers: worker pool size
        throttle_config: per-host politeness settings
        max_attempts: fetch attempts per URL
        backoff_base: base of the exponential retry wait
        verify_tls: False accepts invalid certificates
        handle_signals: close the frontier on SIGINT/SIGTERM

    Raises:
        StorageError: the archive cannot be opened or is corrupt
    """
    site_url = site_url or settings.SITE_URL
    store = ContentStore(output).open()

    journal = CrawlState(str(store.db_path))
    journal.init_db()
    resumed = journal.start_run()

    if rules is None:
        rules = load_rules(settings.RULES_FILE, site_url, settings.ASSET_HOSTS)
    classifier = Classifier(rules)

    frontier = Frontier(journal)
    if resumed:
        _restore(frontier, journal)

    seed_urls = resolve_seeds(
        site_url, seeds if seeds is not None else settings.SEEDS
    )
    throttle = HostThrottle(
        throttle_config
        or SchedulerConfig(
            domain_min_interval=settings.CRAWL_DOMAIN_MIN_INTERVAL,
            domain_max_concurrent=settings.CRAWL_DOMAIN_MAX_CONCURRENT,
        )
    )

    connector = aiohttp.TCPConnector(
        ssl=verify_tls,
        ttl_dns_cache=300,
        enable_cleanup_closed=True,
    )
    if proxy:
        logger.info(f"Using proxy {proxy}")

    async with aiohttp.ClientSession(
        headers={"User-Agent": settings.CRAWL_USER_AGENT}, connector=connector
    ) as session:
        fetcher = Fetcher(
            session,
            throttle=throttle,
            proxy=proxy,
            max_attempts=max_attempts,
            backoff_base=backoff_base,
        )
        crawler = Crawler(
            store,
            fetcher,
            classifier,
            frontier=frontier,
            journal=journal,
            workers=workers,
        )

        loop = asyncio.get_running_loop()
        shutdown_tasks: set = set()
        installed = (
            _install_signal_handlers(loop, crawler, shutdown_tasks)
            if handle_signals
            else []
        )
        try:
            stats = await crawler.run(seed_urls)
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

    counts = journal.counts()
    logger.info(
        f"Crawl state: {counts} records={store.count()} blobs={store.blobs.count()}"
    )
    return stats
