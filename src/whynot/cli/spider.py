"""
spider - crawl the site once into a data directory

Usage:
    spider [--proxy <url>] [-o|--output <dir>]
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from whynot.cli import setup_logging
from whynot.core.config import settings
from whynot.crawler.spider import run_spider
from whynot.db.store import StorageError

logger = logging.getLogger("whynot.spider")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spider", description="Archive the site into a data directory"
    )
    parser.add_argument(
        "--proxy", default=None, help="HTTP proxy URL used for every request"
    )
    parser.add_argument(
        "-o",
        "--output",
        default=settings.DATA_DIR,
        help=f"Data directory (default: {settings.DATA_DIR})",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        stats = asyncio.run(run_spider(args.output, args.proxy))
    except StorageError as e:
        logger.error(f"Archive unavailable: {e}")
        return 1

    logger.info(f"Done: {stats.summary()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
