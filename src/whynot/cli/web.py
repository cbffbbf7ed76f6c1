"""
web - serve an archive directory as a browsable mirror

Usage:
    web [-a|--addr <host:port>] [-d|--data <dir>]
"""

import argparse
import logging
import sys
from typing import Optional, Sequence

import uvicorn

from whynot.cli import setup_logging
from whynot.core.config import settings
from whynot.db.store import StorageError
from whynot.web.main import create_app

logger = logging.getLogger("whynot.web")


def parse_addr(value: str) -> tuple[str, int]:
    """
    Split ``host:port``. IPv6 hosts are bracketed: ``[::1]:3334``.

    Raises:
        ValueError: missing host or invalid port
    """
    if value.startswith("["):
        host, sep, rest = value[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"Invalid address: {value}")
        port_text = rest[1:]
    else:
        host, sep, port_text = value.rpartition(":")
        if not sep:
            raise ValueError(f"Invalid address: {value}")
    if not host:
        raise ValueError(f"Missing host in address: {value}")
    if not port_text.isdigit() or not 0 < int(port_text) < 65536:
        raise ValueError(f"Invalid port in address: {value}")
    return host, int(port_text)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="web", description="Serve an archive as a browsable mirror"
    )
    parser.add_argument(
        "-a",
        "--addr",
        default=settings.WEB_ADDR,
        help=f"Listen address host:port (default: {settings.WEB_ADDR})",
    )
    parser.add_argument(
        "-d",
        "--data",
        default=settings.DATA_DIR,
        help=f"Data directory (default: {settings.DATA_DIR})",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        host, port = parse_addr(args.addr)
    except ValueError as e:
        parser.error(str(e))
    setup_logging()

    try:
        app = create_app(args.data)
    except StorageError as e:
        logger.error(f"Archive unavailable: {e}")
        return 1

    logger.info(f"Listening on http://{args.addr}")
    uvicorn.run(app, host=host, port=port, log_level=settings.LOG_LEVEL.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
