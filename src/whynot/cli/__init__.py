"""
Command line entry points: ``spider`` and ``web``.
"""

import logging

from whynot.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = settings.LOG_LEVEL) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # Per-request client logs are too noisy at INFO
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
