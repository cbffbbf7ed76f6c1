"""
Test configuration and fixtures for whynot tests
"""

import os

# Set ENVIRONMENT before importing any modules that read settings
os.environ.setdefault("ENVIRONMENT", "test")

from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

import pytest
from aiohttp import web

from whynot.crawler.classifier import Classifier, ClassifierRules
from whynot.db.crawl_state import CrawlState
from whynot.db.store import ContentStore

# Smallest valid PNG: 1x1 transparent pixel
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)


@dataclass
class FakePage:
    body: bytes
    content_type: str = "text/html; charset=utf-8"
    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)


class FakeSite:
    """
    In-process site served by ``aiohttp.test_utils.TestServer``.

    Counts every request per path. Pages with an ``ETag`` header answer a
    matching ``If-None-Match`` with 304.
    """

    def __init__(self):
        self.pages: dict[str, FakePage] = {}
        self.hits: Counter = Counter()

    def add(
        self,
        path: str,
        body: bytes | str,
        content_type: str = "text/html; charset=utf-8",
        status: int = 200,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.pages[path] = FakePage(body, content_type, status, headers or {})

    async def handle(self, request: web.Request) -> web.Response:
        path = request.rel_url.path_qs
        self.hits[path] += 1
        page = self.pages.get(path)
        if page is None:
            return web.Response(status=404, text="not found")

        etag = page.headers.get("ETag")
        if etag and request.headers.get("If-None-Match") == etag:
            return web.Response(status=304, headers={"ETag": etag})

        headers = {"Content-Type": page.content_type, **page.headers}
        return web.Response(status=page.status, body=page.body, headers=headers)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("GET", "/{tail:.*}", self.handle)
        return app


def site_rules(**overrides) -> ClassifierRules:
    """Classifier table for the fake site on 127.0.0.1."""
    data = {
        "site_hosts": ["127.0.0.1"],
        "list_patterns": [r"^/index$", r"^/list/\d+$"],
        "article_patterns": [r"^/[a-z]$", r"^/articles/"],
        "image_patterns": [r"\.png$"],
        "ignore_patterns": [r"^/private/"],
    }
    data.update(overrides)
    return ClassifierRules.from_dict(data)


@pytest.fixture
def fake_site():
    return FakeSite()


@pytest.fixture
def rules():
    return site_rules()


@pytest.fixture
def classifier(rules):
    return Classifier(rules)


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def store(data_dir):
    return ContentStore(data_dir).open()


@pytest.fixture
def journal(store):
    state = CrawlState(str(store.db_path))
    state.init_db()
    return state
