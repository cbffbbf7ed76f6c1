"""
Fetcher Tests

Outcome types, retry behaviour, conditional requests and size limits,
against an in-process aiohttp server and a mocked session.
"""

import asyncio
from unittest.mock import MagicMock

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from whynot.crawler.fetcher import (
    Fetched,
    Fetcher,
    Permanent,
    Retryable,
    conditional_headers,
)
from whynot.crawler.scheduler import HostThrottle, SchedulerConfig


def _throttle():
    return HostThrottle(SchedulerConfig(domain_min_interval=0))


@pytest_asyncio.fixture
async def server():
    state = {"flaky": 0}

    async def ok(request):
        return web.Response(
            body=b"<html>ok</html>",
            headers={"Content-Type": "text/html", "ETag": '"v1"'},
        )

    async def conditional(request):
        if request.headers.get("If-None-Match") == '"v1"':
            return web.Response(status=304)
        return web.Response(body=b"fresh", headers={"ETag": '"v1"'})

    async def missing(request):
        return web.Response(status=404)

    async def broken(request):
        return web.Response(status=503)

    async def flaky(request):
        state["flaky"] += 1
        if state["flaky"] < 3:
            return web.Response(status=502)
        return web.Response(body=b"finally")

    async def big(request):
        return web.Response(body=b"x" * 1000)

    async def redirect(request):
        raise web.HTTPFound("/ok")

    app = web.Application()
    app.router.add_get("/ok", ok)
    app.router.add_get("/conditional", conditional)
    app.router.add_get("/missing", missing)
    app.router.add_get("/broken", broken)
    app.router.add_get("/flaky", flaky)
    app.router.add_get("/big", big)
    app.router.add_get("/redirect", redirect)

    srv = TestServer(app)
    await srv.start_server()
    srv.state = state
    yield srv
    await srv.close()


@pytest_asyncio.fixture
async def session():
    async with aiohttp.ClientSession() as s:
        yield s


def _fetcher(session, **kwargs):
    kwargs.setdefault("throttle", _throttle())
    kwargs.setdefault("backoff_base", 0)
    return Fetcher(session, **kwargs)


@pytest.mark.asyncio
async def test_fetch_ok(server, session):
    result = await _fetcher(session).fetch(str(server.make_url("/ok")))
    assert isinstance(result, Fetched)
    assert result.status == 200
    assert result.body == b"<html>ok</html>"
    assert result.content_type == "text/html"
    assert result.headers["etag"] == '"v1"'
    assert not result.not_modified
    assert result.final_url is None
    assert result.base_url == str(server.make_url("/ok"))


@pytest.mark.asyncio
async def test_fetch_follows_redirects(server, session):
    result = await _fetcher(session).fetch(str(server.make_url("/redirect")))
    assert isinstance(result, Fetched)
    assert result.final_url == str(server.make_url("/ok"))
    assert result.base_url == result.final_url
    assert result.body == b"<html>ok</html>"


@pytest.mark.asyncio
async def test_not_found_is_permanent(server, session):
    result = await _fetcher(session).fetch(str(server.make_url("/missing")))
    assert isinstance(result, Permanent)
    assert result.status == 404


@pytest.mark.asyncio
async def test_server_errors_retry_until_exhausted(server, session):
    result = await _fetcher(session, max_attempts=3).fetch(
        str(server.make_url("/broken"))
    )
    assert isinstance(result, Retryable)
    assert result.status == 503
    assert result.attempts == 3


@pytest.mark.asyncio
async def test_transient_errors_recover(server, session):
    result = await _fetcher(session, max_attempts=3).fetch(
        str(server.make_url("/flaky"))
    )
    assert isinstance(result, Fetched)
    assert result.body == b"finally"
    assert server.state["flaky"] == 3


@pytest.mark.asyncio
async def test_conditional_request_gives_not_modified(server, session):
    url = str(server.make_url("/conditional"))
    fetcher = _fetcher(session)

    fresh = await fetcher.fetch(url)
    assert fresh.status == 200

    result = await fetcher.fetch(url, etag=fresh.headers["etag"])
    assert isinstance(result, Fetched)
    assert result.not_modified
    assert result.body == b""


@pytest.mark.asyncio
async def test_oversized_response_is_permanent(server, session):
    result = await _fetcher(session, max_response_size=100).fetch(
        str(server.make_url("/big"))
    )
    assert isinstance(result, Permanent)
    assert "100" in result.reason or "1000" in result.reason


def _mock_session(status=200, headers=None, chunks=(b"hello",)):
    session = MagicMock()
    response = MagicMock()
    response.status = status
    response.headers = headers or {"Content-Type": "text/plain"}
    response.history = ()

    async def iter_chunked(size):
        for chunk in chunks:
            yield chunk

    response.content.iter_chunked = iter_chunked
    session.get.return_value.__aenter__.return_value = response
    return session


@pytest.mark.asyncio
async def test_proxy_is_passed_to_session():
    session = _mock_session()
    fetcher = _fetcher(session, proxy="http://proxy.local:3128")
    result = await fetcher.fetch("http://example.com/")

    assert isinstance(result, Fetched)
    assert result.body == b"hello"
    assert session.get.call_args.kwargs["proxy"] == "http://proxy.local:3128"


@pytest.mark.asyncio
async def test_proxy_argument_overrides_default():
    session = _mock_session()
    fetcher = _fetcher(session, proxy="http://default:1")
    await fetcher.fetch("http://example.com/", proxy="http://override:2")
    assert session.get.call_args.kwargs["proxy"] == "http://override:2"


@pytest.mark.asyncio
async def test_validators_become_conditional_headers():
    session = _mock_session()
    await _fetcher(session).fetch(
        "http://example.com/",
        etag='"abc"',
        last_modified="Wed, 01 Jan 2025 00:00:00 GMT",
    )
    headers = session.get.call_args.kwargs["headers"]
    assert headers["If-None-Match"] == '"abc"'
    assert headers["If-Modified-Since"] == "Wed, 01 Jan 2025 00:00:00 GMT"


@pytest.mark.asyncio
async def test_body_over_limit_while_streaming():
    session = _mock_session(chunks=(b"a" * 60, b"b" * 60))
    result = await _fetcher(session, max_response_size=100).fetch("http://example.com/")
    assert isinstance(result, Permanent)


@pytest.mark.asyncio
async def test_connection_error_is_retryable():
    session = MagicMock()
    session.get.side_effect = aiohttp.ClientConnectionError("refused")
    result = await _fetcher(session, max_attempts=2).fetch("http://example.com/")
    assert isinstance(result, Retryable)
    assert result.attempts == 2
    assert session.get.call_count == 2


@pytest.mark.asyncio
async def test_timeout_is_retryable():
    session = MagicMock()
    session.get.side_effect = asyncio.TimeoutError()
    result = await _fetcher(session, max_attempts=1).fetch("http://example.com/")
    assert isinstance(result, Retryable)
    assert result.reason == "timeout"


@pytest.mark.asyncio
async def test_failures_back_off_the_host():
    session = MagicMock()
    session.get.side_effect = aiohttp.ClientConnectionError("refused")
    throttle = _throttle()
    await _fetcher(session, throttle=throttle, max_attempts=1).fetch(
        "http://example.com/"
    )
    assert throttle._get_gate("example.com").fail_streak == 1


def test_conditional_headers():
    assert conditional_headers() == {}
    assert conditional_headers(etag='"x"') == {"If-None-Match": '"x"'}
