"""
Fetcher

HTTP GET with timeout, optional proxy, conditional requests and retries.
Every outcome is a value: ``Fetched``, ``Retryable`` or ``Permanent``.
Retries are driven by tenacity on the result type, with exponential
backoff, and each attempt goes through the host throttle.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Optional, Union

import aiohttp
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from whynot.core.config import settings
from whynot.core.utils import get_domain
from whynot.crawler.scheduler import HostThrottle

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class Fetched:
    url: str
    status: int
    # Lowercased header names
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    # Where redirects ended; None when the request was not redirected
    final_url: Optional[str] = None

    @property
    def base_url(self) -> str:
        """URL relative references in the body resolve against."""
        return self.final_url or self.url

    @property
    def not_modified(self) -> bool:
        return self.status == 304

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


@dataclass(frozen=True)
class Retryable:
    url: str
    reason: str
    status: Optional[int] = None
    attempts: int = 1


@dataclass(frozen=True)
class Permanent:
    url: str
    reason: str
    status: Optional[int] = None


FetchResult = Union[Fetched, Retryable, Permanent]


def _is_retryable(result: FetchResult) -> bool:
    return isinstance(result, Retryable)


def _give_up(retry_state: RetryCallState) -> FetchResult:
    """Return the last ``Retryable`` instead of raising ``RetryError``."""
    result = retry_state.outcome.result()
    return replace(result, attempts=retry_state.attempt_number)


def _log_retry(retry_state: RetryCallState) -> None:
    result = retry_state.outcome.result()
    logger.warning(
        f"Retrying {result.url} in {retry_state.next_action.sleep:.1f}s "
        f"(attempt {retry_state.attempt_number}): {result.reason}"
    )


def conditional_headers(
    etag: Optional[str] = None, last_modified: Optional[str] = None
) -> dict[str, str]:
    headers = {}
    if etag:
        headers["If-None-Match"] = etag
    if last_modified:
        headers["If-Modified-Since"] = last_modified
    return headers


class Fetcher:
    """
    Fetches URLs through a shared ``aiohttp.ClientSession``.

    Transient failures (timeouts, connection errors, 5xx) are retried up to
    ``max_attempts`` times; 4xx and oversized responses are permanent.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        throttle: Optional[HostThrottle] = None,
        proxy: Optional[str] = None,
        timeout: float = settings.CRAWL_TIMEOUT_SEC,
        max_attempts: int = settings.CRAWL_MAX_ATTEMPTS,
        backoff_base: float = settings.CRAWL_BACKOFF_BASE_SEC,
        backoff_max: float = settings.CRAWL_BACKOFF_MAX_SEC,
        max_response_size: int = settings.CRAWL_MAX_RESPONSE_BYTES,
    ):
        self.session = session
        self.throttle = throttle if throttle is not None else HostThrottle()
        self.proxy = proxy
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.max_response_size = max_response_size

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            retry=retry_if_result(_is_retryable),
            retry_error_callback=_give_up,
            before_sleep=_log_retry,
        )

    async def fetch(
        self,
        url: str,
        proxy: Optional[str] = None,
        *,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> FetchResult:
        """
        Fetch ``url``, retrying transient failures.

        Args:
            url: absolute URL
            proxy: overrides the fetcher's default proxy
            etag: sent as If-None-Match
            last_modified: sent as If-Modified-Since

        Returns:
            Fetched (including 304), Permanent, or the last Retryable once
            attempts are exhausted
        """
        headers = conditional_headers(etag, last_modified)
        return await self._retrying()(
            self._fetch_once, url, proxy or self.proxy, headers
        )

    async def _fetch_once(
        self, url: str, proxy: Optional[str], headers: dict[str, str]
    ) -> FetchResult:
        async with self.throttle.slot(get_domain(url)) as slot:
            result = await self._request(url, proxy, headers)
            if isinstance(result, Retryable):
                slot.failed()
            return result

    async def _request(
        self, url: str, proxy: Optional[str], headers: dict[str, str]
    ) -> FetchResult:
        try:
            async with self.session.get(
                url,
                headers=headers,
                proxy=proxy,
                timeout=self.timeout,
                allow_redirects=True,
            ) as resp:
                logger.info(f"Status: {resp.status} {url}")
                response_headers = {k.lower(): v for k, v in resp.headers.items()}
                final_url = str(resp.url) if resp.history else None

                if resp.status == 304:
                    return Fetched(
                        url=url,
                        status=304,
                        headers=response_headers,
                        final_url=final_url,
                    )
                if resp.status >= 500:
                    return Retryable(url, f"HTTP {resp.status}", status=resp.status)
                if not 200 <= resp.status < 300:
                    return Permanent(url, f"HTTP {resp.status}", status=resp.status)

                content_length = response_headers.get("content-length", "")
                if (
                    content_length.isdigit()
                    and int(content_length) > self.max_response_size
                ):
                    return Permanent(
                        url,
                        f"Response too large: {content_length} bytes",
                        status=resp.status,
                    )

                body = bytearray()
                async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                    body.extend(chunk)
                    if len(body) > self.max_response_size:
                        return Permanent(
                            url,
                            f"Response exceeded {self.max_response_size} bytes",
                            status=resp.status,
                        )

                return Fetched(
                    url=url,
                    status=resp.status,
                    headers=response_headers,
                    body=bytes(body),
                    final_url=final_url,
                )

        except asyncio.TimeoutError:
            return Retryable(url, "timeout")
        except aiohttp.ClientError as e:
            return Retryable(url, f"{type(e).__name__}: {e}")
