import hashlib
import re
from typing import Optional
from urllib.parse import (
    parse_qsl,
    quote,
    urldefrag,
    urlencode,
    urljoin,
    urlsplit,
    urlunsplit,
)

MAX_URL_LENGTH = 2083

TRACKING_KEYS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "gclid",
    "fbclid",
}

DEFAULT_PORTS = {"http": 80, "https": 443}

# Characters left alone when re-quoting a path
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


def normalize_url(base: str, link: str | None) -> Optional[str]:
    """
    Resolve ``link`` against ``base`` and return its canonical form.

    The canonical form has no fragment, a lowercase scheme and host, no
    default port, an explicit ``/`` path, a re-quoted path and query
    parameters sorted with tracking keys removed. Returns None for anything
    that is not an http(s) URL.
    """
    if not link:
        return None
    link = link.strip()
    if not link:
        return None
    try:
        href = urljoin(base, link)
        href, _ = urldefrag(href)
        parts = urlsplit(href)
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        return None
    if len(href) > MAX_URL_LENGTH:
        return None

    host = (parts.hostname or "").lower()
    if not host:
        return None
    netloc = f"[{host}]" if ":" in host else host
    if port and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    path = quote(parts.path or "/", safe=_PATH_SAFE)
    query = urlencode(
        sorted(
            (k, v)
            for k, v in parse_qsl(parts.query, keep_blank_values=True)
            if k not in TRACKING_KEYS
        )
    )
    normalized = urlunsplit((scheme, netloc, path, query, ""))
    if len(normalized) > MAX_URL_LENGTH:
        return None
    return normalized


def canonical_url(url: str) -> Optional[str]:
    """Canonical form of an absolute URL."""
    return normalize_url(url, url)


def url_hash(url: str) -> str:
    """Generate 16-character hash for URL."""
    return hashlib.sha256(url.encode()).hexdigest()[:16]


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest used as the content address of a body."""
    return hashlib.sha256(data).hexdigest()


def is_content_hash(value: str) -> bool:
    return bool(_HASH_RE.match(value))


def get_domain(url: str) -> str:
    """Extract domain from URL."""
    try:
        return urlsplit(url).netloc
    except ValueError:
        return ""

