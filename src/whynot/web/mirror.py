"""
Mirror Map

Two-way mapping between archive URLs and paths on the mirror server.

- URLs on the primary site keep their path: ``https://site/a?b=1`` is
  served at ``/a?b=1``.
- URLs on any other host are addressed as ``/_/<scheme>/<host>/<path>``.
"""

from typing import Optional
from urllib.parse import unquote, urlsplit

from whynot.core.utils import DEFAULT_PORTS, canonical_url, is_content_hash

FOREIGN_PREFIX = "/_/"
BLOB_PREFIX = "/imgs/"


class BadPath(ValueError):
    """Request path cannot be mapped to an archive URL."""


class NotArchived(LookupError):
    """No archive record for the requested URL."""

    def __init__(self, url: Optional[str] = None):
        super().__init__(url or "not archived")
        self.url = url


def _check_path(path: str) -> None:
    decoded = unquote(path)
    if "\x00" in decoded:
        raise BadPath("NUL byte in path")
    if any(segment in ("..", ".") for segment in decoded.split("/")[1:]):
        raise BadPath("Dot segment in path")


class MirrorMap:
    def __init__(self, site_url: str):
        site = canonical_url(site_url)
        if site is None:
            raise ValueError(f"Invalid site URL: {site_url}")
        parts = urlsplit(site)
        self.site_url = site
        self.scheme = parts.scheme
        self.netloc = parts.netloc

    def url_for_path(self, path: str, query: str = "") -> str:
        """
        Canonical archive URL for a request path.

        Args:
            path: raw (still percent-encoded) request path
            query: raw query string without ``?``

        Raises:
            BadPath: NUL bytes, dot segments or an unmappable foreign URL
        """
        if not path.startswith("/"):
            raise BadPath("Path must be absolute")
        _check_path(path)

        if path.startswith(FOREIGN_PREFIX):
            rest = path[len(FOREIGN_PREFIX) :]
            scheme, _, rest = rest.partition("/")
            host, _, tail = rest.partition("/")
            if scheme not in DEFAULT_PORTS or not host:
                raise BadPath(f"Unmappable foreign path: {path}")
            url = f"{scheme}://{host}/{tail}"
        else:
            url = f"{self.scheme}://{self.netloc}{path}"
        if query:
            url = f"{url}?{query}"

        canonical = canonical_url(url)
        if canonical is None:
            raise BadPath(f"Unmappable path: {path}")
        return canonical

    def path_for_url(self, url: str) -> Optional[str]:
        """Mirror path serving ``url`` (with query), or None for non-http URLs."""
        canonical = canonical_url(url)
        if canonical is None:
            return None
        parts = urlsplit(canonical)
        suffix = parts.path + (f"?{parts.query}" if parts.query else "")
        if parts.scheme == self.scheme and parts.netloc == self.netloc:
            return suffix
        return f"{FOREIGN_PREFIX}{parts.scheme}/{parts.netloc}{suffix}"

    @staticmethod
    def blob_path(digest: str) -> str:
        if not is_content_hash(digest):
            raise ValueError(f"Not a content hash: {digest!r}")
        return f"{BLOB_PREFIX}{digest}"


def trailing_slash_variant(url: str) -> Optional[str]:
    """The same URL with its trailing slash added or removed."""
    parts = urlsplit(url)
    path = parts.path
    if path == "/":
        return None
    if path.endswith("/"):
        path = path.rstrip("/") or "/"
    else:
        path = path + "/"
    return parts._replace(path=path).geturl()
