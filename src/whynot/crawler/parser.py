"""
HTML Parser Utilities

Best-effort extraction of links and embedded assets from fetched HTML.
BeautifulSoup's tree is only consumed through ``iter_refs``, which yields
typed ``LinkRef`` values for the element/attribute pairs the classifier
cares about.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Iterator, Optional

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

from whynot.core.constants import UrlKind, is_html
from whynot.core.utils import normalize_url
from whynot.crawler.classifier import Classifier

warnings.filterwarnings("ignore", category=MarkupResemblesLocatorWarning)

logger = logging.getLogger(__name__)

# tag -> attributes holding navigable links
LINK_ATTRS = {
    "a": ("href",),
    "area": ("href",),
    "link": ("href",),
}
# tag -> attributes holding embedded resources
EMBED_ATTRS = {
    "img": ("src", "data-src", "srcset", "data-srcset"),
    "source": ("src", "srcset"),
}
# <link rel=...> values that point at other pages of the site
PAGE_RELS = {"next", "prev", "canonical", "alternate"}


@dataclass(frozen=True)
class LinkRef:
    tag: str
    attr: str
    value: str

    @property
    def embedded(self) -> bool:
        return self.tag in EMBED_ATTRS

    @property
    def is_srcset(self) -> bool:
        return self.attr.endswith("srcset")


@dataclass(frozen=True)
class ClassifiedUrl:
    url: str
    kind: UrlKind


@dataclass
class ParseResult:
    links: list[ClassifiedUrl] = field(default_factory=list)
    assets: list[str] = field(default_factory=list)
    outlinks: list[str] = field(default_factory=list)
    title: Optional[str] = None


def _strip_nul(text: str) -> str:
    return text.replace("\x00", " ")


def _charset(content_type: str) -> Optional[str]:
    for param in content_type.split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset":
            return value.strip().strip("\"'") or None
    return None


def decode_body(body: bytes, content_type: str) -> str:
    """Decode an HTML body using the declared charset, falling back to UTF-8."""
    charset = _charset(content_type) or "utf-8"
    try:
        return body.decode(charset, errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


def parse_srcset(value: str) -> list[str]:
    """URLs of a ``srcset`` attribute, without their descriptors."""
    urls = []
    for candidate in value.split(","):
        candidate = candidate.strip()
        if candidate:
            urls.append(candidate.split()[0])
    return urls


def _attr(tag, name: str) -> Optional[str]:
    value = tag.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    if not value:
        return None
    return value


def iter_refs(soup: BeautifulSoup) -> Iterator[LinkRef]:
    """Yield every URL-bearing attribute of interest, in document order."""
    names = list(LINK_ATTRS) + list(EMBED_ATTRS)
    for tag in soup.find_all(names):
        if tag.name == "link":
            rels = {r.lower() for r in (tag.get("rel") or [])}
            if not rels & PAGE_RELS:
                continue
        attrs = LINK_ATTRS.get(tag.name) or EMBED_ATTRS.get(tag.name, ())
        for attr in attrs:
            value = _attr(tag, attr)
            if value is not None:
                yield LinkRef(tag=tag.name, attr=attr, value=value)


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    """``<base href>`` resolved against the page URL, if present."""
    base = soup.find("base", href=True)
    if base is None:
        return fallback
    return normalize_url(fallback, _attr(base, "href")) or fallback


def extract_title(soup: BeautifulSoup) -> Optional[str]:
    if soup.title and soup.title.string:
        title = _strip_nul(soup.title.string).strip()
        return title or None
    return None


def parse(
    content_type: str, body: bytes, base_url: str, classifier: Classifier
) -> ParseResult:
    """
    Extract classified links, assets and out-links from a response.

    Non-HTML bodies and markup BeautifulSoup cannot handle give an empty
    result; a single bad attribute value is skipped.

    Args:
        content_type: Content-Type header of the response
        body: raw response body
        base_url: URL the body was fetched from
        classifier: site classification rules

    Returns:
        ParseResult with each URL listed once
    """
    if not is_html(content_type):
        return ParseResult()

    html = decode_body(body, content_type)
    try:
        soup = BeautifulSoup(_strip_nul(html), "html.parser")
    except Exception as e:
        logger.warning(f"Unparsable HTML at {base_url}: {e}")
        return ParseResult()

    base = effective_base_url(soup, base_url)
    result = ParseResult(title=extract_title(soup))
    # The page itself is already archived or queued
    seen: set[str] = {normalize_url(base_url, base_url) or base_url}

    for ref in iter_refs(soup):
        values = parse_srcset(ref.value) if ref.is_srcset else [ref.value]
        for value in values:
            url = normalize_url(base, value)
            if url is None or url in seen:
                continue
            seen.add(url)

            kind = classifier.classify(url, embedded=ref.embedded)
            if kind is None:
                if not classifier.in_scope(url):
                    result.outlinks.append(url)
                continue
            if kind == UrlKind.IMAGE:
                result.assets.append(url)
            else:
                result.links.append(ClassifiedUrl(url=url, kind=kind))

    return result
