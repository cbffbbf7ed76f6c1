"""
HTML Link Rewriting

Rewrites URL-bearing attribute values of a stored HTML body so that links
to archived URLs point back into the mirror. Only matched attribute values
are replaced; every other byte of the document is returned unchanged.
References to URLs that are not archived are left as they are.
"""

import html
import logging
import re
from typing import Iterator, Optional

from whynot.core.utils import normalize_url
from whynot.db.records import ArchiveRecord
from whynot.db.store import ContentStore
from whynot.web.mirror import MirrorMap

logger = logging.getLogger(__name__)

SRCSET_ATTRS = (b"srcset", b"data-srcset")
REWRITE_ATTRS = (b"href", b"src", b"data-src", b"poster") + SRCSET_ATTRS

# Start tags only; comments, doctypes and end tags are skipped.
# Quoted attribute values may contain ">".
TAG_RE = re.compile(rb"""<[a-zA-Z](?:[^>"']|"[^"]*"|'[^']*')*>""")
ATTR_RE = re.compile(
    rb"""(?P<prefix>[\s"'](?P<name>[a-zA-Z][-a-zA-Z0-9]*)\s*=\s*)"""
    rb"""(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<uq>[^\s"'=<>`]+))"""
)
BASE_RE = re.compile(rb"<base\s[^>]*>", re.IGNORECASE)
SRCSET_CANDIDATE_RE = re.compile(r"(\s*)([^\s,]+)([^,]*)")


def _decode(value: bytes) -> str:
    return value.decode("utf-8", errors="surrogateescape")


def _encode(value: str) -> bytes:
    return value.encode("utf-8", errors="surrogateescape")


def _resolve(base: str, raw: str) -> Optional[str]:
    text = html.unescape(_encode(raw).decode("utf-8", errors="replace"))
    return normalize_url(base, text)


def _iter_attrs(body: bytes) -> Iterator[tuple[re.Match, re.Match]]:
    for tag in TAG_RE.finditer(body):
        for attr in ATTR_RE.finditer(tag.group(0)):
            if attr.group("name").lower() in REWRITE_ATTRS:
                yield tag, attr


def _attr_value(attr: re.Match) -> tuple[bytes, str]:
    for group in ("dq", "sq", "uq"):
        value = attr.group(group)
        if value is not None:
            return value, group
    return b"", "uq"


def _srcset_urls(value: str) -> list[str]:
    return [m.group(2) for m in SRCSET_CANDIDATE_RE.finditer(value) if m.group(2)]


def document_base(body: bytes, page_url: str) -> str:
    """Base URL for relative references, honouring ``<base href>``."""
    match = BASE_RE.search(body)
    if match is None:
        return page_url
    for attr in ATTR_RE.finditer(match.group(0)):
        if attr.group("name").lower() == b"href":
            value, _ = _attr_value(attr)
            return _resolve(page_url, _decode(value)) or page_url
    return page_url


class LinkRewriter:
    """
    Maps archived URLs to mirror paths for one stored document.

    Pages go to their mirror path and blob records to ``/imgs/<hash>``.
    """

    def __init__(self, store: ContentStore, mirror: MirrorMap):
        self.store = store
        self.mirror = mirror

    def _target(self, record: ArchiveRecord) -> Optional[str]:
        if record.is_blob:
            return self.mirror.blob_path(record.content_hash)
        return self.mirror.path_for_url(record.url)

    def _lookup(
        self, base: str, raw: str, records: dict[str, ArchiveRecord]
    ) -> Optional[str]:
        url = _resolve(base, raw)
        if url is None:
            return None
        record = records.get(url)
        if record is None:
            return None
        return self._target(record)

    def rewrite(self, body: bytes, page_url: str) -> bytes:
        """
        Return ``body`` with archived references pointing into the mirror.

        All referenced URLs are looked up in one batch before any
        replacement is made.
        """
        base = document_base(body, page_url)

        found: list[tuple[int, int, str, bool]] = []
        wanted: set[str] = set()
        for tag, attr in _iter_attrs(body):
            value, quoting = _attr_value(attr)
            is_srcset = attr.group("name").lower() in SRCSET_ATTRS
            text = _decode(value)
            candidates = _srcset_urls(text) if is_srcset else [text]
            for candidate in candidates:
                url = _resolve(base, candidate)
                if url is not None:
                    wanted.add(url)
            start = tag.start() + attr.start(quoting)
            end = tag.start() + attr.end(quoting)
            found.append((start, end, text, is_srcset))

        if not wanted:
            return body
        records = self.store.get_many(wanted)
        if not records:
            return body

        # (start, end, replacement) in body coordinates
        edits: list[tuple[int, int, bytes]] = []
        for start, end, text, is_srcset in found:
            if is_srcset:
                new_text = self._rewrite_srcset(base, text, records)
            else:
                target = self._lookup(base, text, records)
                new_text = html.escape(target, quote=True) if target else None
            if new_text is None or new_text == text:
                continue
            edits.append((start, end, _encode(new_text)))

        if not edits:
            return body

        out = bytearray()
        pos = 0
        for start, end, replacement in edits:
            out += body[pos:start]
            out += replacement
            pos = end
        out += body[pos:]
        logger.debug(f"Rewrote {len(edits)} links in {page_url}")
        return bytes(out)

    def _rewrite_srcset(
        self, base: str, value: str, records: dict[str, ArchiveRecord]
    ) -> Optional[str]:
        changed = False

        def _sub(m: re.Match) -> str:
            nonlocal changed
            target = self._lookup(base, m.group(2), records)
            if target is None:
                return m.group(0)
            changed = True
            return f"{m.group(1)}{html.escape(target, quote=True)}{m.group(3)}"

        result = SRCSET_CANDIDATE_RE.sub(_sub, value)
        return result if changed else None
