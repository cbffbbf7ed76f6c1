"""
Archive Router

Serves archived content:
- /imgs/<sha256>: blob by content hash
- /_whynot/index: paginated list of archived articles
- /{path}: archived URL (primary site, or /_/<scheme>/<host>/... for others)

Handlers are plain ``def`` so the synchronous store calls run in the
threadpool.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import FileResponse, HTMLResponse

from whynot.core.config import settings
from whynot.core.constants import IMMUTABLE_CACHE_CONTROL, UrlKind, is_html
from whynot.core.utils import is_content_hash
from whynot.db.records import ArchiveRecord
from whynot.db.store import ContentStore, StorageError
from whynot.web.deps import (
    BlobTypes,
    get_blob_types,
    get_mirror,
    get_rewriter,
    get_store,
)
from whynot.web.metrics import record_lookup
from whynot.web.mirror import MirrorMap, NotArchived, trailing_slash_variant
from whynot.web.models import IndexEntry, IndexPage
from whynot.web.rewrite import LinkRewriter
from whynot.web.templates import templates

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def _parse_pos_int(value: Optional[str], default: int) -> int:
    try:
        number = int(value) if value is not None else default
    except ValueError:
        return default
    return number if number > 0 else default


def _fetched_date(timestamp: int) -> str:
    return time.strftime("%Y-%m-%d %H:%M UTC", time.gmtime(timestamp))


templates.env.filters["fetched_date"] = _fetched_date


def _etag_matches(request: Request, etag: str) -> bool:
    header = request.headers.get("if-none-match")
    if not header:
        return False
    return header.strip() == "*" or etag in [t.strip() for t in header.split(",")]


def blob_response(
    request: Request,
    store: ContentStore,
    digest: str,
    content_type: Optional[str],
) -> Response:
    """Stream a blob file with immutable caching headers."""
    etag = f'"{digest}"'
    headers = {"Cache-Control": IMMUTABLE_CACHE_CONTROL, "ETag": etag}
    if _etag_matches(request, etag):
        return Response(status_code=304, headers=headers)
    return FileResponse(
        store.blob_path(digest),
        media_type=content_type or DEFAULT_CONTENT_TYPE,
        headers=headers,
    )


def _raw_path(request: Request) -> str:
    raw = request.scope.get("raw_path")
    if raw:
        return raw.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


def _find_record(store: ContentStore, url: str) -> Optional[ArchiveRecord]:
    record = store.get(url)
    if record is not None:
        return record
    variant = trailing_slash_variant(url)
    if variant is None:
        return None
    return store.get(variant)


def build_index(store: ContentStore, mirror: MirrorMap, page: int) -> IndexPage:
    page_size = settings.WEB_PAGE_SIZE
    records = store.list_recent(
        UrlKind.ARTICLE, offset=(page - 1) * page_size, limit=page_size
    )
    return IndexPage(
        page=page,
        page_size=page_size,
        total=store.count(UrlKind.ARTICLE),
        entries=[
            IndexEntry(
                url=r.url,
                mirror_path=mirror.path_for_url(r.url) or r.url,
                title=r.title,
                fetched_at=r.fetched_at,
            )
            for r in records
        ],
    )


@router.api_route("/imgs/{digest}", methods=["GET", "HEAD"])
def serve_blob(
    digest: str,
    request: Request,
    store: ContentStore = Depends(get_store),
    blob_types: BlobTypes = Depends(get_blob_types),
):
    """Blob by content hash."""
    if not is_content_hash(digest) or not store.has_blob(digest):
        record_lookup("miss")
        raise NotArchived()
    record_lookup("hit")
    return blob_response(request, store, digest, blob_types.get(digest))


def render_index(
    request: Request, store: ContentStore, mirror: MirrorMap, page: Optional[str]
) -> Response:
    index = build_index(store, mirror, _parse_pos_int(page, 1))
    return templates.TemplateResponse(
        request,
        "index.html",
        {"request": request, "index": index, "app_name": settings.APP_NAME},
    )


@router.get("/_whynot/index", response_class=HTMLResponse)
def archive_index(
    request: Request,
    page: Optional[str] = None,
    store: ContentStore = Depends(get_store),
    mirror: MirrorMap = Depends(get_mirror),
):
    """Archived articles, newest first."""
    return render_index(request, store, mirror, page)


@router.get("/_whynot/index.json", response_model=IndexPage)
def archive_index_json(
    page: Optional[str] = None,
    store: ContentStore = Depends(get_store),
    mirror: MirrorMap = Depends(get_mirror),
):
    return build_index(store, mirror, _parse_pos_int(page, 1))


@router.api_route("/{path:path}", methods=["GET", "HEAD"])
def serve_archived(
    request: Request,
    store: ContentStore = Depends(get_store),
    mirror: MirrorMap = Depends(get_mirror),
    rewriter: LinkRewriter = Depends(get_rewriter),
):
    """
    Archived URL for the request path.

    HTML bodies have their archived links rewritten into the mirror; every
    other record is served byte for byte from its blob.
    The site root falls back to the article index when it is not archived.
    """
    query = request.scope.get("query_string", b"").decode("latin-1")
    path = _raw_path(request)
    url = mirror.url_for_path(path, query)

    record = _find_record(store, url)
    if record is None and path == "/":
        return render_index(request, store, mirror, request.query_params.get("page"))
    if record is None:
        record_lookup("miss")
        raise NotArchived(url)
    record_lookup("hit")

    if record.is_blob:
        return blob_response(request, store, record.content_hash, record.content_type)

    body = store.read_body(record)
    if body is None:
        raise StorageError(f"Stored document missing for {record.url}")
    if is_html(record.content_type):
        body = rewriter.rewrite(body, record.base_url)
    return Response(content=body, headers={"Content-Type": record.content_type})
