import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from whynot.core.config import settings
from whynot.db.store import ContentStore, StorageError
from whynot.web.deps import BlobTypes
from whynot.web.metrics import router as metrics_router, MetricsMiddleware, record_lookup
from whynot.web.middleware.request_logging import RequestLoggingMiddleware
from whynot.web.mirror import BadPath, MirrorMap, NotArchived
from whynot.web.rewrite import LinkRewriter
from whynot.web.routes import archive, health
from whynot.web.templates import templates

logger = logging.getLogger(__name__)


def _not_found(request: Request, url: Optional[str] = None):
    return templates.TemplateResponse(
        request,
        "404.html",
        {"request": request, "url": url, "app_name": settings.APP_NAME},
        status_code=404,
    )


def create_app(
    data_dir: str | Path | None = None, *, site_url: Optional[str] = None
) -> FastAPI:
    """
    Build the archive server for ``data_dir``.

    The store is opened read-only before the app is returned.

    Raises:
        StorageError: archive missing or corrupt
    """
    store = ContentStore(data_dir or settings.DATA_DIR, readonly=True).open()
    mirror = MirrorMap(site_url or settings.SITE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Serving archive {store.data_dir} as {mirror.site_url} "
            f"({store.count()} records)"
        )
        yield

    app = FastAPI(
        lifespan=lifespan,
        title="whynot archive",
        version=settings.APP_VERSION,
        description="Browsable mirror of an archived website.",
        # Every other path belongs to the archive
        docs_url=None,
        redoc_url=None,
        openapi_url="/_whynot/openapi.json",
        openapi_tags=[
            {"name": "archive", "description": "Archived pages and blobs"},
            {"name": "system", "description": "Health checks and archive stats"},
            {"name": "metrics", "description": "Prometheus metrics"},
        ],
    )
    app.state.store = store
    app.state.mirror = mirror
    app.state.rewriter = LinkRewriter(store, mirror)
    app.state.blob_types = BlobTypes(store)

    # --- Middleware (order matters: last added = first executed) ---
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)

    # --- Error Handlers ---
    @app.exception_handler(BadPath)
    async def bad_path_handler(request: Request, exc: BadPath):
        record_lookup("bad_path")
        return PlainTextResponse(f"Bad request path: {exc}", status_code=400)

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        record_lookup("error")
        logger.error(f"Archive unavailable for {request.url.path}: {exc}")
        return PlainTextResponse(
            "Archive temporarily unavailable",
            status_code=503,
            headers={"Retry-After": "5"},
        )

    @app.exception_handler(NotArchived)
    async def not_archived_handler(request: Request, exc: NotArchived):
        return _not_found(request, exc.url)

    @app.exception_handler(404)
    async def not_found_handler(request: Request, exc: StarletteHTTPException):
        return _not_found(request)

    # Include Routers; the archive catch-all must come last
    app.include_router(health.router, prefix="/_whynot", tags=["system"])
    app.include_router(metrics_router, prefix="/_whynot", tags=["metrics"])
    app.include_router(archive.router, tags=["archive"])

    return app
