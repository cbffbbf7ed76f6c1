"""
Health Check Router

Provides Kubernetes-compatible health check endpoints:
- /health: Simple health for load balancers
- /health/live: Liveness probe (process alive)
- /health/ready: Readiness probe (archive readable)
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from whynot.core.constants import UrlKind
from whynot.db.store import ContentStore, StorageError
from whynot.web.deps import get_store
from whynot.web.models import ArchiveStats, HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_archive(store: ContentStore) -> bool:
    """Check the record database answers queries."""
    try:
        store.count()
        return True
    except StorageError as e:
        logger.warning(f"Archive health check failed: {e}")
        return False


def _check_blobs(store: ContentStore) -> bool:
    return store.blobs.root.is_dir()


@router.get("/health", response_model=HealthResponse)
def health():
    """Simple health check for load balancers."""
    return HealthResponse(status="ok")


@router.get("/health/live", response_model=HealthResponse)
def liveness():
    """Kubernetes liveness probe - is the process running?"""
    return HealthResponse(status="ok")


@router.get("/health/ready")
def readiness(store: ContentStore = Depends(get_store)):
    """Kubernetes readiness probe - is the archive readable?"""
    checks = {
        "archive": "ok" if _check_archive(store) else "unhealthy",
        "blobs": "ok" if _check_blobs(store) else "unhealthy",
    }

    all_healthy = all(v == "ok" for v in checks.values())
    status = "ok" if all_healthy else "unhealthy"

    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content=HealthResponse(status=status, checks=checks).model_dump(),
    )


@router.get("/stats", response_model=ArchiveStats)
def archive_stats(store: ContentStore = Depends(get_store)):
    """Archive contents by kind."""
    return ArchiveStats(
        records=store.count(),
        blobs=store.blobs.count(),
        by_kind={kind.value: store.count(kind) for kind in UrlKind},
    )
