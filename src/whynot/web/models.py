"""
Archive Server Models

Pydantic models for the JSON endpoints under ``/_whynot``.
"""

from typing import Optional

from pydantic import BaseModel, Field


class IndexEntry(BaseModel):
    """One archived article"""

    url: str = Field(..., description="Archived URL")
    mirror_path: str = Field(..., description="Path serving the archived copy")
    title: Optional[str] = Field(default=None, description="HTML <title>")
    fetched_at: int = Field(..., description="Unix time of the stored fetch")


class IndexPage(BaseModel):
    """Page of archived articles, newest first"""

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1)
    total: int = Field(default=0, ge=0, description="Number of archived articles")
    entries: list[IndexEntry] = Field(default_factory=list)

    @property
    def has_next(self) -> bool:
        return self.page * self.page_size < self.total


class ArchiveStats(BaseModel):
    """Archive contents by kind"""

    records: int = Field(default=0, ge=0)
    blobs: int = Field(default=0, ge=0)
    by_kind: dict[str, int] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response"""

    status: str = Field(default="ok")
    checks: dict[str, str] = Field(default_factory=dict)
