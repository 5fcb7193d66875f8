"""
Response models for the build service API.

Only the fields the helper relies on are modeled; extra fields sent by the
server are ignored.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _ApiModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Subscription(_ApiModel):
    """Subscription attached to an access token."""

    email: str
    renew_date: str | None = None
    expires_at: str | None = None
    valid: bool = False


class BuildData(_ApiModel):
    """A single published build."""

    id: int
    tag: str = Field(..., description="Version tag of the build")
    release_date: str | None = None
    release_note: str | None = None
    short_summary: str | None = None
    latest: bool = False
    deleted: bool = False


class BuildPage(_ApiModel):
    """One page of the build listing."""

    data: list[BuildData] = Field(default_factory=list)
    total: int = 0
    limit: int = 0
    offset: int = 0
    has_more: bool = False


class PendingJob(_ApiModel):
    """Details of a build job the server is still processing."""

    tag: str | None = None
    dispatched_at: str | None = None
    expires_at: str | None = None
    retry_after: float | None = None


class DownloadedBuild(_ApiModel):
    """A successful download: the ZIP payload and its advertised digest."""

    model_config = ConfigDict(frozen=True)

    tag: str
    content: bytes
    sha256: str
    content_type: str
