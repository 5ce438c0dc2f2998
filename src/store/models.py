"""Data models for the SQLite cache store."""

from datetime import UTC, datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


class CacheEntry(BaseModel):
    """Conditional-request metadata for one normalized request.

    One entry exists per ``cache_key``; writes overwrite every field.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cache_key: Annotated[
        str, Field(min_length=1, description="Hash of normalized url + query")
    ]
    url: Annotated[str, Field(min_length=1, description="Full request URL")]
    etag: str | None = Field(default=None, description="ETag header value")
    expires_at: str | None = Field(default=None, description="Expires header value")
    last_modified: str | None = Field(
        default=None, description="Last-Modified header value"
    )
    fetched_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the response was received",
    )
    http_status: int = Field(ge=100, le=599, description="HTTP status code")
