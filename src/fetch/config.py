"""Configuration models for the HTTP fetch layer."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.fetch.constants import (
    DEFAULT_USER_AGENT,
    HEADER_RATE_LIMIT_REMAINING,
    HEADER_RATE_LIMIT_RESET,
    MAX_BODY_SNIPPET_CHARS,
)
from src.fetch.models import RetryPolicy


class CircuitBreakerConfig(BaseModel):
    """Thresholds for the per-endpoint circuit breaker."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    failure_threshold: Annotated[int, Field(ge=1, le=1000)] = 5
    min_open_duration_ms: Annotated[int, Field(ge=0, le=3_600_000)] = 30_000


class FetchConfig(BaseModel):
    """Configuration for one breaker-bearing HTTP fetcher.

    Every recognized option is listed here with its default and validated
    once at construction.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    endpoint: Annotated[
        str, Field(min_length=1, description="Name of the protected endpoint")
    ] = "esi"
    user_agent: Annotated[str, Field(min_length=1, max_length=500)] = (
        DEFAULT_USER_AGENT
    )
    timeout_seconds: Annotated[float, Field(gt=0.0, le=300.0)] = 30.0
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    extra_headers: dict[str, str] = Field(
        default_factory=dict, description="Headers added to every request"
    )
    rate_limit_remaining_header: Annotated[str, Field(min_length=1)] = (
        HEADER_RATE_LIMIT_REMAINING
    )
    rate_limit_reset_header: Annotated[str, Field(min_length=1)] = (
        HEADER_RATE_LIMIT_RESET
    )
    max_body_snippet_chars: Annotated[int, Field(ge=16, le=10_000)] = (
        MAX_BODY_SNIPPET_CHARS
    )

    @field_validator("extra_headers")
    @classmethod
    def validate_no_auth_headers(cls, v: dict[str, str]) -> dict[str, str]:
        """Ensure no credentials are stored in config."""
        forbidden = {"authorization", "cookie", "x-api-key"}
        for key in v:
            if key.lower() in forbidden:
                msg = (
                    f"Header '{key}' must not be stored in config; "
                    "use environment variables"
                )
                raise ValueError(msg)
        return v

    @field_validator("rate_limit_remaining_header", "rate_limit_reset_header")
    @classmethod
    def lower_header_name(cls, v: str) -> str:
        """Header lookups are done on lower-cased names."""
        return v.lower()
