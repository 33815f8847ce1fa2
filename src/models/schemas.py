"""Response models for the supplier gateway.

``FetchResult`` is a discriminated union on ``source``: a live upstream
payload, a stale payload served from the cache, or a failure.  Every
variant carries the breaker snapshot taken when the result was built.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.core.errors import ErrorKind

FALLBACK_WARNING = "External API unavailable, serving cached data"
FAILURE_MESSAGE = "External API unavailable and no cached data available"

# Wire keys are camelCase (failureCount, circuitBreakerState); Python code
# keeps snake_case field names.
CAMEL_CASE = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    service: str
    version: str
    status: str
    uptime_seconds: float
    cache: str
    circuit_breaker: dict[str, Any] | None = None


class CircuitStatus(BaseModel):
    """Read-only circuit breaker snapshot."""

    model_config = CAMEL_CASE

    state: Literal["CLOSED", "OPEN", "HALF_OPEN"]
    failure_count: int
    failure_threshold: int
    next_attempt: datetime | None = None


class StatusResponse(BaseModel):
    """Response model for GET /api/external/status."""

    success: bool = True
    data: CircuitStatus


# ── Fetch results ───────────────────────────────────────────────────────


class FetchSource(str, Enum):
    """Where the data in a ``FetchResult`` came from."""

    UPSTREAM = "external-api"
    CACHE_FALLBACK = "cache-fallback"
    ERROR = "error"


class FetchSuccess(BaseModel):
    """Fresh data from the upstream."""

    model_config = CAMEL_CASE

    success: Literal[True] = True
    source: Literal[FetchSource.UPSTREAM] = FetchSource.UPSTREAM
    data: Any
    circuit_breaker_state: CircuitStatus


class CachedFallback(BaseModel):
    """Last-known-good data served while the upstream is unavailable."""

    model_config = CAMEL_CASE

    success: Literal[True] = True
    source: Literal[FetchSource.CACHE_FALLBACK] = FetchSource.CACHE_FALLBACK
    data: Any
    warning: str = FALLBACK_WARNING
    error_kind: ErrorKind
    circuit_breaker_state: CircuitStatus


class FetchFailure(BaseModel):
    """Both the upstream and the cache failed."""

    model_config = CAMEL_CASE

    success: Literal[False] = False
    source: Literal[FetchSource.ERROR] = FetchSource.ERROR
    data: list = Field(default_factory=list)
    error: str = Field(..., min_length=1)
    error_kind: ErrorKind
    message: str = FAILURE_MESSAGE
    circuit_breaker_state: CircuitStatus


FetchResult = Annotated[
    Union[FetchSuccess, CachedFallback, FetchFailure],
    Field(discriminator="source"),
]
