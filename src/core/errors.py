"""Structured errors for the supplier-gateway service.

Every error raised by the resilience core carries an explicit ``kind`` so
the fetcher can decide on a cache fallback without string matching.
``StructuredErrorResponse`` is the body returned for unhandled errors at
the HTTP boundary.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ErrorKind(str, Enum):
    """Machine-readable failure categories."""

    TERMINAL = "terminal"
    TRANSIENT = "transient"
    RETRIES_EXHAUSTED = "retries_exhausted"
    BREAKER_OPEN = "breaker_open"
    CACHE_UNAVAILABLE = "cache_unavailable"
    UNEXPECTED = "unexpected"


class SupplierGatewayError(Exception):
    """Base exception for all supplier-gateway errors."""

    kind: ErrorKind = ErrorKind.UNEXPECTED


class TerminalUpstreamError(SupplierGatewayError):
    """Raised for 4xx-class upstream responses. Never retried.

    Attributes:
        status_code: HTTP status returned by the upstream.
        detail:      Short description of the request that failed.
    """

    kind = ErrorKind.TERMINAL

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        msg = f"Upstream rejected request with HTTP {status_code}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class TransientUpstreamError(SupplierGatewayError):
    """Raised for timeouts, connection failures and 5xx responses."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        self.detail = detail
        self.status_code = status_code
        msg = f"Upstream unavailable: {detail}"
        if status_code is not None:
            msg += f" (HTTP {status_code})"
        super().__init__(msg)


class RetriesExhaustedError(SupplierGatewayError):
    """Raised when every retry attempt failed with a retryable error.

    Attributes:
        last_error:        The error observed on the final attempt.
        attempts:          Number of attempts actually made.
        deadline_exceeded: True when the caller's deadline cut the
                           schedule short.
    """

    kind = ErrorKind.RETRIES_EXHAUSTED

    def __init__(
        self,
        last_error: BaseException,
        attempts: int,
        deadline_exceeded: bool = False,
    ) -> None:
        self.last_error = last_error
        self.attempts = attempts
        self.deadline_exceeded = deadline_exceeded
        reason = "deadline exceeded" if deadline_exceeded else "retries exhausted"
        super().__init__(f"{reason} after {attempts} attempt(s): {last_error}")


class BreakerOpenError(SupplierGatewayError):
    """Raised when the circuit breaker rejects a call without running it.

    Attributes:
        name:            Name of the protected upstream.
        next_attempt_ms: Epoch milliseconds at which a trial is admitted.
        retry_after:     Seconds until the next trial, never negative.
    """

    kind = ErrorKind.BREAKER_OPEN

    def __init__(self, name: str, next_attempt_ms: float, retry_after: float) -> None:
        self.name = name
        self.next_attempt_ms = next_attempt_ms
        self.retry_after = max(0.0, retry_after)
        super().__init__(f"Circuit breaker is OPEN for '{name}', retry after {self.retry_after:.1f}s")


class CacheUnavailableError(SupplierGatewayError):
    """Raised inside ``ResultCache`` when no store is reachable.

    Never propagates past the cache adapter.
    """

    kind = ErrorKind.CACHE_UNAVAILABLE


def error_kind_of(exc: BaseException) -> ErrorKind:
    """Return the ``ErrorKind`` of *exc*; foreign exceptions are UNEXPECTED."""
    if isinstance(exc, SupplierGatewayError):
        return exc.kind
    return ErrorKind.UNEXPECTED


class StructuredErrorResponse(BaseModel):
    """Body returned for unhandled errors: ``{"error", "code", "request_id"}``."""

    error: str
    code: str
    request_id: str

    @classmethod
    def from_exception(cls, exc: Exception, request_id: str) -> "StructuredErrorResponse":
        """Create from an exception, never leaking internals of foreign errors."""
        if isinstance(exc, SupplierGatewayError):
            return cls(
                error=str(exc),
                code=exc.kind.value.upper(),
                request_id=request_id,
            )
        return cls(
            error="An internal error occurred",
            code="INTERNAL_ERROR",
            request_id=request_id,
        )
