"""Settings for the supplier-gateway service.

All settings are loaded from environment variables with the
``SUPPLIER_GATEWAY_`` prefix.
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from src.resilience.retry import RetryPolicy


class Settings(BaseSettings):
    """Supplier gateway configuration.

    Any field can be overridden from the environment, for example
    ``SUPPLIER_GATEWAY_CIRCUIT_BREAKER_THRESHOLD=5``.
    """

    # ── Service identity ────────────────────────────────────────────
    SERVICE_NAME: str = "supplier-gateway"
    SERVICE_VERSION: str = "0.1.0"
    HOST: str = "0.0.0.0"
    PORT: int = 8090
    LOG_LEVEL: str = "INFO"

    # ── Upstream supplier API ───────────────────────────────────────
    SUPPLIER_API_URL: str = "https://fakestoreapi.com"
    SUPPLIER_PRODUCTS_PATH: str = "/products"
    UPSTREAM_TIMEOUT_MS: int = Field(default=5000, gt=0)

    # ── Circuit breaker ─────────────────────────────────────────────
    CIRCUIT_BREAKER_THRESHOLD: int = Field(default=3, ge=1)  # Consecutive failures before OPEN
    CIRCUIT_BREAKER_RESET_TIMEOUT_MS: int = Field(default=30000, ge=0)  # OPEN cooldown before a trial

    # ── Retry ───────────────────────────────────────────────────────
    RETRY_MAX_RETRIES: int = Field(default=3, ge=0)
    RETRY_INITIAL_DELAY_MS: float = Field(default=1000, gt=0)
    RETRY_MAX_DELAY_MS: float = Field(default=10000, gt=0)
    RETRY_BACKOFF_FACTOR: float = Field(default=2.0, gt=1)

    # ── Cache ───────────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379"
    CACHE_TTL_SECONDS: int = Field(default=600, ge=1)  # Fallback entry lifetime

    model_config = {
        "env_prefix": "SUPPLIER_GATEWAY_",
    }

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> "Settings":
        if self.RETRY_MAX_DELAY_MS < self.RETRY_INITIAL_DELAY_MS:
            raise ValueError("RETRY_MAX_DELAY_MS must be >= RETRY_INITIAL_DELAY_MS")
        return self


def build_retry_policy(settings: Settings) -> RetryPolicy:
    """Build the immutable ``RetryPolicy`` described by *settings*."""
    return RetryPolicy(
        max_retries=settings.RETRY_MAX_RETRIES,
        initial_delay_ms=settings.RETRY_INITIAL_DELAY_MS,
        max_delay_ms=settings.RETRY_MAX_DELAY_MS,
        backoff_factor=settings.RETRY_BACKOFF_FACTOR,
    )
