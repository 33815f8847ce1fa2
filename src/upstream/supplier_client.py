"""SupplierClient: the single-request boundary to the supplier catalog API.

One ``get_json()`` call is exactly one HTTP request with a fixed timeout.
Failures are translated into classified upstream errors so the retrier
can tell terminal (4xx) from transient failures.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.core.errors import TerminalUpstreamError, TransientUpstreamError

logger = logging.getLogger(__name__)


class SupplierClient:
    """Thin async client for the supplier API.

    Args:
        base_url:   Supplier API origin (e.g. ``https://fakestoreapi.com``).
        timeout_ms: Connect/response timeout for each request.
        user_agent: Value of the ``User-Agent`` header.
        client:     Pre-built ``httpx.AsyncClient``; tests inject one with
                    a ``MockTransport``.
    """

    def __init__(
        self,
        base_url: str,
        timeout_ms: float = 5000,
        user_agent: str = "supplier-gateway",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout_ms / 1000
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=self.timeout,
            headers={
                "Content-Type": "application/json",
                "User-Agent": user_agent,
            },
        )

    async def get_json(self, path: str, params: dict | None = None) -> Any:
        """GET *path* and return the decoded JSON body.

        Raises:
            TerminalUpstreamError:  On a 4xx response.
            TransientUpstreamError: On timeouts, connection failures, 5xx
                                    responses and undecodable bodies.
        """
        logger.info("Fetching %s%s from supplier API", self.base_url, path)
        try:
            response = await self._client.get(path, params=params, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            raise TransientUpstreamError(f"timed out after {self.timeout:.1f}s") from exc
        except httpx.TransportError as exc:
            raise TransientUpstreamError(f"connection failed: {exc}") from exc

        if 400 <= response.status_code < 500:
            raise TerminalUpstreamError(response.status_code, f"GET {path}")
        if response.status_code >= 500:
            raise TransientUpstreamError(f"GET {path}", status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise TransientUpstreamError(f"invalid JSON body from GET {path}") from exc

    async def close(self) -> None:
        """Close the pooled httpx client."""
        await self._client.aclose()
