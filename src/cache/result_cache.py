"""Best-effort Redis cache adapter.

Every operation swallows store errors, logs a warning, and returns a
neutral value (miss / not-set / not-deleted), so the service keeps
working when Redis is down or was never reachable.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from src.core.errors import CacheUnavailableError

_logger = logging.getLogger(__name__)

# Keys deleted per DEL round-trip during pattern invalidation
_DELETE_BATCH: int = 500


class ResultCache:
    """Cache adapter over an optional ``redis.asyncio`` client."""

    def __init__(self, redis_client: Any = None) -> None:
        self.redis_client = redis_client

    @property
    def available(self) -> bool:
        return self.redis_client is not None

    def _client(self) -> Any:
        if self.redis_client is None:
            raise CacheUnavailableError("Redis client not configured")
        return self.redis_client

    async def get(self, key: str) -> bytes | None:
        """Return the raw bytes stored at *key*, or ``None`` on miss/error."""
        try:
            data = await self._client().get(key)
        except Exception as exc:
            _logger.warning("Cache unavailable on GET %s, treating as miss: %s", key, exc)
            return None
        if data is None:
            _logger.info("Cache MISS: %s", key)
            return None
        _logger.info("Cache HIT: %s", key)
        if isinstance(data, str):
            return data.encode("utf-8")
        return data

    async def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        """Store *value* at *key* for *ttl_seconds*. Returns True on success.

        Raises:
            ValueError: If *ttl_seconds* is not positive.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0; cache entries always expire")
        try:
            await self._client().set(key, value, ex=ttl_seconds)
        except Exception as exc:
            _logger.warning("Cache unavailable on SET %s, skipping: %s", key, exc)
            return False
        _logger.info("Cache SET: %s (TTL: %ds)", key, ttl_seconds)
        return True

    async def delete_keys_matching(self, pattern: str) -> int:
        """Delete every key matching the glob *pattern*; returns the count."""
        try:
            client = self._client()
            deleted = 0
            batch: list = []
            async for key in client.scan_iter(match=pattern):
                batch.append(key)
                if len(batch) >= _DELETE_BATCH:
                    deleted += await client.delete(*batch)
                    batch = []
            if batch:
                deleted += await client.delete(*batch)
        except Exception as exc:
            _logger.warning("Cache unavailable on DELETE %s, skipping: %s", pattern, exc)
            return 0
        if deleted == 0:
            _logger.info("No keys found matching pattern: %s", pattern)
        else:
            _logger.info("Cache DELETE: %d keys matching pattern %s", deleted, pattern)
        return deleted

    async def delete_key(self, key: str) -> bool:
        """Delete a single key. Returns True if the store accepted the call."""
        try:
            await self._client().delete(key)
        except Exception as exc:
            _logger.warning("Cache unavailable on DELETE %s, skipping: %s", key, exc)
            return False
        _logger.info("Cache DELETE: %s", key)
        return True

    async def flush_all(self) -> bool:
        """Remove every key from the store."""
        try:
            await self._client().flushall()
        except Exception as exc:
            _logger.warning("Cache unavailable on FLUSHALL, skipping: %s", exc)
            return False
        _logger.info("Cache CLEARED: all keys deleted")
        return True

    async def ping(self) -> bool:
        """Return True when the store answers."""
        try:
            return bool(await self._client().ping())
        except Exception:
            return False

    # ── JSON helpers ────────────────────────────────────────────────

    async def get_json(self, key: str, default: Any = None) -> Any:
        """Decode the JSON stored at *key*.

        Hit or miss is decided on the raw bytes, so a stored JSON ``null``
        decodes to ``None`` while a missing or undecodable entry returns
        *default*.
        """
        raw = await self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            _logger.warning("Cache entry %s is not valid JSON, treating as miss", key)
            return default

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> bool:
        return await self.set_with_ttl(key, encode_json(value), ttl_seconds)


def encode_json(value: Any) -> bytes:
    """Stable JSON encoding used for cache entries."""
    return json.dumps(value, separators=(",", ":"), sort_keys=True).encode("utf-8")
