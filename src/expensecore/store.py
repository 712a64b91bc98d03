"""Durable context stores.

Holds the currently selected organization id per session so that a
restarted process (or a reloaded page) can restore it.

- ``InMemoryContextStore``: process-local, for tests and single-process tools.
- ``RedisContextStore``: shared Redis; the same instance the rest of the
  platform already connects to (``REDIS_URL``).
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .config import SharedConfig
from .exceptions import StorageError
from .interfaces import ContextStore

logger = logging.getLogger(__name__)


class InMemoryContextStore(ContextStore):
    """Dict-backed store. Survives nothing beyond the process."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class RedisContextStore(ContextStore):
    """Redis-backed store.

    Keys are namespaced as ``{prefix}:{key}``. Redis failures surface as
    ``StorageError`` so callers can fail closed.

    Args:
        client: A ``redis.asyncio.Redis`` client created with ``decode_responses=True``.
        prefix: Key namespace (``SharedConfig.org_context_prefix``).
        ttl_s: Optional expiry for stored values; None keeps them until removed.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        prefix: str = "expensecore:session",
        ttl_s: Optional[int] = None,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._ttl_s = ttl_s

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "expensecore:session", ttl_s: Optional[int] = None) -> RedisContextStore:
        return cls(aioredis.from_url(url, decode_responses=True), prefix=prefix, ttl_s=ttl_s)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(self._key(key))
        except RedisError as e:
            raise StorageError(f"Context store read failed: {e}", key=key) from e

    async def set(self, key: str, value: str) -> None:
        try:
            if self._ttl_s:
                await self._client.setex(self._key(key), self._ttl_s, value)
            else:
                await self._client.set(self._key(key), value)
        except RedisError as e:
            raise StorageError(f"Context store write failed: {e}", key=key) from e

    async def remove(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as e:
            raise StorageError(f"Context store delete failed: {e}", key=key) from e

    async def aclose(self) -> None:
        await self._client.aclose()


def build_context_store(config: SharedConfig) -> ContextStore:
    """Create the context store described by ``config``.

    Uses Redis when ``redis_url`` is set, otherwise an in-memory store
    (logged, since the selection will not survive a restart).
    """
    if config.redis_url:
        logger.info("Context store: redis (prefix=%s)", config.org_context_prefix)
        return RedisContextStore.from_url(config.redis_url, prefix=config.org_context_prefix)

    logger.warning("REDIS_URL not set, organization selection is kept in memory only")
    return InMemoryContextStore()


__all__ = [
    "InMemoryContextStore",
    "RedisContextStore",
    "build_context_store",
]
