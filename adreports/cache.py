"""Query result cache (cache-aside) on Redis."""
from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from .ad.models import CredentialContext, Query


logger = logging.getLogger(__name__)

CACHE_PREFIX = "ad"


class QueryCache(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl: int) -> None:
        ...

    async def delete(self, *keys: str) -> int:
        ...

    async def keys_matching(self, pattern: str) -> list[str]:
        ...

    async def ping(self) -> bool:
        ...


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False)


def build_cache_key(query: Query, context: Optional[CredentialContext] = None) -> str:
    """ad:<scope>:<type>:<sha256 of the query shape>.

    Results fetched under different identities never share a key.
    """
    ctx = context or CredentialContext()
    digest = hashlib.sha256(_canonical(query.shape()).encode("utf-8")).hexdigest()
    return f"{CACHE_PREFIX}:{ctx.cache_scope}:{query.type}:{digest}"


class RedisQueryCache:
    """QueryCache over redis.asyncio.

    Socket timeouts are short (2 s by default).
    Errors propagate to the caller, which decides whether they matter.
    """

    def __init__(
        self,
        redis_url: str = "",
        *,
        client: Optional[redis.Redis] = None,
        socket_timeout: float = 2.0,
        scan_count: int = 500,
    ) -> None:
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.scan_count = scan_count
        self._redis: Optional[redis.Redis] = client

    def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
                max_connections=20,
            )
            logger.info("Redis client created for query cache")
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        return await self._client().get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._client().set(key, value, ex=int(ttl) if ttl else None)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._client().delete(*keys))

    async def keys_matching(self, pattern: str) -> list[str]:
        # SCAN, not KEYS
        return [k async for k in self._client().scan_iter(match=pattern, count=self.scan_count)]

    async def ping(self) -> bool:
        try:
            return bool(await self._client().ping())
        except (RedisError, OSError) as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis connection closed.")
