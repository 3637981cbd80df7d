"""Key-value cache with Redis primary and optional in-memory LRU fallback.

The cache only ever holds derived data (per-user grievance lists, form
drafts), so every caller treats it as best-effort.  When Redis is down
the manager either serves from a process-local LRU or raises
:class:`CacheUnavailable`, which the callers turn into a miss.

The LRU is invisible to other processes and to writers that ran while
Redis was up, so it is only suitable for data that may be stale, such
as drafts.  Data that must track writes uses a manager built with
``inmemory_fallback=False``.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import OrderedDict
from typing import Any, Protocol, runtime_checkable

import orjson
import structlog

from src.services.errors import CacheUnavailable

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Cache backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class CacheBackend(Protocol):
    """Async byte-level cache backend."""

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisCacheBackend:
    """``redis.asyncio`` client over a shared connection pool."""

    __slots__ = ("_pool", "_redis")

    def __init__(self, url: str, *, max_connections: int = 20, socket_timeout: float = 2.0) -> None:
        import redis.asyncio as aioredis

        self._pool = aioredis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=False,
        )
        self._redis = aioredis.Redis(connection_pool=self._pool)

    async def get(self, key: str) -> bytes | None:
        return await self._redis.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        await self._redis.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False

    async def close(self) -> None:
        await self._redis.aclose()
        await self._pool.aclose()


# ---------------------------------------------------------------------------
# In-memory LRU backend
# ---------------------------------------------------------------------------


class _CacheEntry:
    __slots__ = ("expires_at", "value")

    def __init__(self, value: bytes, ttl_seconds: int | None) -> None:
        self.value = value
        self.expires_at: float | None = (time.monotonic() + ttl_seconds) if ttl_seconds is not None else None

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at


class InMemoryCacheBackend:
    """OrderedDict LRU with lazy TTL expiry, guarded by an asyncio lock."""

    __slots__ = ("_data", "_lock", "_max_size")

    def __init__(self, *, max_size: int = 10_000) -> None:
        self._max_size = max_size
        self._data: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.expired:
                del self._data[key]
                return None
            self._data.move_to_end(key)
            return entry.value

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        async with self._lock:
            self._data.pop(key, None)
            while len(self._data) >= self._max_size:
                self._data.popitem(last=False)
            self._data[key] = _CacheEntry(value, ttl_seconds)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    @property
    def size(self) -> int:
        return len(self._data)


# ---------------------------------------------------------------------------
# CacheManager  --  public API
# ---------------------------------------------------------------------------


class CacheManager:
    """JSON-valued cache facade choosing between Redis and the local LRU.

    Parameters
    ----------
    redis_url:
        Redis connection string.  ``None`` or ``""`` skips Redis entirely.
    namespace:
        Prefix prepended to every key (e.g. ``"sampark:"``).
    inmemory_fallback:
        Serve from a process-local LRU when Redis is missing or failing.
        When disabled, such failures raise :class:`CacheUnavailable`.
    reprobe_seconds:
        How long to wait after a Redis failure before trying it again.
    """

    __slots__ = (
        "_fallback",
        "_namespace",
        "_redis",
        "_redis_down_since",
        "_redis_checked",
        "_reprobe_seconds",
    )

    def __init__(
        self,
        *,
        redis_url: str | None = None,
        namespace: str = "",
        inmemory_fallback: bool = True,
        inmemory_max_size: int = 10_000,
        reprobe_seconds: float = 30.0,
    ) -> None:
        self._namespace = namespace
        self._fallback = InMemoryCacheBackend(max_size=inmemory_max_size) if inmemory_fallback else None
        self._redis: RedisCacheBackend | None = None
        self._redis_checked = False
        self._redis_down_since: float | None = None
        self._reprobe_seconds = reprobe_seconds

        if redis_url:
            try:
                self._redis = RedisCacheBackend(url=redis_url)
            except Exception:
                logger.warning("cache.redis_init_failed", exc_info=True)
                self._redis = None

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    def _mark_redis_down(self) -> None:
        self._redis_down_since = time.monotonic()

    async def _redis_usable(self) -> bool:
        if self._redis is None:
            return False
        if not self._redis_checked:
            self._redis_checked = True
            if await self._redis.ping():
                logger.info("cache.redis_connected")
            else:
                logger.warning("cache.redis_unavailable", fallback=self._fallback is not None)
                self._mark_redis_down()
        if self._redis_down_since is None:
            return True
        if time.monotonic() - self._redis_down_since < self._reprobe_seconds:
            return False
        if await self._redis.ping():
            logger.info("cache.redis_recovered")
            self._redis_down_since = None
            return True
        self._mark_redis_down()
        return False

    async def _call(self, method: str, key: str, *args: Any, **kwargs: Any) -> Any:
        if await self._redis_usable():
            try:
                return await getattr(self._redis, method)(key, *args, **kwargs)
            except Exception:
                logger.warning("cache.redis_op_failed", method=method, key=key, exc_info=True)
                self._mark_redis_down()

        if self._fallback is None:
            raise CacheUnavailable()
        return await getattr(self._fallback, method)(key, *args, **kwargs)

    # -- Public API ------------------------------------------------------------

    async def get(self, key: str, default: Any = None) -> Any:
        """Return the decoded value for *key*, or *default* on a miss."""
        raw: bytes | None = await self._call("get", self._make_key(key))
        if raw is None:
            return default
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("cache.corrupt_entry", key=key)
            return default

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        await self._call("set", self._make_key(key), orjson.dumps(value), ttl_seconds=ttl_seconds)

    async def delete(self, key: str) -> None:
        """Delete *key* everywhere, so an entry written during an outage cannot resurface."""
        full_key = self._make_key(key)
        await self._call("delete", full_key)
        if self._fallback is not None:
            await self._fallback.delete(full_key)

    async def ping(self) -> bool:
        """Return *True* if any backend can currently serve requests."""
        if await self._redis_usable():
            return True
        return self._fallback is not None

    async def close(self) -> None:
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.close()
