"""Redis caching layer with TTL support, plus an explicit read-through cache."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import redis.asyncio as redis
from attrs import define, field, frozen
from beartype import beartype

from .config import Settings, get_settings

__all__ = [
    "Cache",
    "CacheConfig",
    "ReadThroughCache",
    "RedisType",
]

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from redis.asyncio import Redis as RedisType
else:
    RedisType = redis.Redis

T = TypeVar("T")


@frozen
class CacheConfig:
    """Immutable cache configuration."""

    url: str = field()
    default_ttl: int = field(default=3600)  # 1 hour
    max_connections: int = field(default=10)
    decode_responses: bool = field(default=True)
    key_prefix: str = field(default="fleet:")


class Cache:
    """Redis cache manager with async support.

    Accepts an already-created ``redis.asyncio.Redis`` client (tests pass a
    ``fakeredis`` instance); otherwise :meth:`connect` builds one from settings.
    """

    def __init__(
        self,
        redis_client: RedisType | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._redis: RedisType | None = redis_client
        self._config = self._get_config(settings or get_settings())

    @staticmethod
    def _get_config(settings: Settings) -> CacheConfig:
        return CacheConfig(
            url=settings.redis_url,
            default_ttl=settings.redis_ttl_seconds,
        )

    def _key(self, key: str) -> str:
        return f"{self._config.key_prefix}{key}"

    def _client(self) -> RedisType:
        if self._redis is None:
            raise RuntimeError("Cache not connected")
        return self._redis

    @beartype
    async def connect(self) -> None:
        """Create Redis connection pool."""
        if self._redis is not None:
            return

        self._redis = redis.from_url(
            self._config.url,
            max_connections=self._config.max_connections,
            decode_responses=self._config.decode_responses,
        )

    @beartype
    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis is None:
            return

        await self._redis.aclose()
        self._redis = None

    @beartype
    async def get(self, key: str) -> Any | None:
        """Get value from cache."""
        value = await self._client().get(self._key(key))
        if value is None:
            return None

        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value

    @beartype
    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | timedelta | None = None,
    ) -> bool:
        """Set value in cache with optional TTL."""
        if ttl is None:
            ttl = self._config.default_ttl

        if isinstance(ttl, int):
            ttl = timedelta(seconds=ttl)

        # Serialize complex objects to JSON
        if not isinstance(value, (str, int, float, bytes)):
            value = json.dumps(value, default=str)

        result = await self._client().setex(self._key(key), ttl, value)
        return bool(result)

    @beartype
    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        result = await self._client().delete(self._key(key))
        return bool(result > 0)

    @beartype
    async def exists(self, key: str) -> bool:
        """Check if key exists in cache."""
        result = await self._client().exists(self._key(key))
        return bool(result > 0)

    @beartype
    async def clear_pattern(self, pattern: str) -> int:
        """Clear all keys matching pattern."""
        client = self._client()
        keys = [key async for key in client.scan_iter(match=self._key(pattern))]
        if keys:
            return int(await client.delete(*keys))
        return 0

    @property
    def is_connected(self) -> bool:
        """Check if cache is connected."""
        return self._redis is not None

    @beartype
    async def health_check(self) -> bool:
        """Perform cache health check."""
        if self._redis is None:
            return False
        try:
            await self._redis.ping()
        except redis.RedisError as e:
            logger.warning("Redis health check failed: %s", e)
            return False
        return True


@define
class _LocalEntry:
    value: Any
    expires_at: float


@define
class _KeyLock:
    lock: asyncio.Lock = field(factory=asyncio.Lock)
    holders: int = 0


class ReadThroughCache(Generic[T]):
    """TTL-bound read-through cache.

    Values are loaded through a caller-supplied coroutine on a miss. With a
    Redis :class:`Cache` backend, ``encode``/``decode`` convert between the
    domain value and its JSON form; without one, values are held in-process
    with a monotonic expiry. A ``ttl_seconds`` of zero disables caching and
    calls the loader every time.
    """

    def __init__(
        self,
        namespace: str,
        ttl_seconds: int,
        backend: Cache | None = None,
        encode: Callable[[T], Any] | None = None,
        decode: Callable[[Any], T] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._namespace = namespace
        self._ttl = ttl_seconds
        self._backend = backend
        self._encode = encode or (lambda value: value)
        self._decode = decode or (lambda raw: raw)
        self._clock = clock
        self._local: dict[str, _LocalEntry] = {}
        self._locks: dict[str, _KeyLock] = {}

    @property
    def namespace(self) -> str:
        """Key namespace for this cache."""
        return self._namespace

    def _full_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        *,
        ttl_seconds: int | None = None,
        force_refresh: bool = False,
    ) -> T:
        """Return the cached value for ``key`` or load and store it."""
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return await loader()

        full_key = self._full_key(key)
        # Per-key lock lives only while some call holds or awaits it.
        key_lock = self._locks.setdefault(full_key, _KeyLock())
        key_lock.holders += 1
        try:
            async with key_lock.lock:
                if not force_refresh:
                    hit = await self._lookup(full_key)
                    if hit is not None:
                        return hit

                value = await loader()
                await self._store(full_key, value, ttl)
                return value
        finally:
            key_lock.holders -= 1
            if key_lock.holders == 0:
                del self._locks[full_key]

    async def invalidate(self, key: str) -> None:
        """Drop a cached value."""
        full_key = self._full_key(key)
        self._local.pop(full_key, None)
        if self._backend is not None:
            await self._backend.delete(full_key)

    async def _lookup(self, full_key: str) -> T | None:
        if self._backend is not None:
            raw = await self._backend.get(full_key)
            return None if raw is None else self._decode(raw)

        entry = self._local.get(full_key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._local[full_key]
            return None
        return entry.value

    async def _store(self, full_key: str, value: T, ttl: int) -> None:
        if self._backend is not None:
            await self._backend.set(full_key, self._encode(value), ttl)
            return
        now = self._clock()
        expired = [k for k, entry in self._local.items() if entry.expires_at <= now]
        for expired_key in expired:
            del self._local[expired_key]
        self._local[full_key] = _LocalEntry(value=value, expires_at=now + ttl)
