"""
Read-view caches.

Both caches keep an in-process TTL table and, when a Redis URL is given,
mirror entries to Redis so several processes share them. Redis trouble is
logged and the local table keeps serving.

``TimedCache`` is for the API server, whose handlers run in FastAPI's
threadpool. ``AsyncTimedCache`` is for code running on an event loop and
talks to Redis through ``redis.asyncio``.
"""

import logging
import pickle
import threading
import time
from typing import Any

from redis import Redis
from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

_DECODE_ERRORS = (RedisError, pickle.PickleError, ValueError, EOFError)
_ENCODE_ERRORS = (RedisError, pickle.PickleError, TypeError)
_SCAN_BATCH = 200


class _LocalEntries:
    def __init__(self) -> None:
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        now = time.monotonic()
        with self._lock:
            hit = self._entries.get(key)
            if hit is None:
                return None
            if now >= hit[0]:
                self._entries.pop(key, None)
                return None
            return hit[1]

    def put(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            self._entries[key] = (time.monotonic() + ttl, value)

    def drop_prefix(self, prefix: str) -> int:
        with self._lock:
            stale = [key for key in self._entries if key.startswith(prefix)]
            for key in stale:
                del self._entries[key]
        return len(stale)


class _Namespace:
    def __init__(self, key_prefix: str) -> None:
        self._key_prefix = key_prefix

    def key(self, key: str) -> str:
        return f"{self._key_prefix}:cache:{key}"

    def pattern(self, prefix: str) -> str:
        return self.key(f"{prefix}*")


class TimedCache:
    def __init__(self, redis_url: str | None = None, key_prefix: str = "budgetbuddy") -> None:
        self._local = _LocalEntries()
        self._ns = _Namespace(key_prefix)
        self._redis: Redis | None = None
        if redis_url:
            client = Redis.from_url(redis_url, decode_responses=False)
            try:
                client.ping()
            except RedisError as exc:
                logger.warning("Redis unavailable at %s, caching locally only: %s", redis_url, exc)
            else:
                self._redis = client

    def get(self, key: str) -> Any | None:
        if self._redis is not None:
            try:
                raw = self._redis.get(self._ns.key(key))
                if raw is not None:
                    return pickle.loads(raw)
            except _DECODE_ERRORS as exc:
                logger.debug("Redis read failed for %s: %s", key, exc)
        return self._local.get(key)

    def set(self, key: str, value: Any, ttl: int) -> None:
        ttl = max(1, ttl)
        if self._redis is not None:
            try:
                self._redis.setex(self._ns.key(key), ttl, pickle.dumps(value))
            except _ENCODE_ERRORS as exc:
                logger.debug("Redis write failed for %s: %s", key, exc)
        self._local.put(key, value, ttl)

    def invalidate_prefix(self, prefix: str) -> None:
        if self._redis is not None:
            try:
                keys = list(self._redis.scan_iter(match=self._ns.pattern(prefix), count=_SCAN_BATCH))
                if keys:
                    self._redis.delete(*keys)
            except RedisError as exc:
                logger.warning("Redis invalidation failed for prefix %s: %s", prefix, exc)
        self._local.drop_prefix(prefix)


class AsyncTimedCache:
    def __init__(self, redis_url: str | None = None, key_prefix: str = "budgetbuddy") -> None:
        self._local = _LocalEntries()
        self._ns = _Namespace(key_prefix)
        self._redis_url = redis_url
        self._redis: AsyncRedis | None = None

    async def connect(self) -> None:
        if not self._redis_url or self._redis is not None:
            return
        client = AsyncRedis.from_url(self._redis_url, decode_responses=False)
        try:
            await client.ping()
        except RedisError as exc:
            logger.warning("Redis unavailable at %s, caching locally only: %s", self._redis_url, exc)
            await client.aclose()
            return
        self._redis = client

    async def aclose(self) -> None:
        client, self._redis = self._redis, None
        if client is not None:
            await client.aclose()

    async def get(self, key: str) -> Any | None:
        if self._redis is not None:
            try:
                raw = await self._redis.get(self._ns.key(key))
                if raw is not None:
                    return pickle.loads(raw)
            except _DECODE_ERRORS as exc:
                logger.debug("Redis read failed for %s: %s", key, exc)
        return self._local.get(key)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        ttl = max(1, ttl)
        if self._redis is not None:
            try:
                await self._redis.setex(self._ns.key(key), ttl, pickle.dumps(value))
            except _ENCODE_ERRORS as exc:
                logger.debug("Redis write failed for %s: %s", key, exc)
        self._local.put(key, value, ttl)

    async def invalidate_prefix(self, prefix: str) -> None:
        if self._redis is not None:
            try:
                keys = [key async for key in self._redis.scan_iter(match=self._ns.pattern(prefix), count=_SCAN_BATCH)]
                if keys:
                    await self._redis.delete(*keys)
            except RedisError as exc:
                logger.warning("Redis invalidation failed for prefix %s: %s", prefix, exc)
        self._local.drop_prefix(prefix)

    async def invalidate_prefixes(self, *prefixes: str) -> None:
        for prefix in prefixes:
            await self.invalidate_prefix(prefix)
