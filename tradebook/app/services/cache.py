"""
Response cache shared by the expensive read endpoints.
Uses Redis when configured, otherwise an in-process dict with per-entry expiry.
"""
import fnmatch
import json
import logging
import threading
import time
from typing import Any, Callable, Optional

import redis

from ..config import settings

logger = logging.getLogger(__name__)


class CacheService:
    """Cache service with Redis backend and in-memory fallback"""

    def __init__(self, redis_url: Optional[str] = None):
        self._redis_client: Optional[redis.Redis] = None
        self._memory_cache: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._use_redis = False

        url = settings.cache.redis_url if redis_url is None else redis_url
        if url:
            try:
                self._redis_client = redis.from_url(
                    url,
                    decode_responses=True,
                    socket_connect_timeout=2,
                    socket_timeout=2,
                )
                self._redis_client.ping()
                self._use_redis = True
                logger.info("Redis cache initialized successfully")
            except redis.RedisError as e:
                logger.warning("Redis connection failed, using in-memory cache: %s", e)
                self._redis_client = None
        else:
            logger.info("Using in-memory cache (Redis not configured)")

    @property
    def backend(self) -> str:
        return "redis" if self._use_redis else "memory"

    def get(self, key: str) -> Optional[Any]:
        if self._use_redis and self._redis_client:
            try:
                value = self._redis_client.get(key)
                return json.loads(value) if value else None
            except redis.RedisError as e:
                logger.error("Cache get error for key %s: %s", key, e)
                return None
        with self._lock:
            entry = self._memory_cache.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._memory_cache[key]
                return None
            return value

    def _sweep_expired(self) -> None:
        # Caller holds self._lock.
        now = time.monotonic()
        for key in [k for k, (expires_at, _) in self._memory_cache.items() if expires_at <= now]:
            del self._memory_cache[key]

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with optional TTL (seconds)"""
        if ttl is None:
            ttl = settings.cache.default_ttl
        if self._use_redis and self._redis_client:
            try:
                self._redis_client.setex(key, ttl, json.dumps(value))
                return True
            except (redis.RedisError, TypeError) as e:
                logger.error("Cache set error for key %s: %s", key, e)
                return False
        with self._lock:
            self._sweep_expired()
            self._memory_cache[key] = (time.monotonic() + ttl, value)
        return True

    def delete(self, key: str) -> bool:
        if self._use_redis and self._redis_client:
            try:
                self._redis_client.delete(key)
                return True
            except redis.RedisError as e:
                logger.error("Cache delete error for key %s: %s", key, e)
                return False
        with self._lock:
            self._memory_cache.pop(key, None)
        return True

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob ``pattern`` such as ``market:QQQ:*``"""
        if self._use_redis and self._redis_client:
            try:
                keys = list(self._redis_client.scan_iter(match=pattern))
                return self._redis_client.delete(*keys) if keys else 0
            except redis.RedisError as e:
                logger.error("Cache delete_pattern error for pattern %s: %s", pattern, e)
                return 0
        with self._lock:
            self._sweep_expired()
            doomed = [k for k in self._memory_cache if fnmatch.fnmatchcase(k, pattern)]
            for key in doomed:
                del self._memory_cache[key]
        return len(doomed)

    def clear_all(self) -> bool:
        if self._use_redis and self._redis_client:
            try:
                self._redis_client.flushdb()
                return True
            except redis.RedisError as e:
                logger.error("Cache clear error: %s", e)
                return False
        with self._lock:
            self._memory_cache.clear()
        return True

    def remember(self, key: str, fetcher: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value for ``key`` or compute, store and return it."""
        hit = self.get(key)
        if hit is not None:
            logger.debug("Cache HIT %s", key)
            return hit
        value = fetcher()
        self.set(key, value, ttl)
        return value

    def health_check(self) -> dict:
        if self._use_redis and self._redis_client:
            try:
                self._redis_client.ping()
                info = self._redis_client.info()
                return {
                    "status": "healthy",
                    "backend": "redis",
                    "connected_clients": info.get("connected_clients", 0),
                    "used_memory_human": info.get("used_memory_human", "unknown"),
                }
            except redis.RedisError as e:
                return {"status": "unhealthy", "backend": "redis", "error": str(e)}
        with self._lock:
            size = len(self._memory_cache)
        return {"status": "healthy", "backend": "memory", "keys_cached": size}


# Global cache instance
cache = CacheService()


def get_benchmark_cache_key(user_id: int, symbol: str, year: Optional[int] = None) -> str:
    return f"benchmark:{user_id}:{symbol.upper()}:{year or 'all'}"


def get_market_data_cache_key(symbol: str, start: int, end: int) -> str:
    return f"market:{symbol.upper()}:{start}:{end}"


def get_user_selection_cache_key(roles: Optional[str], year: Optional[int], user_id: Optional[int]) -> str:
    return f"users-selection:{roles or 'all'}:{year or 'all'}:{user_id or 'all'}"
