"""
Cache Handling
==============

Cache backends used by the API (list caching) and by pipeline workers
(invalidation after media and cluster changes).

- Redis-backed distributed cache
- In-memory cache for development and tests
- Pattern-based invalidation keyed by group
"""

import fnmatch
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union
from uuid import UUID

import redis
from redis.exceptions import RedisError

from src.app.config import settings

logger = logging.getLogger(__name__)

CACHE_DEFAULT_TTL = 3600  # 1 hour

CACHE_PREFIX_MEDIA = "media"
CACHE_PREFIX_CLUSTERS = "clusters"


# ============================================================================
# Cache Backend Abstract Base
# ============================================================================

class CacheBackend(ABC):
    """Abstract base class for cache backends."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def clear(self, pattern: Optional[str] = None) -> int:
        """Delete keys matching a glob pattern, or everything."""
        pass


# ============================================================================
# Redis Cache Backend
# ============================================================================

class RedisCache(CacheBackend):
    """Redis-backed cache. Errors are logged and reported as misses."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._redis: Optional[redis.Redis] = None

    @property
    def redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.Redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    def get(self, key: str) -> Optional[Any]:
        try:
            value = self.redis.get(key)
        except RedisError as e:
            logger.error(f"Redis GET error for key {key}: {str(e)}")
            return None
        if value is None:
            return None
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        serialized = json.dumps(value, default=str)
        try:
            if ttl:
                return bool(self.redis.setex(key, ttl, serialized))
            return bool(self.redis.set(key, serialized))
        except RedisError as e:
            logger.error(f"Redis SET error for key {key}: {str(e)}")
            return False

    def delete(self, key: str) -> bool:
        try:
            return bool(self.redis.delete(key))
        except RedisError as e:
            logger.error(f"Redis DELETE error for key {key}: {str(e)}")
            return False

    def clear(self, pattern: Optional[str] = None) -> int:
        try:
            if pattern:
                deleted = 0
                cursor = 0
                while True:
                    cursor, keys = self.redis.scan(cursor, match=pattern, count=100)
                    if keys:
                        deleted += self.redis.delete(*keys)
                    if cursor == 0:
                        break
                return deleted

            count = self.redis.dbsize()
            self.redis.flushdb()
            return count
        except RedisError as e:
            logger.error(f"Redis CLEAR error: {str(e)}")
            return 0


# ============================================================================
# In-Memory Cache Backend (for development/testing)
# ============================================================================

class InMemoryCache(CacheBackend):
    """Simple in-memory cache backend."""

    def __init__(self):
        self.cache: Dict[str, tuple] = {}  # key -> (value, expiry_time)

    def get(self, key: str) -> Optional[Any]:
        if key not in self.cache:
            return None
        value, expiry = self.cache[key]
        if expiry is not None and time.time() >= expiry:
            del self.cache[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        expiry = (time.time() + ttl) if ttl else None
        self.cache[key] = (value, expiry)
        return True

    def delete(self, key: str) -> bool:
        return self.cache.pop(key, None) is not None

    def clear(self, pattern: Optional[str] = None) -> int:
        if pattern:
            keys_to_delete = [k for k in self.cache if fnmatch.fnmatch(k, pattern)]
            for key in keys_to_delete:
                del self.cache[key]
            return len(keys_to_delete)
        count = len(self.cache)
        self.cache.clear()
        return count


# ============================================================================
# Global Cache Instance
# ============================================================================

# Initialize cache backend based on environment
if settings.ENVIRONMENT in ("development", "test"):
    cache: CacheBackend = InMemoryCache()
else:
    cache: CacheBackend = RedisCache(settings.REDIS_URL)


# ============================================================================
# Cache Key Builders
# ============================================================================

def build_cache_key(*parts: Union[str, int, UUID]) -> str:
    """Build a cache key from parts."""
    return ":".join(str(p) for p in parts)


def media_list_pattern(group_id: Union[str, UUID]) -> str:
    """Paged media lists of a group: media:group:{id}:page:*"""
    return build_cache_key(CACHE_PREFIX_MEDIA, "group", group_id, "page", "*")


def cluster_list_key(group_id: Union[str, UUID]) -> str:
    return build_cache_key(CACHE_PREFIX_CLUSTERS, "group", group_id)


# ============================================================================
# Cache Invalidation
# ============================================================================

def invalidate_cache(*keys: str, backend: Optional[CacheBackend] = None) -> int:
    """
    Invalidate cache for specific keys; keys containing ``*`` are patterns.

    Returns:
        Number of keys deleted
    """
    backend = backend or cache
    deleted = 0
    for key in keys:
        if "*" in key:
            deleted += backend.clear(key)
        elif backend.delete(key):
            deleted += 1

    if deleted > 0:
        logger.info(f"Invalidated {deleted} cache keys")
    return deleted


def invalidate_group_cache(
    group_id: Union[str, UUID],
    media: bool = True,
    clusters: bool = True,
    backend: Optional[CacheBackend] = None,
) -> int:
    """Invalidate a group's media list pages and/or its cluster list."""
    keys = []
    if media:
        keys.append(media_list_pattern(group_id))
    if clusters:
        keys.append(cluster_list_key(group_id))
    return invalidate_cache(*keys, backend=backend)
