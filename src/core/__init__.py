"""
Core package initializer.

This package provides cross-cutting helpers used by the API and the
pipeline workers: domain exceptions, caching and distributed locks.
"""

from .cache import (
    CacheBackend,
    RedisCache,
    InMemoryCache,
    cache,
    build_cache_key,
    media_list_pattern,
    cluster_list_key,
    invalidate_cache,
    invalidate_group_cache,
)
from .locks import (
    LockManager,
    RedisLockManager,
    LocalLockManager,
    create_lock_manager,
    grouping_lock_name,
)

__all__ = [
    # Cache
    "CacheBackend",
    "RedisCache",
    "InMemoryCache",
    "cache",
    "build_cache_key",
    "media_list_pattern",
    "cluster_list_key",
    "invalidate_cache",
    "invalidate_group_cache",
    # Locks
    "LockManager",
    "RedisLockManager",
    "LocalLockManager",
    "create_lock_manager",
    "grouping_lock_name",
]
