"""Per-collection mutual exclusion for grouping jobs."""
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

import redis
from redis.exceptions import LockError, RedisError

from src.app.config import settings

logger = logging.getLogger(__name__)


def grouping_lock_name(collection_id: str) -> str:
    return f"lock:grouping:{collection_id}"


class LockManager(ABC):
    """Non-blocking named locks."""

    @abstractmethod
    @contextmanager
    def hold(self, name: str) -> Iterator[bool]:
        """Yield True if the lock was acquired, False if someone else holds it."""
        yield False


class RedisLockManager(LockManager):
    """Locks shared by every worker process through Redis."""

    def __init__(self, redis_url: Optional[str] = None, timeout: Optional[int] = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self.timeout = timeout or settings.GROUPING_LOCK_TIMEOUT_SECONDS
        self._redis: Optional[redis.Redis] = None

    @property
    def redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.Redis.from_url(self.redis_url)
        return self._redis

    @contextmanager
    def hold(self, name: str) -> Iterator[bool]:
        lock = self.redis.lock(name, timeout=self.timeout, blocking=False)
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                try:
                    lock.release()
                except (LockError, RedisError) as e:
                    # Expired under us; the next holder already owns it
                    logger.warning(f"Could not release lock {name}: {e}")


class LocalLockManager(LockManager):
    """In-process locks for development and tests."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, name: str) -> Iterator[bool]:
        with self._guard:
            lock = self._locks.setdefault(name, threading.Lock())
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()


def create_lock_manager() -> LockManager:
    if settings.ENVIRONMENT in ("development", "test"):
        return LocalLockManager()
    return RedisLockManager()
