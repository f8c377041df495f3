"""
TTL cache for messaging-bridge lookups (Chatwoot contact and conversation ids)
Backed by Redis, with an in-process store when Redis is disabled or unreachable.
A single instance is created at startup and handed to the services that need it.
"""

import json
import logging
import time
from threading import Lock
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Cache:
    """Redis cache wrapper with automatic serialization and memory fallback"""

    def __init__(
        self,
        default_ttl: int = 3600,
        redis_factory: Optional[Callable] = None,
        namespace: str = "clinic_automation",
    ):
        self.default_ttl = default_ttl
        self.namespace = namespace
        self._redis_factory = redis_factory
        self.redis_client = None
        self._redis_failed = False
        # Format: {key: (expires_at, serialized_value)}
        self._memory: dict[str, tuple[float, str]] = {}
        self._lock = Lock()

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _get_client(self):
        """Lazy load Redis client; stays on the memory store after one failure"""
        if self._redis_factory is None or self._redis_failed:
            return None
        if self.redis_client is None:
            try:
                self.redis_client = self._redis_factory()
            except Exception as e:
                logger.warning(f"⚠️ Redis cache unavailable, using memory store: {e}")
                self._redis_failed = True
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        full_key = self._key(key)
        client = self._get_client()

        if client:
            try:
                value = client.get(full_key)
                if value:
                    logger.debug(f"✅ Cache HIT: {key}")
                    return json.loads(value)
                logger.debug(f"❌ Cache MISS: {key}")
                return None
            except Exception as e:
                logger.error(f"❌ Cache get error for {key}: {e}")
                return None

        with self._lock:
            entry = self._memory.get(full_key)
            if entry is None:
                return None
            expires_at, value = entry
            if time.time() >= expires_at:
                del self._memory[full_key]
                return None
        return json.loads(value)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with TTL (defaults to the cache-wide TTL)"""
        ttl = ttl or self.default_ttl
        full_key = self._key(key)
        serialized = json.dumps(value)
        client = self._get_client()

        if client:
            try:
                client.setex(full_key, ttl, serialized)
                logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
                return True
            except Exception as e:
                logger.error(f"❌ Cache set error for {key}: {e}")
                return False

        with self._lock:
            self._memory[full_key] = (time.time() + ttl, serialized)
        return True

    def delete(self, key: str) -> bool:
        """Delete value from cache"""
        full_key = self._key(key)
        client = self._get_client()

        if client:
            try:
                client.delete(full_key)
                logger.debug(f"✅ Cache DELETE: {key}")
                return True
            except Exception as e:
                logger.error(f"❌ Cache delete error for {key}: {e}")
                return False

        with self._lock:
            self._memory.pop(full_key, None)
        return True

    def clear(self) -> None:
        """Drop the in-process store (Redis keys expire on their own)"""
        with self._lock:
            self._memory.clear()


def create_cache() -> Cache:
    """Build the application cache from configuration"""
    from .config import CACHE_TTL_SECONDS, REDIS_ENABLED
    from .redis_client import get_redis_client

    return Cache(
        default_ttl=CACHE_TTL_SECONDS,
        redis_factory=get_redis_client if REDIS_ENABLED else None,
    )
