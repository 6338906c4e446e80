"""
Caching System for the Portfolio Live API.

The service keeps one piece of read-through state in process: the identity
cache used by the "who am I" endpoint, so that repeated profile polling from
open editor tabs does not hit the Credential Store each time.

Key Components:
- `CacheBackend` (ABC): the storage interface (get, set, delete, clear, keys,
  stats).
- `MemoryCacheBackend`: dictionary storage with LRU eviction by entry count
  and by approximate memory size. Entries may carry an optional TTL.
- `CacheManager`: facade over a backend that logs and swallows backend
  failures, so a broken cache degrades to a cache miss instead of an error.
- `IdentityCache`: user id → identity projection. Entries carry no TTL; the
  whole cache is dropped every epoch (five minutes by default) by a background
  task, and single entries are dropped explicitly after credential or profile
  changes. A cache hit may therefore serve a projection up to one epoch old.

Nothing here is a module-level singleton: the application factory builds the
backend, the manager and the identity cache, starts the epoch task in the
lifespan and stops it on shutdown.
"""

import asyncio
import fnmatch
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from core.logging_config import get_logger
from core.models import IdentityProjection

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """Cache entry with metadata"""

    value: Any
    created_at: datetime
    expires_at: Optional[datetime] = None
    access_count: int = 0
    last_accessed: Optional[datetime] = None
    size_bytes: int = 0

    def __post_init__(self):
        if self.last_accessed is None:
            self.last_accessed = self.created_at
        if self.size_bytes == 0:
            self.size_bytes = sys.getsizeof(self.value)

    @property
    def is_expired(self) -> bool:
        """Check if cache entry has expired"""
        if self.expires_at is None:
            return False
        return datetime.utcnow() > self.expires_at


class CacheBackend(ABC):
    """Abstract base class for cache backends"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get cache entry value by key"""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Set cache entry with optional TTL"""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete cache entry"""

    @abstractmethod
    async def clear(self) -> bool:
        """Clear all cache entries"""

    @abstractmethod
    async def keys(self, pattern: str = "*") -> List[str]:
        """Get cache keys matching pattern"""

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        """Get cache statistics"""


class MemoryCacheBackend(CacheBackend):
    """In-memory cache backend with LRU eviction"""

    def __init__(self, max_size: int = 1000, max_memory_mb: int = 100):
        self.max_size = max_size
        self.max_memory_bytes = max_memory_mb * 1024 * 1024
        self.cache: Dict[str, CacheEntry] = {}
        self.access_order: List[str] = []  # For LRU tracking
        self.total_size_bytes = 0
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.clears = 0
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self.cache.get(key)
            if entry is None:
                self.misses += 1
                logger.debug(f"Cache miss for key: {key}")
                return None

            if entry.is_expired:
                self._remove_key(key)
                self.misses += 1
                logger.debug(f"Cache expired for key: {key}")
                return None

            entry.access_count += 1
            entry.last_accessed = datetime.utcnow()

            # Move to end of access order (most recently used)
            if key in self.access_order:
                self.access_order.remove(key)
            self.access_order.append(key)

            self.hits += 1
            logger.debug(f"Cache hit for key: {key}")
            return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        async with self._lock:
            expires_at = None
            if ttl:
                expires_at = datetime.utcnow() + timedelta(seconds=ttl)

            entry = CacheEntry(
                value=value, created_at=datetime.utcnow(), expires_at=expires_at
            )

            if key in self.cache:
                self._remove_key(key)

            self._ensure_capacity(entry.size_bytes)

            self.cache[key] = entry
            self.access_order.append(key)
            self.total_size_bytes += entry.size_bytes

            logger.debug(f"Cache set for key: {key}, TTL: {ttl}")
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self.cache:
                self._remove_key(key)
                logger.debug(f"Cache deleted for key: {key}")
                return True
            return False

    async def clear(self) -> bool:
        async with self._lock:
            dropped = len(self.cache)
            self.cache.clear()
            self.access_order.clear()
            self.total_size_bytes = 0
            self.clears += 1
            logger.info(f"Cache cleared ({dropped} entries dropped)")
            return True

    async def keys(self, pattern: str = "*") -> List[str]:
        async with self._lock:
            if pattern == "*":
                return list(self.cache.keys())
            return [key for key in self.cache.keys() if fnmatch.fnmatch(key, pattern)]

    async def stats(self) -> Dict[str, Any]:
        async with self._lock:
            total_requests = self.hits + self.misses
            hit_rate = (self.hits / total_requests) if total_requests > 0 else 0

            return {
                "backend": "memory",
                "total_keys": len(self.cache),
                "max_size": self.max_size,
                "memory_usage_bytes": self.total_size_bytes,
                "max_memory_bytes": self.max_memory_bytes,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": hit_rate,
                "evictions": self.evictions,
                "clears": self.clears,
            }

    def _remove_key(self, key: str) -> None:
        """Remove key from cache and update tracking"""
        entry = self.cache.pop(key, None)
        if entry is not None:
            self.total_size_bytes -= entry.size_bytes
        if key in self.access_order:
            self.access_order.remove(key)

    def _ensure_capacity(self, new_entry_size: int) -> None:
        """Evict least recently used entries until the new entry fits"""
        while (
            len(self.cache) >= self.max_size
            or self.total_size_bytes + new_entry_size > self.max_memory_bytes
        ):
            if not self.access_order:
                break

            lru_key = self.access_order[0]
            self._remove_key(lru_key)
            self.evictions += 1
            logger.debug(f"Evicted LRU key: {lru_key}")


class CacheManager:
    """High-level cache manager"""

    def __init__(self, backend: CacheBackend):
        self.backend = backend
        self.logger = get_logger(f"{__name__}.CacheManager")

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        try:
            return await self.backend.get(key)
        except Exception as e:
            self.logger.error(f"Cache get error for key {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Set value in cache"""
        try:
            return await self.backend.set(key, value, ttl)
        except Exception as e:
            self.logger.error(f"Cache set error for key {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete value from cache"""
        try:
            return await self.backend.delete(key)
        except Exception as e:
            self.logger.error(f"Cache delete error for key {key}: {e}")
            return False

    async def clear(self) -> bool:
        """Drop every entry"""
        try:
            return await self.backend.clear()
        except Exception as e:
            self.logger.error(f"Cache clear error: {e}")
            return False

    async def stats(self) -> Dict[str, Any]:
        return await self.backend.stats()

    async def health_check(self) -> Dict[str, Any]:
        """Perform cache health check"""
        try:
            test_key = "__health_check__"
            test_value = "ok"

            await self.set(test_key, test_value, ttl=1)
            retrieved = await self.get(test_key)
            await self.delete(test_key)

            stats = await self.backend.stats()

            return {
                "status": "healthy" if retrieved == test_value else "unhealthy",
                "backend_type": stats.get("backend", "unknown"),
                "stats": stats,
            }
        except Exception as e:
            self.logger.error(f"Cache health check failed: {e}")
            return {"status": "unhealthy", "backend_type": "unknown", "error": str(e)}


class IdentityCache:
    """Epoch-cleared cache of identity projections keyed by user id"""

    KEY_PREFIX = "identity"

    def __init__(self, manager: CacheManager, epoch_seconds: float = 300):
        self.manager = manager
        self.epoch_seconds = epoch_seconds
        self._clear_task: Optional[asyncio.Task] = None

    def _key(self, user_id: str) -> str:
        return f"{self.KEY_PREFIX}:{user_id}"

    async def get(self, user_id: str) -> Optional[IdentityProjection]:
        cached = await self.manager.get(self._key(user_id))
        if cached is None:
            return None
        return IdentityProjection(**cached)

    async def put(self, user_id: str, projection: IdentityProjection) -> None:
        # No TTL: lifetime is bounded by the epoch clear
        await self.manager.set(self._key(user_id), projection.model_dump())

    async def delete(self, user_id: str) -> None:
        await self.manager.delete(self._key(user_id))

    async def clear(self) -> None:
        await self.manager.clear()

    async def _clear_every_epoch(self) -> None:
        while True:
            await asyncio.sleep(self.epoch_seconds)
            await self.clear()
            logger.debug("Identity cache epoch elapsed, cache cleared")

    def start(self) -> None:
        """Start the periodic full clear on the running event loop"""
        if self._clear_task is None or self._clear_task.done():
            self._clear_task = asyncio.create_task(self._clear_every_epoch())
            logger.info(
                f"Identity cache started with a {self.epoch_seconds}s clear epoch"
            )

    async def stop(self) -> None:
        if self._clear_task is not None:
            self._clear_task.cancel()
            try:
                await self._clear_task
            except asyncio.CancelledError:
                pass
            self._clear_task = None
            logger.info("Identity cache stopped")

    @property
    def running(self) -> bool:
        return self._clear_task is not None and not self._clear_task.done()
