"""
Cache Service

Key/value cache with TTL used for embeddings, document metadata and
finished run snapshots. Redis when reachable, in-memory otherwise.
Callers receive a cache instance; nothing here is a hidden singleton.
"""
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

import redis

from deep_research.core.config import settings
from deep_research.core.logging import get_logger
from deep_research.schemas.research import RunSnapshot

logger = get_logger(__name__)


class BaseCache(ABC):
    """String cache with optional per-entry TTL."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str, ttl: Optional[timedelta] = None) -> bool:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def keys(self, prefix: str) -> List[str]:
        pass

    @property
    def is_connected(self) -> bool:
        return False


class MemoryCache(BaseCache):
    """Process-local cache. Expired entries are dropped on read."""

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            del self._data[key]
            return None
        return value

    def set(self, key: str, value: str, ttl: Optional[timedelta] = None) -> bool:
        expires_at = time.monotonic() + ttl.total_seconds() if ttl else None
        self._data[key] = (value, expires_at)
        return True

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self, prefix: str) -> List[str]:
        return [k for k in list(self._data) if k.startswith(prefix) and self.get(k) is not None]


class RedisCache(BaseCache):
    """Redis-backed cache that falls back to memory when Redis is unavailable."""

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None):
        self._host = host or settings.REDIS_HOST
        self._port = port or settings.REDIS_PORT
        self._client: Optional[redis.Redis] = None
        self._connected = False
        self._fallback = MemoryCache()
        self._connect()

    def _connect(self):
        """Attempt to connect to Redis."""
        try:
            self._client = redis.Redis(
                host=self._host,
                port=self._port,
                db=0,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2
            )
            self._client.ping()
            self._connected = True
            logger.info("Connected to Redis cache")
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning(f"Redis not available, using in-memory fallback: {e}")
            self._connected = False

    def get(self, key: str) -> Optional[str]:
        try:
            if self._connected and self._client:
                return self._client.get(key)
            return self._fallback.get(key)
        except redis.RedisError as e:
            logger.error(f"Cache get error: {e}")
            return None

    def set(self, key: str, value: str, ttl: Optional[timedelta] = None) -> bool:
        try:
            if self._connected and self._client:
                if ttl:
                    self._client.setex(key, int(ttl.total_seconds()), value)
                else:
                    self._client.set(key, value)
                return True
            return self._fallback.set(key, value, ttl)
        except redis.RedisError as e:
            logger.error(f"Cache set error: {e}")
            return False

    def delete(self, key: str) -> bool:
        try:
            if self._connected and self._client:
                return bool(self._client.delete(key))
            return self._fallback.delete(key)
        except redis.RedisError as e:
            logger.error(f"Cache delete error: {e}")
            return False

    def keys(self, prefix: str) -> List[str]:
        try:
            if self._connected and self._client:
                return list(self._client.scan_iter(match=f"{prefix}*"))
            return self._fallback.keys(prefix)
        except redis.RedisError as e:
            logger.error(f"Cache list error: {e}")
            return []

    @property
    def is_connected(self) -> bool:
        """Check if Redis is connected."""
        return self._connected


class RunCache:
    """Stores finished run snapshots on top of a BaseCache."""

    PREFIX = "run:"

    def __init__(self, cache: BaseCache, ttl: Optional[timedelta] = None):
        self._cache = cache
        self._ttl = ttl or timedelta(hours=settings.RUN_CACHE_TTL_HOURS)

    def _get_key(self, run_id: str) -> str:
        return f"{self.PREFIX}{run_id}"

    def set(self, snapshot: RunSnapshot) -> bool:
        return self._cache.set(self._get_key(snapshot.run_id), snapshot.model_dump_json(), self._ttl)

    def get(self, run_id: str) -> Optional[RunSnapshot]:
        data = self._cache.get(self._get_key(run_id))
        if not data:
            return None
        try:
            return RunSnapshot.model_validate_json(data)
        except ValueError as e:
            logger.error(f"Corrupt run snapshot {run_id}: {e}")
            return None

    def list_runs(self) -> List[str]:
        return [k[len(self.PREFIX):] for k in self._cache.keys(self.PREFIX)]
