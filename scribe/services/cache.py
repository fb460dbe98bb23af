"""
Best-effort cache for published post reads.

Every implementation honours the same contract: a failure is logged and
reported as a miss (``get``) or ignored (``set``/``delete``). The cache is
never authoritative and never fails a request.
"""
import json
import time
from threading import Lock
from typing import Any, Dict, Optional, Protocol, Tuple

import redis

from ..logging_config import cache_logger


def post_key(post_id: int) -> str:
    return f"post:{post_id}"


def published_list_key(page: int, limit: int) -> str:
    return f"published_posts:{page}:{limit}"


class Cache(Protocol):
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...
    def delete(self, key: str) -> None: ...
    def ping(self) -> bool: ...


class RedisCache:
    """Cache backed by a Redis server via redis-py."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 0.5) -> "RedisCache":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            cache_logger.warning("Cache get failed, treating as miss", cache_key=key, error_message=str(e))
            return None

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self.client.setex(key, ttl_seconds, value)
        except redis.RedisError as e:
            cache_logger.warning("Cache set failed", cache_key=key, error_message=str(e))

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            cache_logger.warning("Cache delete failed", cache_key=key, error_message=str(e))

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        self.client.close()


class InMemoryCache:
    """Process-local TTL cache; used in tests and single-process development."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def ping(self) -> bool:
        return True

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class NullCache:
    """Cache that stores nothing, for deployments with caching disabled."""

    def get(self, key: str) -> Optional[str]:
        return None

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        pass

    def delete(self, key: str) -> None:
        pass

    def ping(self) -> bool:
        return True


def get_json(cache: Cache, key: str) -> Optional[Any]:
    """Read and decode a JSON payload; undecodable entries count as a miss."""
    raw = cache.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        cache_logger.warning("Discarding undecodable cache entry", cache_key=key)
        cache.delete(key)
        return None


def set_json(cache: Cache, key: str, value: Any, ttl_seconds: int) -> None:
    cache.set(key, json.dumps(value, default=str), ttl_seconds)
