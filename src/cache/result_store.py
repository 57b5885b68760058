"""
Result Store for ReviewSight
============================

Optional persistence of final collection results, keyed by session id,
in Redis with automatic fallback to an in-memory store.

Entries expire after the session retention window, so a result outlives
its in-memory session by at most that TTL.

Usage:
    store = ResultStore(ttl_seconds=3600)
    store.save_results(session_id, results.to_dict())
    payload = store.get_results(session_id)

Environment variables:
    REDIS_URL - Full Redis URL (redis://host:port/db)
    REDIS_HOST - Redis host (default: localhost)
    REDIS_PORT - Redis port (default: 6379)
    REDIS_DB - Redis database number (default: 0)
    REDIS_PASSWORD - Redis password (optional)
    CACHE_PREFIX - Key prefix (default: reviewsight)
"""

import os
import json
import time
import logging
from typing import Optional, Dict, Any, Tuple

import redis

from ..data.config import get_settings

logger = logging.getLogger(__name__)


def build_redis_url() -> str:
    """Redis URL from REDIS_URL or its individual components."""
    url = get_settings().cache.redis_url
    if url:
        return url

    host = os.getenv("REDIS_HOST", "localhost")
    port = int(os.getenv("REDIS_PORT", "6379"))
    db = int(os.getenv("REDIS_DB", "0"))
    password = os.getenv("REDIS_PASSWORD")

    if password:
        return f"redis://:{password}@{host}:{port}/{db}"
    return f"redis://{host}:{port}/{db}"


class ResultStore:
    """
    Redis-backed result store with in-memory fallback.

    Falls back to memory when Redis is unreachable at connect time,
    and per-operation when a Redis call fails.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: Optional[str] = None,
        ttl_seconds: Optional[float] = None,
        client: Optional[Any] = None,
    ):
        """
        Initialize the store.

        Args:
            redis_url: Optional Redis URL. If None, reads from env.
            prefix: Key prefix for namespace isolation.
            ttl_seconds: Entry lifetime (default: session retention window).
            client: Pre-built Redis client (tests).
        """
        settings = get_settings()
        self.prefix = prefix or settings.cache.prefix
        self.ttl_seconds = int(ttl_seconds or settings.sessions.retention_seconds)
        self._memory: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._redis: Optional[Any] = client

        if self._redis is None:
            self._connect(redis_url or build_redis_url())

    def _connect(self, url: str) -> None:
        """Establish Redis connection."""
        try:
            self._redis = redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            self._redis.ping()
            logger.info(f"Result store connected: {url.split('@')[-1]}")
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Redis connection failed: {e}. Using in-memory result store.")
            self._redis = None

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    def _make_key(self, session_id: str) -> str:
        return f"{self.prefix}:results:{session_id}"

    def save_results(self, session_id: str, payload: Dict[str, Any]) -> bool:
        """Store a session's final results with the retention TTL."""
        key = self._make_key(session_id)

        if self._redis is not None:
            try:
                self._redis.setex(key, self.ttl_seconds, json.dumps(payload, default=str))
                return True
            except redis.RedisError as e:
                logger.warning(f"Redis set failed: {e}")

        now = time.time()
        self._sweep_expired(now)
        self._memory[key] = (now + self.ttl_seconds, payload)
        return True

    def _sweep_expired(self, now: float) -> None:
        """Drop memory entries past their TTL, read or not."""
        expired = [key for key, (expires_at, _) in self._memory.items() if now > expires_at]
        for key in expired:
            del self._memory[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired results from memory")

    def get_results(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Stored results, or None if absent or expired."""
        key = self._make_key(session_id)

        if self._redis is not None:
            try:
                value = self._redis.get(key)
                if value is not None:
                    return json.loads(value)
            except redis.RedisError as e:
                logger.warning(f"Redis get failed: {e}")

        entry = self._memory.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if time.time() > expires_at:
            del self._memory[key]
            return None
        return payload

    def delete(self, session_id: str) -> bool:
        key = self._make_key(session_id)
        deleted = self._memory.pop(key, None) is not None

        if self._redis is not None:
            try:
                deleted = self._redis.delete(key) > 0 or deleted
            except redis.RedisError as e:
                logger.warning(f"Redis delete failed: {e}")

        return deleted

    def close(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            try:
                self._redis.close()
            except redis.RedisError as e:
                logger.debug(f"Redis close failed: {e}")
            self._redis = None
