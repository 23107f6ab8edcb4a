from __future__ import annotations

import logging
import threading
from time import monotonic
from typing import Dict, Optional, Tuple

import redis

logger = logging.getLogger("markpress.rate_limit")


def connect_redis(url: str) -> Optional[redis.Redis]:
    """Return a live client for ``url``, or None when Redis is unset or unreachable."""
    if not url:
        return None
    try:
        client = redis.from_url(url)
        client.ping()
        return client
    except redis.RedisError as exc:
        logger.warning("event=redis_unavailable url=%s error=%s", url, exc)
        return None


class RateLimiter:
    """Fixed window rate limiter per client, in Redis when available, else in memory."""

    def __init__(self, limit: int, window_seconds: int = 60, redis_url: str = "") -> None:
        self.limit = max(limit, 1)
        self.window_seconds = window_seconds
        self._redis = connect_redis(redis_url)
        self._clients: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> Tuple[bool, int]:
        """
        Register a hit for the given key.
        Returns (allowed, retry_after_seconds).
        """
        if self._redis is not None:
            try:
                return self._hit_redis(key)
            except redis.RedisError as exc:
                logger.warning("event=rate_limit_redis_error key=%s error=%s", key, exc)
        return self._hit_memory(key)

    def _hit_redis(self, key: str) -> Tuple[bool, int]:
        redis_key = f"markpress:rate_limit:{key}"
        pipe = self._redis.pipeline()
        pipe.incr(redis_key)
        pipe.ttl(redis_key)
        count, ttl = pipe.execute()
        if ttl is None or ttl < 0:
            self._redis.expire(redis_key, self.window_seconds)
            ttl = self.window_seconds
        if count > self.limit:
            return False, max(int(ttl), 1)
        return True, int(ttl)

    def _hit_memory(self, key: str) -> Tuple[bool, int]:
        now = monotonic()
        with self._lock:
            count, reset_at = self._clients.get(key, (0, now + self.window_seconds))
            if now > reset_at:
                count = 0
                reset_at = now + self.window_seconds
            if count >= self.limit:
                retry_after = max(0, int(reset_at - now))
                return False, retry_after or 1

            self._clients[key] = (count + 1, reset_at)
            retry_after = max(0, int(reset_at - now))
            return True, retry_after
