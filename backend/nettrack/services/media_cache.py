import json
import logging
from threading import Lock
import time
from typing import Any

import redis

from nettrack.core.config import get_settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "nettrack:media:"


def _connect_redis() -> redis.Redis | None:
    redis_url = get_settings().redis_url
    if not redis_url:
        return None
    try:
        return redis.Redis.from_url(redis_url, decode_responses=True)
    except (redis.RedisError, ValueError):
        logger.warning("Invalid redis_url, media cache stays in memory")
        return None


class MediaCache:
    """JSON cache for catalogue lookups: Redis when reachable, memory otherwise."""

    def __init__(self, client: redis.Redis | None = None, *, use_redis: bool = True) -> None:
        self._redis = client if client is not None else (_connect_redis() if use_redis else None)
        self._memory: dict[str, tuple[float, str]] = {}
        self._lock = Lock()

    def get(self, key: str) -> Any | None:
        raw = self._get_redis(key)
        if raw is None:
            raw = self._get_memory(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        raw = json.dumps(value)
        safe_ttl = max(1, int(ttl_seconds))
        if self._set_redis(key, raw, safe_ttl):
            return
        with self._lock:
            self._memory[key] = (time.time() + safe_ttl, raw)

    def clear(self) -> None:
        with self._lock:
            self._memory.clear()

    def _get_redis(self, key: str) -> str | None:
        if self._redis is None:
            return None
        try:
            return self._redis.get(f"{KEY_PREFIX}{key}")
        except redis.RedisError:
            logger.debug("Redis unavailable for media cache read", exc_info=True)
            return None

    def _set_redis(self, key: str, raw: str, ttl_seconds: int) -> bool:
        if self._redis is None:
            return False
        try:
            self._redis.setex(f"{KEY_PREFIX}{key}", ttl_seconds, raw)
        except redis.RedisError:
            logger.debug("Redis unavailable for media cache write", exc_info=True)
            return False
        return True

    def _get_memory(self, key: str) -> str | None:
        now = time.time()
        with self._lock:
            entry = self._memory.get(key)
            if not entry:
                return None
            expires_at, raw = entry
            if now >= expires_at:
                self._memory.pop(key, None)
                return None
            return raw
