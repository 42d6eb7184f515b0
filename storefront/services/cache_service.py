"""
Redis cache for catalog reads.

Values are JSON documents stored under {prefix}:{module}:{key}. Every failure
degrades to a miss: the shop keeps serving from the database without Redis.
"""

import json
import logging
from datetime import date, datetime
from typing import Any, Callable, Optional

import redis
from redis.exceptions import RedisError
from flask import Flask, current_app

logger = logging.getLogger(__name__)


def _json_default(obj):
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Cannot cache {type(obj).__name__}")


class CacheService:
    """Cache-aside over Redis. Disabled (every lookup misses) until init_app connects."""

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self._enabled = False
        self._prefix = 'storefront'

        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self._enabled = app.config.get('CACHE_ENABLED', True)
        self._prefix = app.config.get('CACHE_KEY_PREFIX', 'storefront')
        if not self._enabled:
            logger.info("[CACHE] Cache is DISABLED via config")
            return

        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            self.client.ping()
            logger.info(f"[CACHE] Redis connected: {redis_url}")
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unreachable ({e}), serving catalog from the database")
            self._enabled = False
            self.client = None

    def is_available(self) -> bool:
        if not self._enabled or not self.client:
            return False
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def _key(self, module: str, key: str) -> str:
        return f"{self._prefix}:{module}:{key}"

    def get(self, module: str, key: str) -> Optional[Any]:
        if not self.is_available():
            return None
        try:
            raw = self.client.get(self._key(module, key))
            return json.loads(raw) if raw is not None else None
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] Read of {module}:{key} failed: {e}")
            return None

    def set(self, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.is_available():
            return False
        if ttl is None:
            ttl = current_app.config.get('CACHE_DEFAULT_TTL', 60)
        try:
            self.client.setex(self._key(module, key), ttl, json.dumps(value, default=_json_default))
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Write of {module}:{key} failed: {e}")
            return False

    def memoize(self, module: str, key: str, loader_fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value, or load it and cache it."""
        cached = self.get(module, key)
        if cached is not None:
            return cached
        value = loader_fn()
        self.set(module, key, value, ttl)
        return value

    def invalidate_module(self, module: str) -> int:
        """Drop every key of a module. Called after each catalog write."""
        if not self.is_available():
            return 0
        try:
            keys = list(self.client.scan_iter(match=self._key(module, '*'), count=100))
            if keys:
                self.client.delete(*keys)
                logger.info(f"[CACHE] Invalidated {module} ({len(keys)} keys)")
            return len(keys)
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidation of {module} failed: {e}")
            return 0


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask) -> None:
    global _cache_service
    _cache_service = CacheService(app)
    app.extensions['cache'] = _cache_service


def get_cache() -> CacheService:
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service
