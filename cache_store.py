"""
Cache-aside store over Redis.

All operations are best-effort: backend errors are logged and turned into
None/False, so callers treat a cache error exactly like a cache miss.
"""
import re
import json
import time
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

import redis

import config
from errors import StoreUnavailable
from observability import Metrics

logger = logging.getLogger('newsfeed.cache')

DISABLED = 'disabled'
CONNECTING = 'connecting'
CONNECTED = 'connected'
UNAVAILABLE = 'unavailable'

BACKEND_ERRORS = (redis.RedisError, OSError)


class MemoryBackend:
    """
    Thread-safe in-process backend with TTL and LRU eviction.

    Implements the small subset of the Redis client API the store uses, so a
    ``memory://`` URL can stand in for a server during development.
    """

    def __init__(self, max_entries: int = 1000, clock: Callable[[], float] = time.time):
        self._lock = threading.Lock()
        self._data = OrderedDict()
        self._max_entries = max_entries
        self._clock = clock

    def _live(self, key):
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            self._data.move_to_end(key)
            return entry[0]

    def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        with self._lock:
            expires_at = self._clock() + ex if ex else None
            if key in self._data:
                self._data.move_to_end(key)
            self._data[key] = (value, expires_at)
            if len(self._data) > self._max_entries:
                self._data.popitem(last=False)
            return True

    def delete(self, key: str) -> int:
        with self._lock:
            return 1 if self._data.pop(key, None) is not None else 0

    def exists(self, key: str) -> int:
        with self._lock:
            return 1 if self._live(key) is not None else 0

    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            self._data[key] = (entry[0], self._clock() + seconds)
            return True


def default_client_factory(url: str):
    if url.startswith('memory://'):
        return MemoryBackend()
    return redis.Redis.from_url(url, decode_responses=True,
                                socket_connect_timeout=2, socket_timeout=2)


def mask_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    return re.sub(r':([^:@/]+)@', ':***@', url)


class CacheStore:

    def __init__(self, url: Optional[str] = config.REDIS_URL,
                 metrics: Optional[Metrics] = None,
                 client_factory: Callable[[str], Any] = default_client_factory,
                 attempts: int = config.CACHE_CONNECT_ATTEMPTS,
                 base_delay: float = config.CACHE_CONNECT_BASE_DELAY,
                 max_delay: float = config.CACHE_CONNECT_MAX_DELAY,
                 sleep: Callable[[float], None] = time.sleep):
        self.url = url
        self.metrics = metrics or Metrics()
        self._client_factory = client_factory
        self._attempts = attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep
        self._client = None
        self.state = DISABLED if not url else CONNECTING
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # connection
    # ------------------------------------------------------------------

    def start(self, background: bool = True) -> None:
        """Connect once; in background mode request handling never waits on this."""
        if not self.url:
            logger.warning("Cache disabled - no REDIS_URL provided")
            self.state = DISABLED
            return

        if background:
            self._thread = threading.Thread(target=self._connect_loop, name='cache-connect', daemon=True)
            self._thread.start()
        else:
            self._connect_loop()

    def backoff_delay(self, attempt: int) -> float:
        return min(self._base_delay * (2 ** (attempt - 1)), self._max_delay)

    def _connect_loop(self) -> None:
        self.state = CONNECTING
        for attempt in range(1, self._attempts + 1):
            try:
                client = self._client_factory(self.url)
                client.ping()
            except (ValueError,) + BACKEND_ERRORS as e:
                delay = self.backoff_delay(attempt)
                logger.warning("Cache connect attempt %d/%d failed: %s; retrying in %.1fs",
                               attempt, self._attempts, e, delay,
                               extra={'error_type': StoreUnavailable.error_type})
                if attempt < self._attempts:
                    self._sleep(delay)
                continue

            self._client = client
            self.state = CONNECTED
            logger.info("Cache connected to %s", mask_url(self.url))
            return

        self.state = UNAVAILABLE
        logger.error("Cache unavailable after %d attempts; serving uncached", self._attempts,
                     extra={'error_type': StoreUnavailable.error_type})

    @property
    def available(self) -> bool:
        return self.state == CONNECTED and self._client is not None

    # ------------------------------------------------------------------
    # safe wrappers
    # ------------------------------------------------------------------

    def _run(self, op: str, key: str, default, fn):
        if not self.available:
            return default
        try:
            return fn(self._client)
        except BACKEND_ERRORS as e:
            self.metrics.increment('cache_errors')
            logger.warning("Cache %s failed for key %s: %s", op, key, e,
                           extra={'key': key, 'error_type': StoreUnavailable.error_type})
            return default

    def get(self, key: str) -> Optional[str]:
        value = self._run('get', key, None, lambda c: c.get(key))
        self.metrics.increment('cache_hits' if value is not None else 'cache_misses')
        return value

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        return bool(self._run('set', key, False, lambda c: c.set(key, value, ex=ttl)))

    def delete(self, key: str) -> bool:
        return bool(self._run('delete', key, False, lambda c: c.delete(key)))

    def exists(self, key: str) -> bool:
        return bool(self._run('exists', key, False, lambda c: c.exists(key)))

    def expire(self, key: str, seconds: int) -> bool:
        return bool(self._run('expire', key, False, lambda c: c.expire(key, seconds)))

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache entry %s", key, extra={'key': key})
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return self.set(key, json.dumps(value, ensure_ascii=False), ttl)

    def health_check(self) -> Dict:
        health = {
            'redis': False,
            'status': self.state,
            'url': mask_url(self.url),
        }
        if not self.available:
            return health
        try:
            self._client.ping()
        except BACKEND_ERRORS as e:
            health['status'] = 'error'
            health['error'] = str(e)
            return health
        health['redis'] = True
        return health
