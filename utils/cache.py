# utils/cache.py
import threading
import time
from typing import Any, Callable, Hashable

from config import CACHE_TTL_SECONDS


class TTLCache:
    """
    key -> (value, expires_at). Used only by read endpoints;
    services never look at it, so a cold or disabled cache changes nothing but latency.
    """

    def __init__(self, ttl_seconds: float = CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds
        self._clock = clock
        self._data: dict[Hashable, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default=None):
        with self._lock:
            hit = self._data.get(key)
            if hit is None:
                return default
            value, expires_at = hit
            if expires_at <= self._clock():
                del self._data[key]
                return default
            return value

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + (self.ttl if ttl is None else ttl))

    def get_or_set(self, key: Hashable, loader: Callable[[], Any]):
        value = self.get(key)
        if value is None:
            value = loader()
            self.set(key, value)
        return value

    def invalidate(self, prefix: str) -> None:
        """Drop every string key starting with prefix (e.g. "mills:")."""
        with self._lock:
            for k in [k for k in self._data if isinstance(k, str) and k.startswith(prefix)]:
                del self._data[k]

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


read_cache = TTLCache()


def get_read_cache() -> TTLCache:
    """FastAPI dependency; tests override it with a fresh instance."""
    return read_cache
