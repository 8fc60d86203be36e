"""Thread-safe TTL cache for year/make/model option lists.

The vehicle picker asks for the same option lists on every keystroke, and
each list is a full scan of the fitment snapshot. Entries are keyed on the
normalized query and dropped wholesale when a new snapshot is loaded.
Each uvicorn worker gets its own cache instance (no cross-process sharing).
"""

import logging
import threading
from collections.abc import Callable
from typing import Any, TypeVar

from cachetools import TTLCache

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OptionCache:
    """Read-through TTL cache for option lists.

    Thread-safe via a threading.Lock. Keys are tuples like
    ("makes", 2018) or ("models", 2018, "honda").
    """

    def __init__(self, maxsize: int = 512, ttl: int = 3600) -> None:
        """Initialize the cache.

        Args:
            maxsize: Max entries (one per distinct year / year+make query).
            ttl: Time-to-live in seconds (default 1 hour).
        """
        self._cache: TTLCache[tuple[Any, ...], Any] = TTLCache(
            maxsize=maxsize, ttl=ttl
        )
        self._lock = threading.Lock()

    @staticmethod
    def make_key(kind: str, *parts: Any) -> tuple[Any, ...]:
        """Build a cache key; string parts are lowered/stripped."""

        def _norm(val: Any) -> Any:
            if isinstance(val, str):
                return val.lower().strip()
            return val

        return (kind, *(_norm(p) for p in parts))

    def get(self, key: tuple[Any, ...]) -> Any | None:
        """Get a cached value (thread-safe). Returns None on miss."""
        with self._lock:
            return self._cache.get(key)

    def set(self, key: tuple[Any, ...], value: Any) -> None:
        """Store a value in the cache (thread-safe)."""
        with self._lock:
            self._cache[key] = value
        logger.debug("Option cache set: %s", key)

    def get_or_load(self, key: tuple[Any, ...], loader: Callable[[], T]) -> T:
        """Return the cached value or compute, store and return it."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.set(key, value)
        return value

    def invalidate(self) -> None:
        """Drop every entry (called when a new snapshot is loaded)."""
        with self._lock:
            size = len(self._cache)
            self._cache.clear()
        logger.info("Option cache invalidated (%d entries dropped)", size)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
