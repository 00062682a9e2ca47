# core/utils/cache.py
"""
Thread-safe memoization cache used by the metadata, classifier and compiled-mapper layers.
"""
import logging
import threading
from typing import Dict, Optional, TypeVar, Generic, Callable

logger = logging.getLogger(__name__)

# Type variables
K = TypeVar('K')  # Key type
V = TypeVar('V')  # Value type

# Marker for "no entry"; cached values may legitimately be None
_MISSING = object()


class ThreadSafeCache(Generic[K, V]):
    """
    Thread-safe append-mostly cache.

    Reads and writes take a short lock around the underlying dict. Values are
    computed outside the lock by get_or_set, so a computation may recurse into
    this cache or any other one without risk of deadlock. Concurrent computations
    for the same key race; the first published value wins and every caller gets it.

    Generic Parameters:
        K: Cache key type
        V: Cache value type
    """

    def __init__(self, name: str = "cache"):
        """
        Initialize the cache.

        Args:
            name: Name used in log messages
        """
        self.name = name
        self._cache: Dict[K, V] = {}
        self._lock = threading.RLock()

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        """
        Get a value from the cache.

        Args:
            key: Cache key
            default: Default value if key not found

        Returns:
            Cached value or default
        """
        with self._lock:
            return self._cache.get(key, default)

    def set(self, key: K, value: V) -> None:
        """
        Set a value in the cache, replacing any previous value.

        Args:
            key: Cache key
            value: Value to cache
        """
        with self._lock:
            self._cache[key] = value

    def clear(self) -> None:
        """Clear the cache."""
        with self._lock:
            self._cache.clear()

    def get_or_set(self, key: K, value_func: Callable[[], V]) -> V:
        """
        Get a value from the cache, or compute and publish it if not found.

        Args:
            key: Cache key
            value_func: Function to call to get the value if not in cache

        Returns:
            Cached or newly computed value
        """
        with self._lock:
            value = self._cache.get(key, _MISSING)
        if value is not _MISSING:
            return value

        logger.debug(f"{self.name}: computing entry for {key!r}")
        computed = value_func()

        with self._lock:
            # Another thread may have published while we were computing
            return self._cache.setdefault(key, computed)

    def size(self) -> int:
        """
        Get the current cache size.

        Returns:
            Number of items in cache
        """
        with self._lock:
            return len(self._cache)
