"""
TTL response cache owned by a single platform adapter.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass
class CacheEntry:
    """Cached value with its insertion time and time-to-live."""

    value: Any
    inserted_at: float
    ttl: float


class ResponseCache:
    """
    Size-bounded TTL key/value store.

    Keys are namespaced ("{store_id}:{platform}:{key}") so caches of
    different adapters never share entries. Expired entries are purged
    lazily on access. When the table is full the oldest inserted key is
    evicted; reads do not refresh an entry's position.
    """

    def __init__(
        self,
        namespace: str,
        max_entries: int = 1000,
        default_ttl: float = 300,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize cache.

        Args:
            namespace: Prefix for every key, e.g. "42:shopify"
            max_entries: Maximum number of entries kept
            default_ttl: TTL in seconds used when set() gets none
            clock: Monotonic time source in seconds
        """
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self.namespace = namespace
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str, max_age: Optional[float] = None) -> Optional[Any]:
        """
        Read a value.

        Args:
            key: Cache key (without namespace)
            max_age: Override the entry TTL for this read (seconds)

        Returns:
            Stored value, or None on miss or expiry
        """
        full_key = self._full_key(key)

        with self._lock:
            entry = self._entries.get(full_key)
            if entry is None:
                return None

            limit = entry.ttl if max_age is None else max_age
            if self._clock() - entry.inserted_at > limit:
                del self._entries[full_key]
                return None

            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key (without namespace)
            value: Value to cache
            ttl: Time-to-live in seconds (default_ttl if omitted)
        """
        full_key = self._full_key(key)
        entry = CacheEntry(
            value=value,
            inserted_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl
        )

        with self._lock:
            # Re-setting a key counts as a fresh insertion
            self._entries.pop(full_key, None)
            self._entries[full_key] = entry

            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def get_or_load(
        self,
        key: str,
        loader: Callable[[], Optional[Any]],
        max_age: Optional[float] = None,
        force_refresh: bool = False,
        ttl: Optional[float] = None
    ) -> Optional[Any]:
        """
        Read-through helper: return cached value or load and cache it.

        None results from loader (e.g. not found) are not cached.

        Args:
            key: Cache key
            loader: Callable fetching the value on miss
            max_age: Max acceptable age for a cached hit
            force_refresh: Skip the cache read
            ttl: TTL for the newly stored value

        Returns:
            Cached or freshly loaded value
        """
        if not force_refresh:
            cached = self.get(key, max_age=max_age)
            if cached is not None:
                return cached

        value = loader()
        if value is not None:
            self.set(key, value, ttl=ttl)

        return value

    def delete(self, key: str) -> bool:
        """Remove one key. Returns True if it existed."""
        with self._lock:
            return self._entries.pop(self._full_key(key), None) is not None

    def clear(self) -> None:
        """Remove every entry."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"
