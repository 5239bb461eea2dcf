"""Bounded in-process LRU used in front of learning-cache reads."""

import threading
from collections import OrderedDict
from typing import Dict, Generic, Hashable, Optional, TypeVar

K = TypeVar('K', bound=Hashable)
V = TypeVar('V')


class LRUCache(Generic[K, V]):
    """Thread-safe LRU map with hit/miss accounting.

    A ``max_size`` of 0 disables storage entirely; every read is a miss.
    """

    def __init__(self, max_size: int = 1000):
        """
        Args:
            max_size: Maximum number of entries kept
        """
        self.max_size = max_size
        self._items: "OrderedDict[K, V]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            if key not in self._items:
                self.misses += 1
                return None
            self._items.move_to_end(key)
            self.hits += 1
            return self._items[key]

    def set(self, key: K, value: V) -> None:
        if self.max_size <= 0:
            return
        with self._lock:
            self._items[key] = value
            self._items.move_to_end(key)
            while len(self._items) > self.max_size:
                self._items.popitem(last=False)

    def delete(self, key: K) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> Dict[str, float]:
        """Size and hit rate since creation or the last clear()."""
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "size": len(self._items),
                "max_size": self.max_size,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: K) -> bool:
        with self._lock:
            return key in self._items
