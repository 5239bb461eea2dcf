"""Process-local learning cache."""

import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from import_mapper.database.base import (
    CacheEntry,
    CacheEvent,
    CacheEventKind,
    CacheSnapshot,
    LearningCache,
    apply_observation,
    utcnow,
)


class InMemoryLearningCache(LearningCache):
    """Learning cache held in a dict. Nothing survives the process."""

    def __init__(self, listener: Optional[Callable[[CacheEvent], None]] = None):
        super().__init__(listener=listener)
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def lookup(self, fingerprints: List[str], shape_keys: List[str]) -> CacheSnapshot:
        with self._lock:
            entries = list(self._entries.values())
        return CacheSnapshot.from_entries(entries, fingerprints, shape_keys)

    def get(self, fingerprint: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(fingerprint)

    def record(
        self,
        fingerprint: str,
        shape_key: str,
        source_name: str,
        target_field: str,
        confidence: float,
        strategy: str,
        now: Optional[datetime] = None,
    ) -> CacheEvent:
        with self._lock:
            entry, event = apply_observation(
                self._entries.get(fingerprint),
                fingerprint,
                shape_key,
                source_name,
                target_field,
                confidence,
                strategy,
                now or utcnow(),
            )
            self._entries[fingerprint] = entry
        self._emit(event)
        return event

    def put(self, entry: CacheEntry) -> None:
        """Insert an entry verbatim (seeding history in tests and imports)."""
        with self._lock:
            self._entries[entry.fingerprint] = entry

    def evict_stale(
        self,
        max_age_days: int,
        min_observations: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        cutoff = (now or utcnow()) - timedelta(days=max_age_days)
        with self._lock:
            stale = [
                entry
                for entry in self._entries.values()
                if entry.last_confirmed_at < cutoff
                and (min_observations is None or entry.observation_count < min_observations)
            ]
            for entry in stale:
                del self._entries[entry.fingerprint]
        for entry in stale:
            self._emit(
                CacheEvent(CacheEventKind.EVICTED, entry.fingerprint, entry.target_field, entry.observation_count)
            )
        return len(stale)

    def statistics(self) -> Dict[str, dict]:
        with self._lock:
            entries = list(self._entries.values())
        stats: Dict[str, dict] = {}
        for entry in entries:
            bucket = stats.setdefault(
                entry.strategy, {"count": 0, "avg_confidence": 0.0, "total_observations": 0}
            )
            bucket["count"] += 1
            bucket["avg_confidence"] += entry.last_confidence
            bucket["total_observations"] += entry.observation_count
        for bucket in stats.values():
            bucket["avg_confidence"] = round(bucket["avg_confidence"] / bucket["count"], 2)
        return stats

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
