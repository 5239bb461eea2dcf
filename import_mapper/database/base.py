"""Learning cache interface and shared entry semantics."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from import_mapper.matching.constants import CACHE_AGE_DECAY_BUCKETS, CACHE_AGE_DECAY_MAX_PENALTY

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores datetimes without tzinfo)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CacheEventKind:
    """Kinds of learning cache mutations."""
    INSERTED = "inserted"
    REINFORCED = "reinforced"
    SUPERSEDED = "superseded"
    EVICTED = "evicted"


@dataclass(frozen=True)
class CacheEntry:
    """Historical mapping of one source-field fingerprint to a target field."""

    fingerprint: str
    shape_key: str
    source_name: str
    target_field: str
    observation_count: int
    last_confidence: float
    strategy: str
    first_seen_at: datetime
    last_confirmed_at: datetime

    def age_days(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        return max(0.0, (now - self.last_confirmed_at).total_seconds() / 86400.0)

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint,
            "shape_key": self.shape_key,
            "source_name": self.source_name,
            "target_field": self.target_field,
            "observation_count": self.observation_count,
            "last_confidence": self.last_confidence,
            "strategy": self.strategy,
            "first_seen_at": self.first_seen_at.isoformat(),
            "last_confirmed_at": self.last_confirmed_at.isoformat(),
        }


@dataclass(frozen=True)
class CacheEvent:
    """Mutation event emitted for the cache's own persistence/observability layer."""

    kind: str
    fingerprint: str
    target_field: Optional[str]
    observation_count: int = 0
    previous_target: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "fingerprint": self.fingerprint,
            "target_field": self.target_field,
            "observation_count": self.observation_count,
            "previous_target": self.previous_target,
        }


@dataclass
class CacheSnapshot:
    """Result of one batched cache read."""

    by_fingerprint: Dict[str, CacheEntry] = field(default_factory=dict)
    by_shape_key: Dict[str, List[CacheEntry]] = field(default_factory=dict)

    @classmethod
    def from_entries(
        cls, entries: Iterable[CacheEntry], fingerprints: Iterable[str], shape_keys: Iterable[str]
    ) -> "CacheSnapshot":
        wanted_fingerprints = set(fingerprints)
        wanted_shapes = set(shape_keys)
        snapshot = cls()
        for entry in entries:
            if entry.fingerprint in wanted_fingerprints:
                snapshot.by_fingerprint[entry.fingerprint] = entry
            if entry.shape_key in wanted_shapes:
                snapshot.by_shape_key.setdefault(entry.shape_key, []).append(entry)
        for matches in snapshot.by_shape_key.values():
            matches.sort(key=lambda e: e.fingerprint)
        return snapshot


def age_decay(age_days: float) -> float:
    """
    Confidence penalty for a cache entry of the given age.

    Args:
        age_days: Days since the entry was last confirmed

    Returns:
        Points to subtract from the entry's last confidence
    """
    for max_age, penalty in CACHE_AGE_DECAY_BUCKETS:
        if age_days < max_age:
            return penalty
    return CACHE_AGE_DECAY_MAX_PENALTY


def apply_observation(
    existing: Optional[CacheEntry],
    fingerprint: str,
    shape_key: str,
    source_name: str,
    target_field: str,
    confidence: float,
    strategy: str,
    now: datetime,
) -> Tuple[CacheEntry, CacheEvent]:
    """
    Compute the new state of a cache entry after a confirmed mapping.

    A first observation inserts the entry; a repeat observation of the same
    target reinforces it; an observation of a different target supersedes
    the old mapping and restarts its count.

    Returns:
        (new entry, mutation event)
    """
    if existing is None:
        entry = CacheEntry(
            fingerprint=fingerprint,
            shape_key=shape_key,
            source_name=source_name,
            target_field=target_field,
            observation_count=1,
            last_confidence=confidence,
            strategy=strategy,
            first_seen_at=now,
            last_confirmed_at=now,
        )
        return entry, CacheEvent(CacheEventKind.INSERTED, fingerprint, target_field, 1)

    if existing.target_field == target_field:
        entry = replace(
            existing,
            source_name=source_name,
            shape_key=shape_key,
            observation_count=existing.observation_count + 1,
            last_confidence=confidence,
            strategy=strategy,
            last_confirmed_at=now,
        )
        return entry, CacheEvent(
            CacheEventKind.REINFORCED, fingerprint, target_field, entry.observation_count
        )

    entry = replace(
        existing,
        source_name=source_name,
        shape_key=shape_key,
        target_field=target_field,
        observation_count=1,
        last_confidence=confidence,
        strategy=strategy,
        first_seen_at=now,
        last_confirmed_at=now,
    )
    return entry, CacheEvent(
        CacheEventKind.SUPERSEDED, fingerprint, target_field, 1, previous_target=existing.target_field
    )


class LearningCache(ABC):
    """Store of confirmed mappings keyed by source-field fingerprint.

    Reads may run concurrently with each other and with writes; each
    write replaces one entry atomically.
    """

    def __init__(self, listener: Optional[Callable[[CacheEvent], None]] = None):
        self.listener = listener

    @abstractmethod
    def lookup(self, fingerprints: List[str], shape_keys: List[str]) -> CacheSnapshot:
        """
        Batched read of entries by fingerprint and by shape key.

        Raises:
            CacheUnavailable: If the backing store cannot be read
        """

    @abstractmethod
    def get(self, fingerprint: str) -> Optional[CacheEntry]:
        """Single entry by fingerprint."""

    @abstractmethod
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
        """
        Record a confirmed mapping.

        Raises:
            CacheUnavailable: If the backing store cannot be written
        """

    @abstractmethod
    def evict_stale(
        self,
        max_age_days: int,
        min_observations: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Delete entries not confirmed within ``max_age_days``.

        Args:
            max_age_days: Age cutoff
            min_observations: Only evict entries observed fewer times than this
                (None evicts regardless of usage)
            now: Reference time (defaults to now)

        Returns:
            Number of evicted entries
        """

    @abstractmethod
    def statistics(self) -> Dict[str, dict]:
        """Per-strategy entry count, average confidence and total observations."""

    def _emit(self, event: CacheEvent) -> None:
        if self.listener is None:
            return
        try:
            self.listener(event)
        except Exception as e:
            logger.warning(f"Learning cache listener failed for {event.kind} event: {e}")
