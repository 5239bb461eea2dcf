"""SQLite-backed learning cache.

One row per source-field fingerprint. Reads are batched into a single
query per run; writes replace one entry per transaction.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from import_mapper.database.base import (
    CacheEntry,
    CacheEvent,
    CacheEventKind,
    CacheSnapshot,
    LearningCache,
    apply_observation,
    utcnow,
)
from import_mapper.database.models import FieldMappingCacheEntry
from import_mapper.database.schema import get_session_factory, init_database
from import_mapper.matching.exceptions import CacheUnavailable
from import_mapper.utils.lru_cache import LRUCache

logger = logging.getLogger(__name__)


class SqlLearningCache(LearningCache):
    """Learning cache persisted with SQLAlchemy.

    An in-memory LRU sits in front of single-fingerprint reads; batched
    lookups always go to the database so shape-key matches stay complete.
    """

    def __init__(
        self,
        db_path: Path,
        memory_cache_size: int = 1000,
        listener: Optional[Callable[[CacheEvent], None]] = None,
        echo: bool = False,
    ):
        """
        Initialize the cache.

        Args:
            db_path: Path to SQLite database file
            memory_cache_size: Entries kept in the in-memory LRU (0 disables it)
            listener: Optional callback receiving every mutation event
            echo: Whether to echo SQL queries (for debugging)
        """
        super().__init__(listener=listener)
        self.db_path = Path(db_path)
        try:
            self.engine = init_database(self.db_path, echo=echo)
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"Cannot open learning cache at {self.db_path}: {e}") from e
        self.Session = get_session_factory(self.engine)
        self._memory = LRUCache(max_size=memory_cache_size)
        self._write_lock = threading.Lock()

    @contextmanager
    def _get_session(self, commit: bool = True):
        """
        Context manager for database sessions.

        Args:
            commit: Whether to commit on successful exit (default: True)
        """
        session = self.Session()
        try:
            yield session
            if commit:
                session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def lookup(self, fingerprints: List[str], shape_keys: List[str]) -> CacheSnapshot:
        fingerprints = sorted(set(fingerprints))
        shape_keys = sorted(set(shape_keys))
        if not fingerprints and not shape_keys:
            return CacheSnapshot()

        try:
            with self._get_session(commit=False) as session:
                rows = (
                    session.query(FieldMappingCacheEntry)
                    .filter(
                        or_(
                            FieldMappingCacheEntry.fingerprint.in_(fingerprints),
                            FieldMappingCacheEntry.shape_key.in_(shape_keys),
                        )
                    )
                    .all()
                )
                entries = [row.to_entry() for row in rows]
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"Learning cache read failed: {e}") from e

        for entry in entries:
            self._memory.set(entry.fingerprint, entry)
        return CacheSnapshot.from_entries(entries, fingerprints, shape_keys)

    def get(self, fingerprint: str) -> Optional[CacheEntry]:
        cached = self._memory.get(fingerprint)
        if cached is not None:
            return cached

        try:
            with self._get_session(commit=False) as session:
                row = (
                    session.query(FieldMappingCacheEntry)
                    .filter(FieldMappingCacheEntry.fingerprint == fingerprint)
                    .first()
                )
                entry = row.to_entry() if row else None
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"Learning cache read failed: {e}") from e

        if entry is not None:
            self._memory.set(fingerprint, entry)
        return entry

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
        now = now or utcnow()
        with self._write_lock:
            try:
                try:
                    event, entry = self._write_entry(
                        fingerprint, shape_key, source_name, target_field, confidence, strategy, now
                    )
                except IntegrityError:
                    # Another process inserted the same fingerprint first
                    logger.debug(f"Fingerprint {fingerprint[:12]} inserted concurrently, retrying as update")
                    event, entry = self._write_entry(
                        fingerprint, shape_key, source_name, target_field, confidence, strategy, now
                    )
            except SQLAlchemyError as e:
                self._memory.delete(fingerprint)
                raise CacheUnavailable(f"Learning cache write failed: {e}") from e
            self._memory.set(fingerprint, entry)

        self._emit(event)
        return event

    def _write_entry(self, fingerprint, shape_key, source_name, target_field, confidence, strategy, now):
        with self._get_session() as session:
            row = (
                session.query(FieldMappingCacheEntry)
                .filter(FieldMappingCacheEntry.fingerprint == fingerprint)
                .first()
            )
            existing = row.to_entry() if row else None
            entry, event = apply_observation(
                existing, fingerprint, shape_key, source_name, target_field, confidence, strategy, now
            )
            if row is None:
                row = FieldMappingCacheEntry(fingerprint=fingerprint)
                session.add(row)
            row.apply(entry)
        return event, entry

    def evict_stale(
        self,
        max_age_days: int,
        min_observations: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        cutoff = (now or utcnow()) - timedelta(days=max_age_days)
        try:
            with self._write_lock, self._get_session() as session:
                query = session.query(FieldMappingCacheEntry).filter(
                    FieldMappingCacheEntry.last_confirmed_at < cutoff
                )
                if min_observations is not None:
                    query = query.filter(FieldMappingCacheEntry.observation_count < min_observations)
                evicted = [(row.fingerprint, row.target_field, row.observation_count) for row in query.all()]
                if evicted:
                    query.delete(synchronize_session=False)
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"Learning cache eviction failed: {e}") from e

        for fingerprint, target_field, observation_count in evicted:
            self._memory.delete(fingerprint)
            self._emit(CacheEvent(CacheEventKind.EVICTED, fingerprint, target_field, observation_count))
        if evicted:
            logger.info(f"Evicted {len(evicted)} stale learning cache entries older than {max_age_days} days")
        return len(evicted)

    def statistics(self) -> Dict[str, dict]:
        try:
            with self._get_session(commit=False) as session:
                rows = (
                    session.query(
                        FieldMappingCacheEntry.strategy,
                        func.count(FieldMappingCacheEntry.id),
                        func.avg(FieldMappingCacheEntry.last_confidence),
                        func.sum(FieldMappingCacheEntry.observation_count),
                    )
                    .group_by(FieldMappingCacheEntry.strategy)
                    .all()
                )
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"Learning cache statistics failed: {e}") from e

        return {
            strategy: {
                "count": int(count),
                "avg_confidence": round(float(avg or 0.0), 2),
                "total_observations": int(total or 0),
            }
            for strategy, count, avg, total in rows
        }

    def memory_stats(self) -> Dict[str, float]:
        """Hit rate of the in-memory front for single-fingerprint reads."""
        return self._memory.stats()

    def clear(self) -> None:
        """Delete every entry (used by tests and the init script)."""
        with self._write_lock, self._get_session() as session:
            session.query(FieldMappingCacheEntry).delete(synchronize_session=False)
        self._memory.clear()
