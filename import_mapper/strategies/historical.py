"""Historical matcher: reuses confirmed mappings from the learning cache."""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from import_mapper.database.base import CacheEntry, LearningCache, age_decay, utcnow
from import_mapper.decoding.model import SourceField
from import_mapper.matching.constants import StrategyName
from import_mapper.matching.context import MatchContext
from import_mapper.matching.exceptions import CacheUnavailable
from import_mapper.matching.model import MappingCandidate
from import_mapper.schema.target_fields import TargetCatalog
from import_mapper.strategies.base import MappingStrategy
from import_mapper.utils.sanitize import sanitize_for_logging

logger = logging.getLogger(__name__)


class HistoricalMatcher(MappingStrategy):
    """Looks source fields up by fingerprint, then by value shape.

    A fingerprint hit means the same header with the same value shape was
    confirmed before. A shape-key hit covers a renamed header and is scaled
    down. Targets already claimed by a fingerprint hit in the same file are
    not offered again by shape; when several targets remain, each is
    proposed with an extra penalty and the arbiter settles collisions.
    """

    name = StrategyName.HISTORICAL

    def __init__(self, cache: LearningCache, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the matcher.

        Args:
            cache: Learning cache to read from
            clock: Returns the current naive UTC time (injectable for tests)
        """
        self.cache = cache
        self.clock = clock or utcnow

    def propose(
        self,
        source_fields: List[SourceField],
        catalog: TargetCatalog,
        context: MatchContext,
    ) -> List[MappingCandidate]:
        if not source_fields:
            return []

        try:
            snapshot = self.cache.lookup(
                [f.fingerprint for f in source_fields],
                [f.shape_key for f in source_fields],
            )
        except CacheUnavailable as e:
            logger.warning(f"Learning cache unavailable, historical matcher contributes nothing: {e}")
            context.note(f"historical: cache unavailable ({e})")
            return []

        now = self.clock()
        thresholds = context.thresholds
        candidates = []
        claimed = set()
        renamed = []

        for source_field in source_fields:
            entry = snapshot.by_fingerprint.get(source_field.fingerprint)
            if entry is None:
                renamed.append(source_field)
                continue
            if not self._in_catalog(entry, source_field, catalog):
                continue
            claimed.add(entry.target_field)
            candidate = self._candidate(source_field, entry, now, 1.0, 0.0, "fingerprint")
            if candidate is not None:
                candidates.append(candidate)

        # Renamed headers: every cached target with the same value shape that
        # no fingerprint hit in this file already accounts for
        for source_field in renamed:
            entries = [
                e for e in self._best_per_target(snapshot.by_shape_key.get(source_field.shape_key))
                if e.target_field not in claimed and self._in_catalog(e, source_field, catalog)
            ]
            penalty = thresholds.historical_ambiguous_shape_penalty if len(entries) > 1 else 0.0
            for entry in entries:
                candidate = self._candidate(
                    source_field, entry, now, thresholds.historical_shape_only_factor, penalty, "value shape"
                )
                if candidate is not None:
                    candidates.append(candidate)
        return candidates

    def _candidate(
        self,
        source_field: SourceField,
        entry: CacheEntry,
        now: datetime,
        factor: float,
        penalty: float,
        kind: str,
    ) -> Optional[MappingCandidate]:
        age = entry.age_days(now)
        confidence = max(0.0, entry.last_confidence - age_decay(age)) * factor - penalty
        if confidence <= 0:
            return None
        return MappingCandidate(
            source_field=source_field.name,
            target_field=entry.target_field,
            confidence=confidence,
            strategy=self.name,
            rationale=(
                f"Confirmed {entry.observation_count}x by {kind} "
                f"(last {entry.last_confidence:.0f}, {age:.0f} days ago, was '{entry.source_name}')"
            ),
        )

    @staticmethod
    def _in_catalog(entry: CacheEntry, source_field: SourceField, catalog: TargetCatalog) -> bool:
        if entry.target_field in catalog:
            return True
        logger.debug(
            f"Cached target '{entry.target_field}' for "
            f"'{sanitize_for_logging(source_field.name)}' is not in the catalog, ignoring"
        )
        return False

    @staticmethod
    def _best_per_target(entries: Optional[List[CacheEntry]]) -> List[CacheEntry]:
        """Strongest cached entry for each distinct target, in a stable order."""
        ordered = sorted(
            entries or [],
            key=lambda e: (-e.observation_count, -e.last_confidence, -e.last_confirmed_at.timestamp(), e.fingerprint),
        )
        best = {}
        for entry in ordered:
            best.setdefault(entry.target_field, entry)
        return list(best.values())
