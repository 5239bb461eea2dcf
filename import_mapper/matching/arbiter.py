"""Mapping arbiter: one decision per source field, one source field per target."""

import heapq
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from import_mapper.config import ThresholdConfig
from import_mapper.database.base import CacheEvent, LearningCache
from import_mapper.decoding.model import SourceField
from import_mapper.matching.constants import STRATEGY_PRIORITY
from import_mapper.matching.exceptions import ArbitrationConflict, CacheUnavailable
from import_mapper.matching.model import MappingCandidate, MappingDecision
from import_mapper.schema.target_fields import TargetCatalog
from import_mapper.utils.sanitize import sanitize_for_logging

logger = logging.getLogger(__name__)


@dataclass
class ArbitrationOutcome:
    """Decisions of one arbitration pass"""

    decisions: List[MappingDecision]
    overall_confidence: float
    unmapped_fields: List[str]
    cache_events: List[CacheEvent] = field(default_factory=list)
    conflicts: int = 0


def strategy_rank(strategy: str) -> int:
    """Tie-break rank of a strategy (lower wins; unknown strategies rank last)."""
    try:
        return STRATEGY_PRIORITY.index(strategy)
    except ValueError:
        return len(STRATEGY_PRIORITY)


def overall_confidence(decisions: List[MappingDecision], source_count: int, target_count: int) -> float:
    """
    Coverage-weighted confidence of a run.

    The mean confidence of mapped decisions is scaled by the fraction of
    mappable fields that were actually mapped, so mapping few fields at
    high confidence scores lower than mapping most fields at moderate
    confidence.

    Args:
        decisions: All decisions of the run
        source_count: Number of source fields
        target_count: Number of target fields

    Returns:
        Confidence in [0, 100]
    """
    mapped = [d.confidence for d in decisions if d.is_mapped]
    mappable = min(source_count, target_count)
    if not mapped or mappable <= 0:
        return 0.0
    mean = sum(mapped) / len(mapped)
    coverage = min(1.0, len(mapped) / mappable)
    return round(mean * coverage, 2)


class MappingArbiter:
    """Merges candidates from all strategies into final decisions.

    Candidates are ranked by confidence, then strategy priority, then target
    declaration order. Targets are handed out globally in that order; a
    field whose target is already taken falls through to its next
    candidate, or to unmapped once nothing above the acceptance floor is
    left.
    """

    def __init__(
        self,
        catalog: TargetCatalog,
        thresholds: ThresholdConfig,
        cache: Optional[LearningCache] = None,
    ):
        self.catalog = catalog
        self.thresholds = thresholds
        self.cache = cache

    def rank_key(self, candidate: MappingCandidate) -> Tuple[float, int, int]:
        return (
            -candidate.confidence,
            strategy_rank(candidate.strategy),
            self.catalog.declaration_index(candidate.target_field),
        )

    def rank_candidates(
        self,
        source_fields: List[SourceField],
        candidates: List[MappingCandidate],
    ) -> Dict[str, List[Tuple[MappingCandidate, List[str]]]]:
        """
        Group candidates per source field, one entry per target.

        Returns:
            source name -> ranked [(best candidate for a target, supporting strategies)]
        """
        known_sources = {f.name for f in source_fields}
        per_target: Dict[str, Dict[str, List[MappingCandidate]]] = {f.name: {} for f in source_fields}
        for candidate in candidates:
            if candidate.source_field not in known_sources or candidate.target_field not in self.catalog:
                continue
            per_target[candidate.source_field].setdefault(candidate.target_field, []).append(candidate)

        ranked = {}
        for source_name, by_target in per_target.items():
            entries = []
            for target_candidates in by_target.values():
                ordered = sorted(target_candidates, key=self.rank_key)
                strategies = sorted({c.strategy for c in ordered}, key=strategy_rank)
                entries.append((ordered[0], strategies))
            entries.sort(key=lambda entry: self.rank_key(entry[0]))
            ranked[source_name] = entries
        return ranked

    def arbitrate(
        self,
        source_fields: List[SourceField],
        candidates: List[MappingCandidate],
        record: bool = True,
    ) -> ArbitrationOutcome:
        """
        Resolve candidates into one decision per source field.

        Args:
            source_fields: Decoded source fields (decision order follows them)
            candidates: Candidates from every strategy that completed
            record: Whether to write trustworthy decisions to the learning cache

        Returns:
            ArbitrationOutcome
        """
        ranked = self.rank_candidates(source_fields, candidates)
        floor = self.thresholds.acceptance_floor
        position = {f.name: i for i, f in enumerate(source_fields)}

        heap = []
        for source_name, entries in ranked.items():
            if entries:
                heapq.heappush(heap, (self.rank_key(entries[0][0]), position[source_name], source_name, 0))

        assigned: Dict[str, str] = {}  # target -> source
        winners: Dict[str, int] = {}  # source -> index into ranked entries
        demoted = set()
        conflicts = 0

        while heap:
            _, pos, source_name, index = heapq.heappop(heap)
            candidate, _ = ranked[source_name][index]
            if candidate.confidence < floor:
                continue
            try:
                self._claim(assigned, candidate)
            except ArbitrationConflict as conflict:
                conflicts += 1
                demoted.add(source_name)
                logger.debug(f"Demoting field: {sanitize_for_logging(str(conflict))}")
                next_index = index + 1
                if next_index < len(ranked[source_name]):
                    next_candidate = ranked[source_name][next_index][0]
                    heapq.heappush(heap, (self.rank_key(next_candidate), pos, source_name, next_index))
                continue
            winners[source_name] = index

        decisions = [
            self._build_decision(f.name, ranked[f.name], winners.get(f.name), f.name in demoted)
            for f in source_fields
        ]
        unmapped = [d.source_field for d in decisions if not d.is_mapped]
        outcome = ArbitrationOutcome(
            decisions=decisions,
            overall_confidence=overall_confidence(decisions, len(source_fields), len(self.catalog)),
            unmapped_fields=unmapped,
            conflicts=conflicts,
        )
        if record and self.cache is not None:
            outcome.cache_events = self._record_trustworthy(source_fields, decisions)
        return outcome

    @staticmethod
    def _claim(assigned: Dict[str, str], candidate: MappingCandidate) -> None:
        holder = assigned.get(candidate.target_field)
        if holder is not None:
            raise ArbitrationConflict(candidate.target_field, holder, candidate.source_field)
        assigned[candidate.target_field] = candidate.source_field

    @staticmethod
    def _build_decision(
        source_name: str,
        entries: List[Tuple[MappingCandidate, List[str]]],
        winner_index: Optional[int],
        demoted: bool,
    ) -> MappingDecision:
        if winner_index is None:
            if not entries:
                rationale = "No strategy proposed a target"
            elif demoted:
                rationale = "Every candidate target was claimed by a higher-confidence field or fell below the acceptance floor"
            else:
                rationale = "No candidate cleared the acceptance floor"
            return MappingDecision(
                source_field=source_name,
                target_field=None,
                confidence=0.0,
                strategy=None,
                rationale=rationale,
                competing_candidates=[c for c, _ in entries],
                demoted=demoted,
            )

        winner, strategies = entries[winner_index]
        return MappingDecision(
            source_field=source_name,
            target_field=winner.target_field,
            confidence=winner.confidence,
            strategy=winner.strategy,
            rationale=winner.rationale,
            supporting_strategies=strategies,
            competing_candidates=[c for i, (c, _) in enumerate(entries) if i != winner_index],
            demoted=demoted,
        )

    def _record_trustworthy(
        self,
        source_fields: List[SourceField],
        decisions: List[MappingDecision],
    ) -> List[CacheEvent]:
        by_name = {f.name: f for f in source_fields}
        events = []
        for decision in decisions:
            if not decision.is_mapped or decision.confidence < self.thresholds.trustworthy_threshold:
                continue
            source_field = by_name[decision.source_field]
            try:
                events.append(self.cache.record(
                    fingerprint=source_field.fingerprint,
                    shape_key=source_field.shape_key,
                    source_name=source_field.name,
                    target_field=decision.target_field,
                    confidence=decision.confidence,
                    strategy=decision.strategy,
                ))
            except CacheUnavailable as e:
                # Log error but don't fail - the mapping itself is still valid
                logger.warning(
                    f"Failed to record mapping for '{sanitize_for_logging(source_field.name)}' "
                    f"in learning cache: {e}"
                )
            except Exception as e:
                logger.error(
                    f"Unexpected learning cache error for '{sanitize_for_logging(source_field.name)}': {e}",
                    exc_info=True,
                )
        return events
