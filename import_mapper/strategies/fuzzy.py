"""Fuzzy matcher: edit-distance similarity between header and target names."""

from typing import List, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from import_mapper.decoding.model import SourceField
from import_mapper.matching.constants import StrategyName
from import_mapper.matching.context import MatchContext
from import_mapper.matching.model import MappingCandidate
from import_mapper.schema.target_fields import TargetCatalog, TargetFieldSpec
from import_mapper.strategies.base import MappingStrategy
from import_mapper.utils.normalize import normalize_field_name


class FuzzyMatcher(MappingStrategy):
    """Keeps the single best-scoring target above the similarity floor.

    Similarity is normalized Levenshtein similarity in [0, 100]; the
    reported confidence is that similarity scaled into the fuzzy band so a
    fuzzy hit never outranks an exact alias match.
    """

    name = StrategyName.FUZZY

    def propose(
        self,
        source_fields: List[SourceField],
        catalog: TargetCatalog,
        context: MatchContext,
    ) -> List[MappingCandidate]:
        floor = context.thresholds.fuzzy_floor
        band = context.thresholds.fuzzy_max_confidence / 100.0
        candidates = []

        for source_field in source_fields:
            if context.cancelled:
                break
            normalized = normalize_field_name(source_field.name)
            if not normalized:
                continue

            best = None  # (sort key, target, similarity, matched label)
            for index, target in enumerate(catalog):
                similarity, distance, label = self._score_target(normalized, target)
                if similarity < floor:
                    continue
                key = (-similarity, distance, index)
                if best is None or key < best[0]:
                    best = (key, target, similarity, label)

            if best is None:
                continue
            _, target, similarity, label = best
            candidates.append(MappingCandidate(
                source_field=source_field.name,
                target_field=target.name,
                confidence=similarity * band,
                strategy=self.name,
                rationale=f"Header is {similarity:.0f}% similar to '{label}'",
            ))
        return candidates

    @staticmethod
    def _score_target(normalized: str, target: TargetFieldSpec) -> Tuple[float, int, Optional[str]]:
        """Best (similarity, edit distance, label) over a target's name and aliases."""
        best_similarity = -1.0
        best_distance = 0
        best_label = None
        labels = [target.name] + list(target.aliases)
        for label, candidate in zip(labels, (target.normalized_name,) + target.normalized_aliases):
            if not candidate:
                continue
            similarity = Levenshtein.normalized_similarity(normalized, candidate) * 100.0
            distance = Levenshtein.distance(normalized, candidate)
            if similarity > best_similarity or (similarity == best_similarity and distance < best_distance):
                best_similarity, best_distance, best_label = similarity, distance, label
        return best_similarity, best_distance, best_label
