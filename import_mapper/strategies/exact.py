"""Exact matcher: normalized header equality against names and aliases."""

from typing import Dict, List, Tuple

from import_mapper.decoding.model import SourceField
from import_mapper.matching.constants import EXACT_ALIAS_CONFIDENCE, EXACT_NAME_CONFIDENCE, StrategyName
from import_mapper.matching.context import MatchContext
from import_mapper.matching.model import MappingCandidate
from import_mapper.schema.target_fields import TargetCatalog
from import_mapper.strategies.base import MappingStrategy
from import_mapper.utils.normalize import normalize_field_name


class ExactMatcher(MappingStrategy):
    """Cheapest strategy; always run first."""

    name = StrategyName.EXACT

    def propose(
        self,
        source_fields: List[SourceField],
        catalog: TargetCatalog,
        context: MatchContext,
    ) -> List[MappingCandidate]:
        names, aliases = self._build_lookup(catalog)
        candidates = []
        for source_field in source_fields:
            normalized = normalize_field_name(source_field.name)
            if not normalized:
                continue
            if normalized in names:
                candidates.append(MappingCandidate(
                    source_field=source_field.name,
                    target_field=names[normalized],
                    confidence=EXACT_NAME_CONFIDENCE,
                    strategy=self.name,
                    rationale=f"Header matches target name '{names[normalized]}'",
                ))
            elif normalized in aliases:
                target, alias = aliases[normalized]
                candidates.append(MappingCandidate(
                    source_field=source_field.name,
                    target_field=target,
                    confidence=EXACT_ALIAS_CONFIDENCE,
                    strategy=self.name,
                    rationale=f"Header matches alias '{alias}' of '{target}'",
                ))
        return candidates

    @staticmethod
    def _build_lookup(catalog: TargetCatalog) -> Tuple[Dict[str, str], Dict[str, Tuple[str, str]]]:
        # First declaration wins when two targets share a normalized alias
        names: Dict[str, str] = {}
        aliases: Dict[str, Tuple[str, str]] = {}
        for target in catalog:
            names.setdefault(target.normalized_name, target.name)
        for target in catalog:
            for alias, normalized in zip(target.aliases, target.normalized_aliases):
                if normalized and normalized not in names:
                    aliases.setdefault(normalized, (target.name, alias))
        return names, aliases
