"""Statistical matcher: classifies sample values against target constraints.

Header names are ignored entirely, which is what lets this strategy catch
renamed or obfuscated columns.
"""

import logging
from typing import List, Optional

from import_mapper.decoding.model import SourceField
from import_mapper.decoding.type_inference import parse_boolean, parse_date, parse_number
from import_mapper.matching.constants import StrategyName
from import_mapper.matching.context import MatchContext
from import_mapper.matching.model import MappingCandidate
from import_mapper.schema.target_fields import TargetCatalog, TargetFieldSpec
from import_mapper.strategies.base import MappingStrategy

logger = logging.getLogger(__name__)


def value_satisfies(value: str, target: TargetFieldSpec) -> bool:
    """
    Check one raw value against a target's type and format constraint.

    Args:
        value: Raw (non-empty) cell text
        target: Target field specification

    Returns:
        True if the value is type-compatible and meets every constraint attribute
    """
    text = str(value).strip()
    number: Optional[float] = None

    if target.semantic_type in ("number", "integer"):
        number = parse_number(text)
        if number is None:
            return False
        if target.semantic_type == "integer" and not float(number).is_integer():
            return False
    elif target.semantic_type == "boolean":
        if parse_boolean(text) is None:
            return False
    elif target.semantic_type == "date":
        if parse_date(text) is None:
            return False

    constraint = target.constraint
    if constraint is None:
        return True

    if constraint.min_value is not None or constraint.max_value is not None:
        if number is None:
            number = parse_number(text)
        if number is None:
            return False
        if constraint.min_value is not None and number < constraint.min_value:
            return False
        if constraint.max_value is not None and number > constraint.max_value:
            return False

    if constraint.allowed_values:
        allowed = {v.lower() for v in constraint.allowed_values}
        if text.lower() not in allowed:
            return False

    if constraint.pattern:
        if not constraint.compiled_pattern().fullmatch(text):
            return False

    if constraint.max_length is not None and len(text) > constraint.max_length:
        return False

    return True


class StatisticalMatcher(MappingStrategy):
    """Scores each field against every target that carries shape evidence.

    Targets with a format constraint are capped at the statistical maximum;
    targets with only a non-string type give weaker evidence and get a lower
    cap. Unconstrained string targets are not scored at all.
    """

    name = StrategyName.STATISTICAL

    def propose(
        self,
        source_fields: List[SourceField],
        catalog: TargetCatalog,
        context: MatchContext,
    ) -> List[MappingCandidate]:
        thresholds = context.thresholds
        scored_targets = [
            t for t in catalog if t.has_constraint or t.semantic_type != "string"
        ]
        candidates = []

        for source_field in source_fields:
            if context.cancelled:
                break
            samples = [v for v in source_field.sample_values if str(v).strip()]
            if not samples:
                continue

            for target in scored_targets:
                satisfied = sum(1 for v in samples if value_satisfies(v, target))
                if not satisfied:
                    continue
                fraction = satisfied / len(samples)
                cap = (
                    thresholds.statistical_max_confidence
                    if target.has_constraint
                    else thresholds.statistical_type_only_max_confidence
                )
                confidence = fraction * cap
                if confidence < thresholds.statistical_min_confidence:
                    continue
                candidates.append(MappingCandidate(
                    source_field=source_field.name,
                    target_field=target.name,
                    confidence=confidence,
                    strategy=self.name,
                    rationale=(
                        f"{satisfied}/{len(samples)} sample values fit "
                        f"{'the format of' if target.has_constraint else 'the type of'} '{target.name}'"
                    ),
                ))
        return candidates
