"""External-inference matcher: budget-gated delegation of ambiguous fields."""

import logging
from typing import List, Optional

from import_mapper.agents.field_inference.base import InferenceClient
from import_mapper.decoding.model import SourceField
from import_mapper.matching.constants import StrategyName
from import_mapper.matching.context import MatchContext
from import_mapper.matching.exceptions import ExternalInferenceError
from import_mapper.matching.model import MappingCandidate
from import_mapper.schema.target_fields import TargetCatalog
from import_mapper.strategies.base import MappingStrategy
from import_mapper.utils.sanitize import sanitize_names

logger = logging.getLogger(__name__)


class ExternalInferenceMatcher(MappingStrategy):
    """Sends all ambiguous fields of a run to the inference client in one call.

    Only ``context.ambiguous_fields`` are sent (every field when it is
    None). The per-call estimate is reserved against the run budget before
    the call, so a run never starts a call it cannot afford.

    Raises:
        BudgetExceeded: If the reservation does not fit under the ceiling
        ExternalInferenceError: If the client fails
    """

    name = StrategyName.EXTERNAL
    is_paid = True

    def __init__(self, client: InferenceClient):
        self.client = client

    def propose(
        self,
        source_fields: List[SourceField],
        catalog: TargetCatalog,
        context: MatchContext,
    ) -> List[MappingCandidate]:
        batch = self._select_batch(source_fields, context.ambiguous_fields)
        if not batch or context.cancelled:
            return []

        reservation = context.budget.reserve()
        actual: Optional[float] = None
        try:
            logger.info(
                f"Delegating {len(batch)} ambiguous fields to external inference: "
                f"{sanitize_names(f.name for f in batch)}"
            )
            response = self.client.infer(batch, catalog, context)
            actual = response.cost
        except ExternalInferenceError:
            raise
        except Exception as e:
            raise ExternalInferenceError(f"Inference client failed: {e}") from e
        finally:
            # A failed call is charged its estimate
            context.budget.settle(reservation, actual)

        if context.cancelled:
            return []

        thresholds = context.thresholds
        allowed_sources = {f.name for f in batch}
        candidates = []
        for mapping in response.mappings:
            if mapping.source_field not in allowed_sources:
                logger.debug(f"Dropping inferred mapping for unknown source field '{mapping.source_field}'")
                continue
            if mapping.target_field not in catalog:
                logger.debug(f"Dropping inferred mapping to unknown target '{mapping.target_field}'")
                continue
            confidence = min(
                thresholds.external_max_confidence,
                max(thresholds.external_min_confidence, mapping.confidence),
            )
            candidates.append(MappingCandidate(
                source_field=mapping.source_field,
                target_field=mapping.target_field,
                confidence=confidence,
                strategy=self.name,
                rationale=mapping.rationale or "Suggested by external inference",
            ))
        return candidates

    @staticmethod
    def _select_batch(source_fields: List[SourceField], ambiguous: Optional[List[str]]) -> List[SourceField]:
        if ambiguous is None:
            return list(source_fields)
        wanted = set(ambiguous)
        return [f for f in source_fields if f.name in wanted]
