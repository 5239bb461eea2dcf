"""Interface of external semantic-inference clients."""

from abc import ABC, abstractmethod
from typing import List

from import_mapper.agents.field_inference.model import InferenceResponse
from import_mapper.decoding.model import SourceField
from import_mapper.matching.context import MatchContext
from import_mapper.schema.target_fields import TargetCatalog


class InferenceClient(ABC):
    """Anything that can map a batch of ambiguous fields in one call."""

    @abstractmethod
    def infer(
        self,
        source_fields: List[SourceField],
        catalog: TargetCatalog,
        context: MatchContext,
    ) -> InferenceResponse:
        """
        Suggest mappings for a batch of source fields.

        Raises:
            ExternalInferenceError: If the call fails or the response is unusable
        """
