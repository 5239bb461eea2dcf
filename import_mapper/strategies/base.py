"""Common interface of the matching strategies."""

from abc import ABC, abstractmethod
from typing import List

from import_mapper.decoding.model import SourceField
from import_mapper.matching.context import MatchContext
from import_mapper.matching.model import MappingCandidate
from import_mapper.schema.target_fields import TargetCatalog


class MappingStrategy(ABC):
    """One independent algorithm proposing source-to-target field mappings.

    A strategy handles the whole field batch in one call and must not
    mutate its inputs. Strategies that may block for a long time should
    poll ``context.cancelled`` and stop early.
    """

    name: str = ""
    is_paid: bool = False

    @abstractmethod
    def propose(
        self,
        source_fields: List[SourceField],
        catalog: TargetCatalog,
        context: MatchContext,
    ) -> List[MappingCandidate]:
        """
        Propose candidate mappings for a batch of source fields.

        Args:
            source_fields: Decoded source fields
            catalog: Target schema snapshot
            context: Per-run thresholds, budget, deadline and cancel flag

        Returns:
            Zero or more candidates; several may share a source field
        """

    def __repr__(self):
        return f"<{type(self).__name__}(name={self.name})>"
