"""Import field-mapping and adaptive extraction engine."""

from import_mapper.matching.exceptions import DecodeError, MappingEngineError
from import_mapper.matching.model import MappingDecision, MappingResult
from import_mapper.pipeline import AdaptiveOrchestrator, apply_mapping
from import_mapper.schema.target_fields import TargetCatalog, TargetFieldSpec, get_default_catalog

__all__ = [
    "AdaptiveOrchestrator",
    "DecodeError",
    "MappingDecision",
    "MappingEngineError",
    "MappingResult",
    "TargetCatalog",
    "TargetFieldSpec",
    "apply_mapping",
    "get_default_catalog",
]
