"""Field inference agent for ambiguous source fields."""

from import_mapper.agents.field_inference.agent import FieldInferenceAgent, parse_mappings
from import_mapper.agents.field_inference.base import InferenceClient
from import_mapper.agents.field_inference.model import InferenceResponse, InferredMapping

__all__ = [
    "FieldInferenceAgent",
    "InferenceClient",
    "InferenceResponse",
    "InferredMapping",
    "parse_mappings",
]
