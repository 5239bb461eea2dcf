"""Data models for the field inference agent."""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class InferredMapping:
    """One source-to-target mapping suggested by the inference agent"""

    source_field: str
    target_field: str
    confidence: float
    rationale: str = ""

    def to_dict(self) -> dict:
        return {
            "source_field": self.source_field,
            "target_field": self.target_field,
            "confidence": self.confidence,
            "rationale": self.rationale,
        }


@dataclass
class InferenceResponse:
    """Result of one batched inference call"""

    mappings: List[InferredMapping] = field(default_factory=list)
    cost: Optional[float] = None  # None when the provider reported no cost
    reasoning: str = ""

    def to_dict(self) -> dict:
        return {
            "mappings": [m.to_dict() for m in self.mappings],
            "cost": self.cost,
            "reasoning": self.reasoning,
        }
