"""Data models for field mapping runs."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd


def clamp_confidence(value: float) -> float:
    """Clamp a confidence score into [0, 100]."""
    return max(0.0, min(100.0, float(value)))


@dataclass
class MappingCandidate:
    """One strategy's proposal that a source field maps to a target field"""

    source_field: str
    target_field: str
    confidence: float  # 0-100
    strategy: str
    rationale: str = ""

    def __post_init__(self):
        self.confidence = round(clamp_confidence(self.confidence), 2)

    def to_dict(self) -> dict:
        return {
            "source_field": self.source_field,
            "target_field": self.target_field,
            "confidence": self.confidence,
            "strategy": self.strategy,
            "rationale": self.rationale,
        }


@dataclass
class MappingDecision:
    """The single accepted outcome for one source field"""

    source_field: str
    target_field: Optional[str]  # None when unmapped
    confidence: float
    strategy: Optional[str]
    rationale: str = ""
    supporting_strategies: List[str] = field(default_factory=list)
    competing_candidates: List[MappingCandidate] = field(default_factory=list)
    demoted: bool = False  # lost its first choice to a higher-confidence field

    @property
    def is_mapped(self) -> bool:
        return self.target_field is not None

    def to_dict(self) -> dict:
        return {
            "source_field": self.source_field,
            "target_field": self.target_field,
            "confidence": self.confidence,
            "strategy": self.strategy,
            "rationale": self.rationale,
            "supporting_strategies": list(self.supporting_strategies),
            "demoted": self.demoted,
            "competing_candidates": [c.to_dict() for c in self.competing_candidates],
        }


@dataclass
class StrategyOutcome:
    """What happened to one strategy during a run"""

    strategy: str
    status: str  # see StrategyStatus
    candidates: List[MappingCandidate] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    cost: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "strategy": self.strategy,
            "status": self.status,
            "candidates": len(self.candidates),
            "elapsed_seconds": round(self.elapsed_seconds, 4),
            "cost": self.cost,
            "error": self.error,
        }


@dataclass
class MappingResult:
    """Result of one mapping run, consumed by the importer"""

    run_id: str
    state: str  # see OrchestratorState
    decisions: List[MappingDecision]
    overall_confidence: float
    unmapped_fields: List[str]
    total_cost: float
    elapsed_seconds: float
    strategies_invoked: List[str]
    strategy_outcomes: Dict[str, StrategyOutcome] = field(default_factory=dict)
    missing_required_targets: List[str] = field(default_factory=list)
    fallback_used: bool = False
    decode_report: Dict[str, Any] = field(default_factory=dict)
    cache_events: List[dict] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    normalized_records: Optional[pd.DataFrame] = None

    @property
    def mappings(self) -> Dict[str, str]:
        """target_field -> source_field for every mapped decision"""
        return {
            d.target_field: d.source_field
            for d in self.decisions
            if d.is_mapped
        }

    @property
    def mapped_count(self) -> int:
        return sum(1 for d in self.decisions if d.is_mapped)

    def decision_for(self, source_field: str) -> Optional[MappingDecision]:
        for decision in self.decisions:
            if decision.source_field == source_field:
                return decision
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary (normalized records are not included)"""
        return {
            "run_id": self.run_id,
            "state": self.state,
            "overall_confidence": self.overall_confidence,
            "mappings": self.mappings,
            "decisions": [d.to_dict() for d in self.decisions],
            "unmapped_fields": list(self.unmapped_fields),
            "missing_required_targets": list(self.missing_required_targets),
            "total_cost": self.total_cost,
            "elapsed_seconds": round(self.elapsed_seconds, 4),
            "strategies_invoked": list(self.strategies_invoked),
            "strategy_outcomes": {k: v.to_dict() for k, v in self.strategy_outcomes.items()},
            "fallback_used": self.fallback_used,
            "decode_report": dict(self.decode_report),
            "cache_events": list(self.cache_events),
            "notes": list(self.notes),
        }

    def to_diagnostics(self) -> dict:
        """Compact per-run entry for observability tooling"""
        return {
            "run_id": self.run_id,
            "state": self.state,
            "overall_confidence": self.overall_confidence,
            "total_cost": self.total_cost,
            "elapsed_seconds": round(self.elapsed_seconds, 4),
            "strategies_invoked": list(self.strategies_invoked),
            "strategy_status": {k: v.status for k, v in self.strategy_outcomes.items()},
            "fallback_used": self.fallback_used,
            "decisions": {
                d.source_field: {
                    "target": d.target_field,
                    "confidence": d.confidence,
                    "strategy": d.strategy,
                }
                for d in self.decisions
            },
            "unmapped_fields": list(self.unmapped_fields),
        }
