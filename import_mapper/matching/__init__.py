"""Candidate and decision models, run context and arbitration."""

from import_mapper.matching.constants import (
    FREE_STRATEGIES,
    STRATEGY_PRIORITY,
    OrchestratorState,
    StrategyName,
    StrategyStatus,
)
from import_mapper.matching.context import CostBudget, Deadline, MatchContext
from import_mapper.matching.exceptions import (
    ArbitrationConflict,
    BudgetExceeded,
    CacheUnavailable,
    DecodeError,
    ExternalInferenceError,
    InvalidStateTransitionError,
    MappingEngineError,
    StrategyTimeout,
)
from import_mapper.matching.model import (
    MappingCandidate,
    MappingDecision,
    MappingResult,
    StrategyOutcome,
)

__all__ = [
    "FREE_STRATEGIES",
    "STRATEGY_PRIORITY",
    "OrchestratorState",
    "StrategyName",
    "StrategyStatus",
    "CostBudget",
    "Deadline",
    "MatchContext",
    "ArbitrationConflict",
    "BudgetExceeded",
    "CacheUnavailable",
    "DecodeError",
    "ExternalInferenceError",
    "InvalidStateTransitionError",
    "MappingEngineError",
    "StrategyTimeout",
    "MappingCandidate",
    "MappingDecision",
    "MappingResult",
    "StrategyOutcome",
]
