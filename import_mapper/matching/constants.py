"""Constants for the field-mapping engine."""


class OrchestratorState:
    """Orchestrator state constants."""
    DECODING = "decoding"
    MATCHING = "matching"
    ARBITRATING = "arbitrating"
    ACCEPTED = "accepted"
    PARTIALLY_ACCEPTED = "partially_accepted"
    FAILED = "failed"


class StrategyName:
    """Strategy name constants."""
    EXACT = "exact"
    FUZZY = "fuzzy"
    STATISTICAL = "statistical"
    HISTORICAL = "historical"
    EXTERNAL = "external"


class StrategyStatus:
    """Per-strategy outcome status for a run."""
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    FAILED = "failed"
    SKIPPED = "skipped"


# Tie-break order when two candidates for the same field have equal confidence.
# Lower index wins.
STRATEGY_PRIORITY = (
    StrategyName.EXACT,
    StrategyName.HISTORICAL,
    StrategyName.FUZZY,
    StrategyName.STATISTICAL,
    StrategyName.EXTERNAL,
)

# Strategies that cost nothing and do not leave the process; used for the fallback pass
FREE_STRATEGIES = (
    StrategyName.EXACT,
    StrategyName.FUZZY,
    StrategyName.STATISTICAL,
)

# Fixed confidences for the exact matcher
EXACT_NAME_CONFIDENCE = 100.0
EXACT_ALIAS_CONFIDENCE = 90.0

# Learning cache age decay: (max age in days, confidence penalty); older entries get the last penalty
CACHE_AGE_DECAY_BUCKETS = (
    (7, 0.0),
    (30, 5.0),
    (90, 10.0),
)
CACHE_AGE_DECAY_MAX_PENALTY = 20.0

# Primitive types assigned by the decoder
PRIMITIVE_TYPES = ("string", "number", "boolean", "date", "unknown")

# Default configuration values
DEFAULT_MAX_WORKERS = 5
