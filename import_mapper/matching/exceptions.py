"""Custom exceptions for the field-mapping engine."""


class MappingEngineError(Exception):
    """Base exception for mapping engine errors."""
    pass


class DecodeError(MappingEngineError):
    """The uploaded file could not be turned into a usable record set.

    This is the only error that is surfaced to callers of the orchestrator.
    """

    def __init__(self, message: str, skipped_rows: int = 0):
        self.skipped_rows = skipped_rows
        super().__init__(message)


class StrategyTimeout(MappingEngineError):
    """A matching strategy did not finish within its time limit."""

    def __init__(self, strategy: str, timeout_seconds: float):
        self.strategy = strategy
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Strategy '{strategy}' timed out after {timeout_seconds:.2f}s")


class BudgetExceeded(MappingEngineError):
    """A paid call would push the run over its cost ceiling."""

    def __init__(self, requested: float, spent: float, ceiling: float):
        self.requested = requested
        self.spent = spent
        self.ceiling = ceiling
        super().__init__(
            f"Cost {requested:.6f} would exceed ceiling {ceiling:.6f} (already spent {spent:.6f})"
        )


class CacheUnavailable(MappingEngineError):
    """The learning cache backing store could not be read or written."""
    pass


class ArbitrationConflict(MappingEngineError):
    """Two source fields claimed the same target field.

    Raised and resolved inside the arbiter; never surfaced to callers.
    """

    def __init__(self, target_field: str, holder: str, claimant: str):
        self.target_field = target_field
        self.holder = holder
        self.claimant = claimant
        super().__init__(
            f"Target '{target_field}' already claimed by '{holder}', rejecting '{claimant}'"
        )


class ExternalInferenceError(MappingEngineError):
    """The external inference call failed or returned an unusable response."""
    pass


class InvalidStateTransitionError(MappingEngineError):
    """Invalid orchestrator state transition attempted."""
    pass
