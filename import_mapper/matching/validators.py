"""Validation utilities for the orchestrator state machine."""

from import_mapper.matching.constants import OrchestratorState
from import_mapper.matching.exceptions import InvalidStateTransitionError


# Valid state transitions
VALID_STATE_TRANSITIONS = {
    OrchestratorState.DECODING: {OrchestratorState.MATCHING, OrchestratorState.FAILED},
    # matching is re-entered once for the fallback pass
    OrchestratorState.MATCHING: {OrchestratorState.ARBITRATING, OrchestratorState.MATCHING, OrchestratorState.FAILED},
    OrchestratorState.ARBITRATING: {
        OrchestratorState.ACCEPTED,
        OrchestratorState.PARTIALLY_ACCEPTED,
        OrchestratorState.MATCHING,
        OrchestratorState.FAILED,
    },
    OrchestratorState.ACCEPTED: set(),  # Terminal state
    OrchestratorState.PARTIALLY_ACCEPTED: set(),  # Terminal state
    OrchestratorState.FAILED: set(),  # Terminal state
}

TERMINAL_STATES = {
    OrchestratorState.ACCEPTED,
    OrchestratorState.PARTIALLY_ACCEPTED,
    OrchestratorState.FAILED,
}


def validate_state_transition(current_state: str, new_state: str) -> None:
    """
    Validate that a state transition is allowed.

    Args:
        current_state: Current orchestrator state
        new_state: Desired new state

    Raises:
        InvalidStateTransitionError: If transition is not allowed
    """
    if current_state not in VALID_STATE_TRANSITIONS:
        raise InvalidStateTransitionError(f"Unknown current state: {current_state}")

    allowed_states = VALID_STATE_TRANSITIONS[current_state]
    if new_state not in allowed_states:
        raise InvalidStateTransitionError(
            f"Invalid state transition from '{current_state}' to '{new_state}'. "
            f"Allowed transitions: {sorted(allowed_states)}"
        )
