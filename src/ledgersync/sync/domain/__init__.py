"""Domain modules for sync business rules.

This package centralizes business logic for the sync engine:
- conflicts: classification of replay responses into conflict types
- errors: classification of executor failures (NETWORK / SERVER_ERROR)
- lifecycle: operation state machine and transition planners

Architecture:
    domain/ contains pure business logic without storage access.
    Persistence (guarded updates, history) stays in lifecycle.py and orchestrator.py.
"""

from ledgersync.sync.domain.conflicts import (
    CONFLICT_CODES,
    NO_CONFLICT,
    ConflictDescriptor,
    classify_response,
    get_error_code,
)
from ledgersync.sync.domain.errors import (
    NETWORK_ERROR_PATTERNS,
    NETWORK_EXCEPTIONS,
    classify_error,
    to_executor_error,
)
from ledgersync.sync.domain.lifecycle import (
    VALID_TRANSITIONS,
    Transition,
    can_transition,
    extract_server_id,
    plan_claim,
    plan_conflict,
    plan_failure,
    plan_reset,
    plan_resolution,
    plan_retry,
    plan_success,
)

__all__ = [
    # conflicts
    "CONFLICT_CODES",
    "NO_CONFLICT",
    "ConflictDescriptor",
    "classify_response",
    "get_error_code",
    # errors
    "NETWORK_ERROR_PATTERNS",
    "NETWORK_EXCEPTIONS",
    "classify_error",
    "to_executor_error",
    # lifecycle
    "VALID_TRANSITIONS",
    "Transition",
    "can_transition",
    "extract_server_id",
    "plan_claim",
    "plan_conflict",
    "plan_failure",
    "plan_reset",
    "plan_resolution",
    "plan_retry",
    "plan_success",
]
