"""Offline operation state machine.

States:
    PENDING -> SYNCING -> SYNCED
                       -> CONFLICT -> PENDING  (client_wins)
                                   -> SYNCED   (any other strategy)
                       -> PENDING  (failure, retries left)
                       -> FAILED   (failure, retries exhausted) -> PENDING (retry)

The planners below are pure: they take a snapshot of an operation and return
the column values to write together with the guard the row must still match.
The lifecycle manager applies them as a single compare-and-swap update.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ledgersync.core.types import ErrorCode, OperationStatus, ResolutionStrategy
from ledgersync.sync.domain.conflicts import ConflictDescriptor
from ledgersync.sync.types import InvalidTransitionError, ValidationError

if TYPE_CHECKING:
    from ledgersync.server.models import OfflineOperation


# Valid state transitions
VALID_TRANSITIONS: dict[OperationStatus, frozenset[OperationStatus]] = {
    OperationStatus.PENDING: frozenset({OperationStatus.SYNCING}),
    OperationStatus.SYNCING: frozenset(
        {
            OperationStatus.SYNCED,
            OperationStatus.CONFLICT,
            OperationStatus.PENDING,
            OperationStatus.FAILED,
        }
    ),
    OperationStatus.CONFLICT: frozenset({OperationStatus.PENDING, OperationStatus.SYNCED}),
    OperationStatus.FAILED: frozenset({OperationStatus.PENDING}),
    OperationStatus.SYNCED: frozenset(),  # Terminal
}


@dataclass(frozen=True)
class Transition:
    """A planned status change for one operation.

    Attributes:
        queue_id: Operation row ID.
        source: Status the row must hold when the update is applied.
        target: Status after the update.
        values: Column values to write (status included).
        expected_attempts: sync_attempts the row must still hold.
    """

    queue_id: int
    source: OperationStatus
    target: OperationStatus
    values: dict[str, Any] = field(default_factory=dict)
    expected_attempts: int | None = None

    @property
    def guard(self) -> dict[str, Any]:
        """Column values the row must match for the update to apply."""
        guard: dict[str, Any] = {"status": self.source.value}
        if self.expected_attempts is not None:
            guard["sync_attempts"] = self.expected_attempts
        return guard


def can_transition(current: OperationStatus | str, target: OperationStatus | str) -> bool:
    """Check if moving from current to target is a legal edge."""
    return OperationStatus(target) in VALID_TRANSITIONS[OperationStatus(current)]


def _transition(
    operation: OfflineOperation,
    target: OperationStatus,
    values: dict[str, Any],
    reason: str = "",
) -> Transition:
    """Validate the edge and build a Transition guarded on the snapshot."""
    current = OperationStatus(operation.status)
    if not can_transition(current, target):
        raise InvalidTransitionError(operation.id, current, target, reason)
    return Transition(
        queue_id=operation.id,
        source=current,
        target=target,
        values={"status": target.value, **values},
        expected_attempts=operation.sync_attempts,
    )


def _require_syncing(operation: OfflineOperation, target: OperationStatus) -> None:
    """Replay outcomes only apply to an operation claimed for syncing."""
    if OperationStatus(operation.status) is not OperationStatus.SYNCING:
        raise InvalidTransitionError(operation.id, operation.status, target, "not syncing")


def extract_server_id(response: Any) -> str | None:
    """Get the server-assigned ID from ``response.id`` or ``response.data.id``."""
    if not isinstance(response, Mapping):
        return None
    server_id = response.get("id")
    if server_id is None:
        data = response.get("data")
        if isinstance(data, Mapping):
            server_id = data.get("id")
    return None if server_id is None else str(server_id)


def plan_claim(operation: OfflineOperation) -> Transition:
    """pending -> syncing."""
    return _transition(operation, OperationStatus.SYNCING, {})


def plan_success(operation: OfflineOperation, response: Any, now: datetime) -> Transition:
    """syncing -> synced, recording the response and counting the attempt."""
    _require_syncing(operation, OperationStatus.SYNCED)
    return _transition(
        operation,
        OperationStatus.SYNCED,
        {
            "server_response": response,
            "server_id": extract_server_id(response),
            "synced_at": now,
            "sync_attempts": operation.sync_attempts + 1,
        },
    )


def plan_conflict(operation: OfflineOperation, conflict: ConflictDescriptor) -> Transition:
    """syncing -> conflict, awaiting a manual decision. Attempts unchanged."""
    if not conflict.is_conflict:
        raise ValueError("plan_conflict requires a detected conflict")
    _require_syncing(operation, OperationStatus.CONFLICT)
    return _transition(
        operation,
        OperationStatus.CONFLICT,
        {
            "conflict_type": conflict.conflict_type.value,
            "conflict_data": conflict.data,
            "resolution_strategy": ResolutionStrategy.MANUAL.value,
        },
    )


def plan_failure(
    operation: OfflineOperation,
    error_code: ErrorCode,
    message: str,
    now: datetime,
) -> Transition:
    """syncing -> pending, or -> failed once the attempt budget is spent."""
    _require_syncing(operation, OperationStatus.PENDING)
    attempts = operation.sync_attempts + 1
    values: dict[str, Any] = {
        "sync_attempts": attempts,
        "last_error": message,
        "error_code": error_code.value,
    }
    if attempts >= operation.max_retries:
        values["failed_at"] = now
        return _transition(operation, OperationStatus.FAILED, values)
    return _transition(operation, OperationStatus.PENDING, values)


def plan_resolution(
    operation: OfflineOperation,
    strategy: ResolutionStrategy,
    now: datetime,
) -> Transition:
    """conflict -> pending for client_wins, conflict -> synced otherwise."""
    if OperationStatus(operation.status) is not OperationStatus.CONFLICT:
        raise InvalidTransitionError(
            operation.id,
            operation.status,
            OperationStatus.PENDING
            if strategy is ResolutionStrategy.CLIENT_WINS
            else OperationStatus.SYNCED,
            "only conflicted operations can be resolved",
        )
    target = (
        OperationStatus.PENDING
        if strategy is ResolutionStrategy.CLIENT_WINS
        else OperationStatus.SYNCED
    )
    return _transition(
        operation,
        target,
        {"resolution_strategy": strategy.value, "resolved_at": now},
    )


def plan_retry(operation: OfflineOperation) -> Transition:
    """failed -> pending, only while retries are left."""
    if OperationStatus(operation.status) is not OperationStatus.FAILED:
        raise InvalidTransitionError(
            operation.id, operation.status, OperationStatus.PENDING, "not failed"
        )
    if operation.sync_attempts >= operation.max_retries:
        raise InvalidTransitionError(
            operation.id,
            operation.status,
            OperationStatus.PENDING,
            f"retry budget exhausted ({operation.sync_attempts}/{operation.max_retries})",
        )
    return _transition(
        operation,
        OperationStatus.PENDING,
        {"sync_attempts": operation.sync_attempts + 1, "last_error": None},
    )


def plan_reset(operation: OfflineOperation, extra_attempts: int = 1) -> Transition:
    """Administrative reclaim of a failed operation pinned at its retry ceiling.

    Raises max_retries so that sync_attempts < max_retries holds again; the
    attempt counter itself is never decreased.
    """
    if extra_attempts < 1:
        raise ValidationError("extra_attempts must be at least 1")
    if OperationStatus(operation.status) is not OperationStatus.FAILED:
        raise InvalidTransitionError(
            operation.id, operation.status, OperationStatus.PENDING, "not failed"
        )
    return _transition(
        operation,
        OperationStatus.PENDING,
        {
            "max_retries": operation.sync_attempts + extra_attempts,
            "last_error": None,
        },
    )
