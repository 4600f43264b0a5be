"""Shared types and dataclasses for the sync engine.

This module provides:
- SyncError and its subclasses: the closed error taxonomy of the engine
- Executor: the injected replay callable
- SyncOutcome, BatchSyncResult, RetryResult, SyncStatusSummary: result types
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ledgersync.core.types import ConflictType, ErrorCode, OperationStatus

if TYPE_CHECKING:
    from ledgersync.server.models import OfflineOperation


class SyncError(Exception):
    """Base exception for sync engine errors."""


class ValidationError(SyncError):
    """Invalid caller input. Surfaced immediately, never retried."""


class OperationNotFoundError(ValidationError):
    """No queued operation exists with the given ID."""

    def __init__(self, queue_id: int) -> None:
        self.queue_id = queue_id
        super().__init__(f"Operation not found: {queue_id}")


class InvalidStrategyError(ValidationError):
    """Resolution strategy is not one of the recognized values."""

    def __init__(self, strategy: object) -> None:
        self.strategy = strategy
        super().__init__(f"Invalid resolution strategy: {strategy}")


class InvalidTransitionError(SyncError):
    """Raised when attempting a status change the lifecycle does not allow."""

    def __init__(
        self,
        queue_id: int | None,
        current: OperationStatus | str,
        target: OperationStatus | str,
        reason: str = "",
    ) -> None:
        self.queue_id = queue_id
        self.current = OperationStatus(current)
        self.target = OperationStatus(target)
        message = (
            f"Cannot transition operation {queue_id} "
            f"from {self.current.value} to {self.target.value}"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ExecutorError(SyncError):
    """Tagged failure raised at the executor boundary.

    Attributes:
        error_code: Classification persisted on the operation.
        status_code: HTTP status of the replay, when there was one.
    """

    error_code: ErrorCode = ErrorCode.SERVER_ERROR

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(ExecutorError):
    """The replay never reached the server or timed out."""

    error_code = ErrorCode.NETWORK


class ServerError(ExecutorError):
    """The server was reached but the replay failed."""

    error_code = ErrorCode.SERVER_ERROR


# Performs the actual replay of a queued operation and returns the raw response
Executor = Callable[["OfflineOperation"], Any]


@dataclass
class SyncOutcome:
    """Result of applying one response to one operation."""

    queue_id: int
    status: OperationStatus
    conflict_type: ConflictType = ConflictType.NONE
    server_id: str | None = None

    @property
    def is_conflict(self) -> bool:
        """Check if the response was classified as a conflict."""
        return self.status == OperationStatus.CONFLICT


@dataclass
class BatchSyncResult:
    """Tally of one batch sync run."""

    success: int = 0
    failed: int = 0
    conflict: int = 0
    total: int = 0
    duration_ms: int = 0
    batch_id: str | None = None
    skipped: int = 0
    released: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, int]:
        """Render the tally with the wire names used by the admin API."""
        return {
            "success": self.success,
            "failed": self.failed,
            "conflict": self.conflict,
            "total": self.total,
            "durationMs": self.duration_ms,
        }


@dataclass
class RetryResult:
    """Per-operation result of a bulk retry."""

    id: int
    status: str  # "retrying" or "error"
    error: str | None = None


@dataclass
class SyncStatusSummary:
    """Counts per status for one business."""

    pending: int
    syncing: int
    synced: int
    conflicts: int
    failed: int
    last_sync: datetime | None

    @property
    def total(self) -> int:
        """Total number of operations in the queue."""
        return self.pending + self.syncing + self.synced + self.conflicts + self.failed

    def to_dict(self) -> dict[str, Any]:
        """Render for API responses."""
        return {
            "pending": self.pending,
            "syncing": self.syncing,
            "synced": self.synced,
            "conflicts": self.conflicts,
            "failed": self.failed,
            "total": self.total,
            "lastSync": self.last_sync.isoformat() if self.last_sync else None,
        }
