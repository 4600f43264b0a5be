"""Operation lifecycle manager.

This module provides:
- LifecycleManager: the only writer of an operation's status, attempt count
  and error/conflict columns

Each transition is planned by the pure state machine in domain/lifecycle.py
and applied as one guarded UPDATE: the row must still hold the status and
sync_attempts the plan was computed from. A row changed underneath us by a
concurrent poller makes the update miss and raises InvalidTransitionError
instead of overwriting the other writer.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ledgersync.core.types import HttpMethod, OperationStatus, OperationType, ResolutionStrategy
from ledgersync.server.models import utcnow
from ledgersync.sync.domain.errors import classify_error
from ledgersync.sync.domain.lifecycle import (
    Transition,
    plan_claim,
    plan_conflict,
    plan_failure,
    plan_reset,
    plan_resolution,
    plan_retry,
    plan_success,
)
from ledgersync.sync.types import (
    InvalidTransitionError,
    OperationNotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from ledgersync.server.database import Database
    from ledgersync.server.models import OfflineConfig, OfflineOperation
    from ledgersync.sync.domain.conflicts import ConflictDescriptor

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


def _offline_allowed(config: OfflineConfig, operation_type: OperationType) -> bool:
    """Check the per-type offline switches of a business config."""
    if operation_type is OperationType.SALE:
        return config.allow_sales_offline
    if operation_type is OperationType.EXPENSE:
        return config.allow_expenses_offline
    if operation_type is OperationType.STOCK_ADJUSTMENT:
        return config.allow_stock_adjustment_offline
    return True


class LifecycleManager:
    """Creates queued operations and persists every status transition."""

    def __init__(self, db: Database, max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        """Initialize the lifecycle manager.

        Args:
            db: Database instance.
            max_retries: max_retries given to newly queued operations.
        """
        self._db = db
        self._max_retries = max_retries

    def get(self, queue_id: int) -> OfflineOperation:
        """Load an operation or raise OperationNotFoundError."""
        operation = self._db.get_operation(queue_id)
        if operation is None:
            raise OperationNotFoundError(queue_id)
        return operation

    # === Enqueue ===

    def queue_operation(
        self,
        user_id: int,
        business_id: int,
        operation_type: str,
        operation_id: str,
        endpoint: str,
        method: str,
        request_body: dict[str, Any],
        request_headers: dict[str, Any] | None = None,
        executed_at: datetime | None = None,
        device_id: str | None = None,
        max_retries: int | None = None,
    ) -> OfflineOperation:
        """Add an operation to the offline queue.

        Called when a live request failed for lack of connectivity.

        Args:
            user_id: User who performed the action.
            business_id: Business the action belongs to.
            operation_type: sale, expense, record, payment or stock_adjustment.
            operation_id: Client-generated idempotency key.
            endpoint: Backend endpoint to replay against.
            method: POST, PUT or PATCH.
            request_body: Full request payload.
            request_headers: Optional request headers.
            executed_at: When the action happened offline (default: now).
            device_id: Device that captured the action.
            max_retries: Override of the default retry budget.

        Returns:
            The queued operation (status=pending, sync_attempts=0).

        Raises:
            ValidationError: If the input or the business's offline policy
                rejects the operation.
        """
        try:
            op_type = OperationType(operation_type)
        except ValueError as e:
            raise ValidationError(f"Invalid operation type: {operation_type}") from e
        try:
            http_method = HttpMethod(str(method).upper())
        except ValueError as e:
            raise ValidationError(f"Invalid method: {method}") from e
        if not operation_id:
            raise ValidationError("operation_id is required")
        if not endpoint:
            raise ValidationError("endpoint is required")

        retries = self._max_retries if max_retries is None else max_retries
        if retries < 1:
            raise ValidationError("max_retries must be at least 1")

        config = self._db.get_config(business_id)
        if config is not None:
            if not config.offline_mode_enabled:
                raise ValidationError(f"Offline mode is disabled for business {business_id}")
            if not _offline_allowed(config, op_type):
                raise ValidationError(f"{op_type.value} operations are not allowed offline")
            queued = self._db.count_unsynced(business_id)
            if queued >= config.max_queue_size:
                raise ValidationError(
                    f"Offline queue full for business {business_id} "
                    f"({queued}/{config.max_queue_size})"
                )

        logger.info(
            "Queueing offline operation %s (%s) for user %s, business %s",
            operation_id,
            op_type.value,
            user_id,
            business_id,
        )
        return self._db.insert_operation(
            user_id=user_id,
            business_id=business_id,
            operation_type=op_type.value,
            operation_id=operation_id,
            endpoint=endpoint,
            method=http_method.value,
            request_body=request_body,
            request_headers=request_headers,
            executed_at=executed_at or utcnow(),
            device_id=device_id,
            status=OperationStatus.PENDING.value,
            sync_attempts=0,
            max_retries=retries,
        )

    # === Transitions ===

    def _apply(self, transition: Transition) -> OfflineOperation:
        """Persist a planned transition as one guarded update."""
        updated = self._db.update_operation(
            transition.queue_id, transition.values, expected=transition.guard
        )
        if updated is not None:
            logger.debug(
                "Operation %d: %s -> %s",
                transition.queue_id,
                transition.source.value,
                transition.target.value,
            )
            return updated

        current = self.get(transition.queue_id)
        raise InvalidTransitionError(
            transition.queue_id,
            current.status,
            transition.target,
            "operation changed concurrently",
        )

    def claim(
        self, operation: OfflineOperation, batch_id: str | None = None
    ) -> OfflineOperation | None:
        """Move an operation from pending to syncing.

        The update only matches while the row is still pending, so two pollers
        can never claim the same operation.

        Returns:
            The claimed operation, or None if another poller got it first.
        """
        transition = plan_claim(operation)
        claimed = self._db.update_operation(
            operation.id,
            {**transition.values, "sync_batch_id": batch_id, "claimed_at": utcnow()},
            expected={"status": OperationStatus.PENDING.value},
        )
        if claimed is None:
            logger.info("Operation %d already claimed by another sync run", operation.id)
        return claimed

    def mark_synced(self, operation: OfflineOperation, response: Any) -> OfflineOperation:
        """syncing -> synced."""
        return self._apply(plan_success(operation, response, utcnow()))

    def mark_conflict(
        self, operation: OfflineOperation, conflict: ConflictDescriptor
    ) -> OfflineOperation:
        """syncing -> conflict."""
        logger.warning(
            "Conflict detected for operation %d: %s",
            operation.id,
            conflict.conflict_type.value,
        )
        return self._apply(plan_conflict(operation, conflict))

    def mark_failed(self, operation: OfflineOperation, error: BaseException) -> OfflineOperation:
        """syncing -> pending, or -> failed when the retry budget is spent."""
        error_code = classify_error(error)
        message = str(error) or type(error).__name__
        updated = self._apply(plan_failure(operation, error_code, message, utcnow()))
        if updated.status == OperationStatus.FAILED.value:
            logger.warning(
                "Operation %d exceeded max retries (%d/%d): %s",
                updated.id,
                updated.sync_attempts,
                updated.max_retries,
                message,
            )
        else:
            logger.info(
                "Operation %d failed with %s (attempt %d/%d), will retry",
                updated.id,
                error_code.value,
                updated.sync_attempts,
                updated.max_retries,
            )
        return updated

    def resolve(
        self, operation: OfflineOperation, strategy: ResolutionStrategy
    ) -> OfflineOperation:
        """conflict -> pending (client_wins) or conflict -> synced."""
        return self._apply(plan_resolution(operation, strategy, utcnow()))

    def retry(self, operation: OfflineOperation) -> OfflineOperation:
        """failed -> pending while retries are left."""
        return self._apply(plan_retry(operation))

    def reset(self, operation: OfflineOperation, extra_attempts: int = 1) -> OfflineOperation:
        """Reclaim a failed operation pinned at its retry ceiling."""
        return self._apply(plan_reset(operation, extra_attempts))
