"""Retry of failed offline operations.

This module provides:
- RetryManager.retry_failed_operations: re-queue failed operations that still
  have retries left
- RetryManager.reset_exhausted_operation: administrative reclaim of an
  operation pinned at its retry ceiling

Operations with sync_attempts >= max_retries are never picked up by the bulk
retry; only the explicit reset can bring them back.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ledgersync.sync.lifecycle import LifecycleManager
from ledgersync.sync.types import RetryResult

if TYPE_CHECKING:
    from ledgersync.server.database import Database
    from ledgersync.server.models import OfflineOperation

logger = logging.getLogger(__name__)


class RetryManager:
    """Moves failed operations back to the pending queue."""

    def __init__(self, db: Database, lifecycle: LifecycleManager | None = None) -> None:
        self._db = db
        self._lifecycle = lifecycle or LifecycleManager(db)

    def retry_failed_operations(self, business_id: int) -> list[RetryResult]:
        """Reset every retryable failed operation of a business to pending.

        Each reset increments sync_attempts and clears last_error. A failure
        on one operation is reported in its result and does not stop the rest.

        Args:
            business_id: Business whose failed operations are retried.

        Returns:
            One RetryResult per selected operation, in failed_at order.
        """
        logger.info("Retrying failed operations for business %d", business_id)
        failed_ops = self._db.list_retryable_failed(business_id)

        results: list[RetryResult] = []
        for operation in failed_ops:
            try:
                self._lifecycle.retry(operation)
                results.append(RetryResult(id=operation.id, status="retrying"))
            except Exception as e:
                logger.exception("Error retrying operation %d", operation.id)
                results.append(RetryResult(id=operation.id, status="error", error=str(e)))

        if results:
            logger.info(
                "Queued %d of %d failed operations for retry",
                sum(1 for r in results if r.status == "retrying"),
                len(results),
            )
        else:
            logger.debug("No retryable failed operations for business %d", business_id)
        return results

    def reset_exhausted_operation(
        self, queue_id: int, extra_attempts: int = 1
    ) -> OfflineOperation:
        """Give a failed operation additional attempts and re-queue it.

        Args:
            queue_id: Operation row ID.
            extra_attempts: Attempts granted on top of the ones already used.

        Returns:
            The operation, now pending.

        Raises:
            OperationNotFoundError: If the operation does not exist.
            ValidationError: If extra_attempts < 1.
            InvalidTransitionError: If the operation is not failed.
        """
        operation = self._lifecycle.get(queue_id)
        updated = self._lifecycle.reset(operation, extra_attempts)
        logger.warning(
            "Operation %d reset by administrator (attempts %d, new max_retries %d)",
            queue_id,
            updated.sync_attempts,
            updated.max_retries,
        )
        return updated
