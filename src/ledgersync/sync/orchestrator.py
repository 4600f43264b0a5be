"""Sync orchestrator for queued offline operations.

This module provides:
- SyncOrchestrator: drives one operation or a business's whole pending queue
  through an injected executor

Architecture:
    Database (pending, FIFO) -> claim -> Executor -> classify -> LifecycleManager
                                                             -> history log

Within one business, operations are replayed strictly one after another in
creation order: a stock adjustment may depend on the sale queued before it.
Different businesses share no rows and may be synced concurrently.
"""

from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ledgersync.core.types import (
    ConflictType,
    HistoryStatus,
    OperationStatus,
    SyncType,
)
from ledgersync.server.models import utcnow
from ledgersync.sync.domain.conflicts import classify_response
from ledgersync.sync.domain.errors import to_executor_error
from ledgersync.sync.lifecycle import LifecycleManager
from ledgersync.sync.types import (
    BatchSyncResult,
    Executor,
    InvalidTransitionError,
    NetworkError,
    ServerError,
    SyncOutcome,
)

if TYPE_CHECKING:
    from ledgersync.server.database import Database
    from ledgersync.server.models import OfflineOperation

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 1000
DEFAULT_EXECUTOR_TIMEOUT = 30.0  # seconds
DEFAULT_STALE_AFTER_MINUTES = 30


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class SyncOrchestrator:
    """Replays queued operations and records their outcome."""

    def __init__(
        self,
        db: Database,
        lifecycle: LifecycleManager | None = None,
        executor_timeout: float | None = DEFAULT_EXECUTOR_TIMEOUT,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        stale_after_minutes: int = DEFAULT_STALE_AFTER_MINUTES,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            db: Database instance.
            lifecycle: Lifecycle manager (created on db if omitted).
            executor_timeout: Seconds a replay may take before it counts as a
                network failure (None = wait forever).
            batch_limit: Maximum pending operations pulled per batch.
            stale_after_minutes: Age of a syncing claim after which the run
                holding it is presumed dead and the operation is released.
        """
        self._db = db
        self._lifecycle = lifecycle or LifecycleManager(db)
        self._executor_timeout = executor_timeout
        self._batch_limit = batch_limit
        self._stale_after = timedelta(minutes=stale_after_minutes)

    @property
    def lifecycle(self) -> LifecycleManager:
        """The lifecycle manager used for every transition."""
        return self._lifecycle

    # === Single operation ===

    def sync_operation(
        self,
        queue_id: int,
        response: Any,
        sync_type: SyncType = SyncType.MANUAL,
    ) -> SyncOutcome:
        """Apply a replay response to one queued operation.

        A pending operation is claimed first so that it passes through syncing.
        Re-invoking on an already synced operation changes nothing.

        Args:
            queue_id: Operation row ID.
            response: Raw response of the replay.
            sync_type: What triggered the sync (recorded in history).

        Returns:
            The outcome (synced or conflict).

        Raises:
            OperationNotFoundError: If the operation does not exist.
            InvalidTransitionError: If the operation is in conflict or failed,
                or another sync run holds it.
        """
        logger.info("Syncing offline operation %d", queue_id)
        operation = self._lifecycle.get(queue_id)

        if operation.status == OperationStatus.SYNCED.value:
            logger.debug("Operation %d already synced, nothing to do", queue_id)
            return SyncOutcome(
                queue_id=queue_id,
                status=OperationStatus.SYNCED,
                server_id=operation.server_id,
            )

        if operation.status == OperationStatus.PENDING.value:
            claimed = self._lifecycle.claim(operation)
            if claimed is None:
                current = self._lifecycle.get(queue_id)
                raise InvalidTransitionError(
                    queue_id, current.status, OperationStatus.SYNCING, "already claimed"
                )
            operation = claimed

        return self._apply_response(operation, response, sync_type, utcnow(), 0)

    def _apply_response(
        self,
        operation: OfflineOperation,
        response: Any,
        sync_type: SyncType,
        started_at: datetime,
        duration_ms: int,
    ) -> SyncOutcome:
        """Classify a response and persist the resulting transition and history."""
        conflict = classify_response(response)

        if conflict.is_conflict:
            updated = self._lifecycle.mark_conflict(operation, conflict)
            self._db.add_history(
                queue_id=updated.id,
                user_id=updated.user_id,
                sync_type=sync_type.value,
                status=HistoryStatus.FAILED.value,
                response_data=response,
                error_message=f"Conflict: {conflict.conflict_type.value}",
                device_id=updated.device_id,
                started_at=started_at,
                sync_duration_ms=duration_ms,
            )
            return SyncOutcome(
                queue_id=updated.id,
                status=OperationStatus.CONFLICT,
                conflict_type=conflict.conflict_type,
            )

        updated = self._lifecycle.mark_synced(operation, response)
        self._db.add_history(
            queue_id=updated.id,
            user_id=updated.user_id,
            sync_type=sync_type.value,
            status=HistoryStatus.SUCCESS.value,
            response_data=response,
            device_id=updated.device_id,
            started_at=started_at,
            sync_duration_ms=duration_ms,
        )
        logger.info("Operation %d synced successfully", updated.id)
        return SyncOutcome(
            queue_id=updated.id,
            status=OperationStatus.SYNCED,
            conflict_type=ConflictType.NONE,
            server_id=updated.server_id,
        )

    def _record_failure(
        self,
        operation: OfflineOperation,
        error: BaseException,
        sync_type: SyncType,
        started_at: datetime,
        duration_ms: int,
    ) -> OfflineOperation:
        """Persist a failed replay attempt and its history entry."""
        updated = self._lifecycle.mark_failed(operation, error)
        self._db.add_history(
            queue_id=updated.id,
            user_id=updated.user_id,
            sync_type=sync_type.value,
            status=HistoryStatus.FAILED.value,
            response_data={"error": str(error), "code": updated.error_code},
            error_message=str(error),
            device_id=updated.device_id,
            started_at=started_at,
            sync_duration_ms=duration_ms,
        )
        return updated

    def _release(
        self, operation: OfflineOperation, error: ServerError, sync_type: SyncType
    ) -> bool:
        """Return a syncing operation to pending (or failed), counting the attempt.

        Returns:
            True if the operation was released, False if it had already left syncing.
        """
        try:
            self._record_failure(operation, error, sync_type, utcnow(), 0)
        except InvalidTransitionError:
            logger.debug("Operation %d already left syncing, nothing to release", operation.id)
            return False
        except Exception:
            logger.exception("Could not release operation %d from syncing", operation.id)
            return False
        return True

    def release_stale_operations(
        self,
        business_id: int,
        sync_type: SyncType = SyncType.AUTOMATIC,
        now: datetime | None = None,
    ) -> int:
        """Release operations whose sync run died while holding them.

        An operation still in syncing longer than stale_after_minutes after its
        claim is treated as a failed attempt: it goes back to pending, or to
        failed once its retries are spent. The replay carries the operation's
        idempotency key, so a replay that did reach the backend is not applied
        twice.

        Args:
            business_id: Business whose queue is checked.
            sync_type: Sync type recorded in the failure history entry.
            now: Reference time (default: now).

        Returns:
            Number of operations released.
        """
        cutoff = (now or utcnow()) - self._stale_after
        released = 0
        for operation in self._db.list_stale_syncing(business_id, cutoff):
            claimed_at = operation.claimed_at.isoformat() if operation.claimed_at else "unknown"
            error = ServerError(f"Sync interrupted: operation left in syncing since {claimed_at}")
            if self._release(operation, error, sync_type):
                released += 1

        if released:
            logger.warning(
                "Released %d stale syncing operations for business %d", released, business_id
            )
        return released

    # === Batch ===

    def _execute(self, executor: Executor, operation: OfflineOperation) -> Any:
        """Run the executor, turning a timeout into a NetworkError."""
        if self._executor_timeout is None:
            return executor(operation)

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ledgersync-replay")
        future = pool.submit(executor, operation)
        try:
            return future.result(timeout=self._executor_timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise NetworkError(
                f"Executor timeout after {self._executor_timeout:.1f}s"
            ) from e
        finally:
            # A hung replay keeps its thread; the batch moves on without it
            pool.shutdown(wait=False)

    def sync_all_pending_operations(
        self,
        business_id: int,
        executor: Executor,
        sync_type: SyncType = SyncType.AUTOMATIC,
    ) -> BatchSyncResult:
        """Replay every pending operation of a business, oldest first.

        Per-operation errors are recorded on the operation and never abort
        the rest of the batch.

        Args:
            business_id: Business whose queue is replayed.
            executor: Callable performing the actual replay.
            sync_type: What triggered the sync (recorded in history).

        Returns:
            Tally of the batch.
        """
        logger.info("Syncing all pending operations for business %d", business_id)
        batch_started = time.monotonic()
        batch_id = uuid.uuid4().hex
        released = self.release_stale_operations(business_id, sync_type)

        operations = self._db.list_operations(
            business_id,
            status=OperationStatus.PENDING.value,
            limit=self._batch_limit,
        )
        result = BatchSyncResult(total=len(operations), batch_id=batch_id, released=released)

        for operation in operations:
            claimed = None
            try:
                claimed = self._lifecycle.claim(operation, batch_id)
                if claimed is None:
                    result.skipped += 1
                    continue

                started_at = utcnow()
                started = time.monotonic()
                try:
                    response = self._execute(executor, claimed)
                except Exception as e:
                    error = to_executor_error(e)
                    logger.error("Failed to sync operation %d: %s", claimed.id, error)
                    self._record_failure(
                        claimed, error, sync_type, started_at, _elapsed_ms(started)
                    )
                    result.failed += 1
                    continue

                outcome = self._apply_response(
                    claimed, response, sync_type, started_at, _elapsed_ms(started)
                )
                if outcome.is_conflict:
                    result.conflict += 1
                else:
                    result.success += 1
            except Exception as e:
                logger.exception("Error processing operation %d", operation.id)
                result.failed += 1
                result.errors.append(f"{operation.id}: {e}")
                if claimed is not None:
                    self._release(claimed, ServerError(f"Sync aborted: {e}"), sync_type)

        result.duration_ms = _elapsed_ms(batch_started)
        logger.info(
            "Batch sync completed for business %d: %d success, %d failed, "
            "%d conflict, %d total in %dms",
            business_id,
            result.success,
            result.failed,
            result.conflict,
            result.total,
            result.duration_ms,
        )
        return result
