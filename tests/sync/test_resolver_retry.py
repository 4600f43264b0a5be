"""Tests for ConflictResolver and RetryManager."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from ledgersync.server.database import Database
from ledgersync.server.models import OfflineOperation
from ledgersync.sync.lifecycle import LifecycleManager
from ledgersync.sync.orchestrator import SyncOrchestrator
from ledgersync.sync.resolver import ConflictResolver, parse_strategy
from ledgersync.sync.retry import RetryManager
from ledgersync.sync.types import (
    InvalidStrategyError,
    InvalidTransitionError,
    OperationNotFoundError,
    ValidationError,
)

QueueOp = Callable[..., OfflineOperation]

DUPLICATE = {"success": False, "error": {"code": "DUPLICATE_OPERATION"}}


def _ts(day: str) -> datetime:
    return datetime.fromisoformat(day).replace(tzinfo=UTC)


@pytest.fixture
def resolver(db: Database, lifecycle: LifecycleManager) -> ConflictResolver:
    """Conflict resolver sharing the test lifecycle."""
    return ConflictResolver(db, lifecycle=lifecycle)


@pytest.fixture
def retry_manager(db: Database, lifecycle: LifecycleManager) -> RetryManager:
    """Retry manager sharing the test lifecycle."""
    return RetryManager(db, lifecycle=lifecycle)


@pytest.fixture
def conflicted(db: Database, lifecycle: LifecycleManager, queue_op: QueueOp) -> OfflineOperation:
    """An operation parked as a duplicate conflict."""
    op = queue_op()
    SyncOrchestrator(db, lifecycle=lifecycle).sync_operation(op.id, DUPLICATE)
    return lifecycle.get(op.id)


class TestParseStrategy:
    """Tests for parse_strategy."""

    def test_valid(self) -> None:
        """Should accept every declared strategy."""
        for value in ("client_wins", "server_wins", "merge", "manual"):
            assert parse_strategy(value).value == value

    def test_invalid(self) -> None:
        """Should raise InvalidStrategyError, a ValidationError."""
        with pytest.raises(InvalidStrategyError) as exc_info:
            parse_strategy("last_write_wins")
        assert isinstance(exc_info.value, ValidationError)


class TestResolveConflict:
    """Tests for ConflictResolver.resolve_conflict."""

    def test_server_wins(self, resolver: ConflictResolver, conflicted: OfflineOperation) -> None:
        """Should close the conflict as synced."""
        op = resolver.resolve_conflict(conflicted.id, "server_wins")
        assert op.status == "synced"
        assert op.resolution_strategy == "server_wins"
        assert op.resolved_at is not None

    def test_client_wins_requeues(
        self, resolver: ConflictResolver, conflicted: OfflineOperation
    ) -> None:
        """Should put the operation back in the pending queue."""
        op = resolver.resolve_conflict(conflicted.id, "client_wins")
        assert op.status == "pending"
        assert op.sync_attempts == conflicted.sync_attempts

    def test_merge_is_policy_only(
        self, resolver: ConflictResolver, conflicted: OfflineOperation
    ) -> None:
        """Should close the conflict without touching the payload."""
        op = resolver.resolve_conflict(conflicted.id, "merge")
        assert op.status == "synced"
        assert op.request_body == conflicted.request_body

    def test_invalid_strategy_before_any_read(
        self, db: Database, resolver: ConflictResolver, conflicted: OfflineOperation
    ) -> None:
        """Should reject an unknown strategy without touching storage."""
        with patch.object(db, "get_operation") as get_operation:
            with pytest.raises(InvalidStrategyError):
                resolver.resolve_conflict(conflicted.id, "newest")
            get_operation.assert_not_called()
        assert db.get_operation(conflicted.id).status == "conflict"

    def test_not_found(self, resolver: ConflictResolver) -> None:
        """Should raise OperationNotFoundError."""
        with pytest.raises(OperationNotFoundError):
            resolver.resolve_conflict(12345, "server_wins")

    def test_not_in_conflict(self, resolver: ConflictResolver, queue_op: QueueOp) -> None:
        """Should refuse to resolve a pending operation."""
        op = queue_op()
        with pytest.raises(InvalidTransitionError):
            resolver.resolve_conflict(op.id, "server_wins")

    def test_resolve_twice(self, resolver: ConflictResolver, conflicted: OfflineOperation) -> None:
        """Should refuse a second resolution."""
        resolver.resolve_conflict(conflicted.id, "server_wins")
        with pytest.raises(InvalidTransitionError):
            resolver.resolve_conflict(conflicted.id, "client_wins")


class TestResolveWithDefault:
    """Tests for ConflictResolver.resolve_with_default."""

    def test_without_config(self, resolver: ConflictResolver, conflicted: OfflineOperation) -> None:
        """Should fall back to client_wins."""
        op = resolver.resolve_with_default(conflicted.id)
        assert op.status == "pending"
        assert op.resolution_strategy == "client_wins"

    def test_uses_business_default(
        self, db: Database, resolver: ConflictResolver, conflicted: OfflineOperation
    ) -> None:
        """Should use the configured default strategy."""
        db.upsert_config(conflicted.business_id, {"default_conflict_strategy": "server_wins"})
        op = resolver.resolve_with_default(conflicted.id)
        assert op.status == "synced"
        assert op.resolution_strategy == "server_wins"


class TestRetryFailedOperations:
    """Tests for RetryManager.retry_failed_operations."""

    def test_retries_only_below_ceiling(
        self, db: Database, retry_manager: RetryManager, queue_op: QueueOp, set_columns: Callable
    ) -> None:
        """Should reset retryable operations and skip exhausted ones."""
        retryable = queue_op()
        exhausted = queue_op()
        set_columns(retryable.id, status="failed", sync_attempts=1, last_error="down")
        set_columns(exhausted.id, status="failed", sync_attempts=3, last_error="down")

        results = retry_manager.retry_failed_operations(1)

        assert [(r.id, r.status) for r in results] == [(retryable.id, "retrying")]
        op = db.get_operation(retryable.id)
        assert op.status == "pending"
        assert op.sync_attempts == 2
        assert op.last_error is None
        assert db.get_operation(exhausted.id).status == "failed"

    def test_ordered_by_failed_at(
        self, retry_manager: RetryManager, queue_op: QueueOp, set_columns: Callable
    ) -> None:
        """Should process the oldest failure first."""
        newer, older = queue_op(), queue_op()
        set_columns(newer.id, status="failed", sync_attempts=1, failed_at=_ts("2024-03-02"))
        set_columns(older.id, status="failed", sync_attempts=1, failed_at=_ts("2024-03-01"))

        results = retry_manager.retry_failed_operations(1)

        assert [r.id for r in results] == [older.id, newer.id]

    def test_error_does_not_abort(
        self,
        retry_manager: RetryManager,
        lifecycle: LifecycleManager,
        queue_op: QueueOp,
        set_columns: Callable,
    ) -> None:
        """Should report a per-operation error and continue."""
        first, second = queue_op(), queue_op()
        set_columns(first.id, status="failed", sync_attempts=1, failed_at=_ts("2024-03-01"))
        set_columns(second.id, status="failed", sync_attempts=1, failed_at=_ts("2024-03-02"))
        real_retry = lifecycle.retry

        def flaky_retry(operation: OfflineOperation) -> OfflineOperation:
            if operation.id == first.id:
                raise RuntimeError("database is locked")
            return real_retry(operation)

        with patch.object(lifecycle, "retry", side_effect=flaky_retry):
            results = retry_manager.retry_failed_operations(1)

        assert results[0].status == "error"
        assert results[0].error == "database is locked"
        assert results[1].status == "retrying"

    def test_nothing_to_retry(self, retry_manager: RetryManager) -> None:
        """Should return an empty list."""
        assert retry_manager.retry_failed_operations(1) == []


class TestResetExhaustedOperation:
    """Tests for RetryManager.reset_exhausted_operation."""

    def test_reclaims_exhausted(
        self, retry_manager: RetryManager, queue_op: QueueOp, set_columns: Callable
    ) -> None:
        """Should raise the ceiling without lowering attempts."""
        op = queue_op()
        set_columns(op.id, status="failed", sync_attempts=3, last_error="down")

        updated = retry_manager.reset_exhausted_operation(op.id, extra_attempts=2)

        assert updated.status == "pending"
        assert updated.sync_attempts == 3
        assert updated.max_retries == 5
        assert updated.last_error is None

    def test_rejects_non_failed(self, retry_manager: RetryManager, queue_op: QueueOp) -> None:
        """Should only reset failed operations."""
        op = queue_op()
        with pytest.raises(InvalidTransitionError):
            retry_manager.reset_exhausted_operation(op.id)

    def test_not_found(self, retry_manager: RetryManager) -> None:
        """Should raise OperationNotFoundError."""
        with pytest.raises(OperationNotFoundError):
            retry_manager.reset_exhausted_operation(77)
