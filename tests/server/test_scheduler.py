"""Tests for the auto-sync and retention scheduler."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from ledgersync.server.database import Database
from ledgersync.server.models import OfflineOperation, utcnow
from ledgersync.server.scheduler import AutoSyncScheduler, cleanup_all_businesses
from ledgersync.sync.lifecycle import LifecycleManager
from ledgersync.sync.orchestrator import SyncOrchestrator

QueueOp = Callable[..., OfflineOperation]


@pytest.fixture
def orchestrator(db: Database, lifecycle: LifecycleManager) -> SyncOrchestrator:
    """Orchestrator on the test database."""
    return SyncOrchestrator(db, lifecycle=lifecycle)


def ok_executor(operation: OfflineOperation) -> dict:
    """Executor that always succeeds."""
    return {"id": operation.id}


class TestCleanupAllBusinesses:
    """Tests for cleanup_all_businesses function."""

    def test_cleans_every_business(
        self, db: Database, queue_op: QueueOp, set_columns: Callable
    ) -> None:
        """Should delete old synced rows across businesses."""
        old = utcnow() - timedelta(days=10)
        first = queue_op(business_id=1)
        second = queue_op(business_id=2)
        recent = queue_op(business_id=2)
        set_columns(first.id, status="synced", synced_at=old)
        set_columns(second.id, status="synced", synced_at=old)
        set_columns(recent.id, status="synced", synced_at=utcnow())

        assert cleanup_all_businesses(db, 7) == 2
        assert db.get_operation(recent.id) is not None

    def test_nothing_to_clean(self, db: Database) -> None:
        """Should handle an empty queue gracefully."""
        assert cleanup_all_businesses(db) == 0


class TestDueBusinesses:
    """Tests for auto-sync selection."""

    def test_pending_businesses_due(
        self, db: Database, orchestrator: SyncOrchestrator, queue_op: QueueOp
    ) -> None:
        """Should select businesses with pending work, config or not."""
        queue_op(business_id=1)
        queue_op(business_id=2)
        db.upsert_config(2, {"sync_interval_minutes": 10})

        scheduler = AutoSyncScheduler(db, orchestrator, ok_executor)

        assert scheduler.due_businesses() == [1, 2]

    def test_auto_sync_disabled(
        self, db: Database, orchestrator: SyncOrchestrator, queue_op: QueueOp
    ) -> None:
        """Should skip businesses that turned auto-sync off."""
        queue_op(business_id=1)
        db.upsert_config(1, {"auto_sync_enabled": False})

        scheduler = AutoSyncScheduler(db, orchestrator, ok_executor)

        assert scheduler.due_businesses() == []

    def test_interval_honored(
        self, db: Database, orchestrator: SyncOrchestrator, queue_op: QueueOp
    ) -> None:
        """Should wait sync_interval_minutes between runs of a business."""
        db.upsert_config(1, {"sync_interval_minutes": 10})
        queue_op(business_id=1)
        scheduler = AutoSyncScheduler(db, orchestrator, ok_executor)
        start = utcnow()

        scheduler.sync_now(start)
        queue_op(business_id=1)

        assert scheduler.due_businesses(start + timedelta(minutes=5)) == []
        assert scheduler.due_businesses(start + timedelta(minutes=10)) == [1]

    def test_drained_businesses_forgotten(
        self, db: Database, orchestrator: SyncOrchestrator, queue_op: QueueOp
    ) -> None:
        """Should drop the last-sync time of businesses with nothing pending."""
        for business_id in range(1, 6):
            queue_op(business_id=business_id)
        scheduler = AutoSyncScheduler(db, orchestrator, ok_executor)

        scheduler.sync_now()
        assert sorted(scheduler._last_sync) == [1, 2, 3, 4, 5]

        queue_op(business_id=3)
        assert scheduler.due_businesses() == []
        assert list(scheduler._last_sync) == [3]


class TestSyncNow:
    """Tests for the auto-sync pass."""

    def test_syncs_due_businesses(
        self, db: Database, orchestrator: SyncOrchestrator, queue_op: QueueOp
    ) -> None:
        """Should replay pending operations as automatic syncs."""
        op = queue_op(business_id=4)
        scheduler = AutoSyncScheduler(db, orchestrator, ok_executor)

        results = scheduler.sync_now()

        assert results[4].success == 1
        assert db.get_operation(op.id).status == "synced"
        assert db.list_history(op.id)[0].sync_type == "automatic"

    def test_without_executor(
        self, db: Database, orchestrator: SyncOrchestrator, queue_op: QueueOp
    ) -> None:
        """Should do nothing without an executor."""
        op = queue_op()
        scheduler = AutoSyncScheduler(db, orchestrator)

        assert scheduler.sync_now() == {}
        assert db.get_operation(op.id).status == "pending"

    def test_one_business_failing_does_not_stop_others(
        self, db: Database, orchestrator: SyncOrchestrator, queue_op: QueueOp
    ) -> None:
        """Should log and continue when a batch raises."""
        queue_op(business_id=1)
        queue_op(business_id=2)
        scheduler = AutoSyncScheduler(db, orchestrator, ok_executor)
        real_sync = orchestrator.sync_all_pending_operations

        def flaky(business_id, executor, sync_type):
            if business_id == 1:
                raise RuntimeError("database is locked")
            return real_sync(business_id, executor, sync_type)

        with patch.object(orchestrator, "sync_all_pending_operations", side_effect=flaky):
            results = scheduler.sync_now()

        assert list(results) == [2]


class TestAutoSyncScheduler:
    """Tests for AutoSyncScheduler class."""

    def test_init_default_values(self, db: Database, orchestrator: SyncOrchestrator) -> None:
        """Should initialize with default values."""
        scheduler = AutoSyncScheduler(db, orchestrator)

        assert scheduler._retention_days == 7
        assert scheduler._hour == 3
        assert scheduler._minute == 0
        assert scheduler._scheduler is None
        assert not scheduler.running

    def test_start_registers_jobs(self, db: Database, orchestrator: SyncOrchestrator) -> None:
        """Should schedule auto-sync and cleanup when an executor is set."""
        scheduler = AutoSyncScheduler(db, orchestrator, ok_executor)
        scheduler.start()

        try:
            assert scheduler._scheduler is not None
            assert scheduler._scheduler.running
            job_ids = {job.id for job in scheduler._scheduler.get_jobs()}
            assert job_ids == {"auto_sync", "retention_cleanup"}
        finally:
            scheduler.stop()

    def test_cleanup_only_without_executor(
        self, db: Database, orchestrator: SyncOrchestrator
    ) -> None:
        """Should only schedule cleanup without an executor."""
        scheduler = AutoSyncScheduler(db, orchestrator)
        scheduler.start()

        try:
            job_ids = {job.id for job in scheduler._scheduler.get_jobs()}
            assert job_ids == {"retention_cleanup"}
        finally:
            scheduler.stop()

    def test_start_idempotent(self, db: Database, orchestrator: SyncOrchestrator) -> None:
        """Should be safe to call start() multiple times."""
        scheduler = AutoSyncScheduler(db, orchestrator)
        scheduler.start()
        sched1 = scheduler._scheduler
        scheduler.start()  # Second call should be ignored
        sched2 = scheduler._scheduler

        try:
            assert sched1 is sched2
        finally:
            scheduler.stop()

    def test_stop_stops_scheduler(self, db: Database, orchestrator: SyncOrchestrator) -> None:
        """Should stop scheduler on stop()."""
        scheduler = AutoSyncScheduler(db, orchestrator)
        scheduler.start()
        scheduler.stop()

        assert scheduler._scheduler is None

    def test_run_now(
        self,
        db: Database,
        orchestrator: SyncOrchestrator,
        queue_op: QueueOp,
        set_columns: Callable,
    ) -> None:
        """Should run the retention cleanup immediately."""
        op = queue_op()
        set_columns(op.id, status="synced", synced_at=utcnow() - timedelta(days=30))

        scheduler = AutoSyncScheduler(db, orchestrator, retention_days=7)

        assert scheduler.run_now() == 1

    @patch("ledgersync.server.scheduler.cleanup_all_businesses")
    def test_cleanup_job_handles_exception(
        self, mock_cleanup: MagicMock, db: Database, orchestrator: SyncOrchestrator
    ) -> None:
        """Should handle exceptions in the cleanup job gracefully."""
        mock_cleanup.side_effect = Exception("Test error")

        scheduler = AutoSyncScheduler(db, orchestrator)

        # Should not raise
        scheduler._cleanup_job()
        mock_cleanup.assert_called_once_with(db, 7)
