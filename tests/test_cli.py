"""Tests for CLI commands - serve, status, sync, retry, reset, resolve, cleanup, history."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from ledgersync.cli import cli
from ledgersync.server.database import Database
from ledgersync.server.models import OfflineOperation, utcnow
from ledgersync.sync.lifecycle import LifecycleManager
from ledgersync.sync.orchestrator import SyncOrchestrator

QueueOp = Callable[..., OfflineOperation]

DUPLICATE = {"success": False, "error": {"code": "DUPLICATE_OPERATION"}}


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def db_path(tmp_path: Path, db: Database) -> str:
    """Path of the test database, created by the db fixture."""
    return str(tmp_path / "test.db")


class TestServeCommand:
    """Tests for 'ledgersync serve' command."""

    @patch("uvicorn.run")
    def test_serve(self, mock_run: MagicMock, runner: CliRunner) -> None:
        """Should run the app factory with uvicorn."""
        result = runner.invoke(cli, ["serve", "--host", "0.0.0.0", "-p", "9000"])

        assert result.exit_code == 0
        assert "http://0.0.0.0:9000" in result.output
        mock_run.assert_called_once_with(
            "ledgersync.server.app:app_factory",
            factory=True,
            host="0.0.0.0",
            port=9000,
            reload=False,
        )


class TestStatusCommand:
    """Tests for 'ledgersync status' command."""

    def test_status(self, runner: CliRunner, db_path: str, queue_op: QueueOp) -> None:
        """Should print the counts per status."""
        queue_op()
        queue_op()

        result = runner.invoke(cli, ["status", "-b", "1", "--db-path", db_path])

        assert result.exit_code == 0
        assert "Business 1:" in result.output
        assert "Pending:   2" in result.output
        assert "Last sync: never" in result.output

    def test_missing_database(self, runner: CliRunner, tmp_path: Path) -> None:
        """Should fail when the database file does not exist."""
        missing = tmp_path / "nope.db"

        result = runner.invoke(cli, ["status", "-b", "1", "--db-path", str(missing)])

        assert result.exit_code == 1
        assert "Database not found" in result.output
        assert not missing.exists()

    def test_business_required(self, runner: CliRunner, db_path: str) -> None:
        """Should reject a call without --business-id."""
        result = runner.invoke(cli, ["status", "--db-path", db_path])
        assert result.exit_code == 2


class TestSyncCommand:
    """Tests for 'ledgersync sync' command."""

    def test_requires_replay_url(
        self, runner: CliRunner, db_path: str, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Should fail without a replay URL."""
        monkeypatch.delenv("LEDGERSYNC_REPLAY_URL", raising=False)

        result = runner.invoke(cli, ["sync", "-b", "1", "--db-path", db_path])

        assert result.exit_code == 1
        assert "No replay URL" in result.output

    @patch("ledgersync.sync.executor.HttpReplayExecutor")
    def test_sync(
        self,
        mock_executor_cls: MagicMock,
        runner: CliRunner,
        db: Database,
        db_path: str,
        queue_op: QueueOp,
    ) -> None:
        """Should replay pending operations and print the tally."""
        ops = [queue_op(), queue_op()]

        def replay(operation: OfflineOperation) -> dict:
            if operation.id == ops[1].id:
                return DUPLICATE
            return {"data": {"id": 10}}

        mock_executor_cls.return_value.__enter__.return_value = replay

        result = runner.invoke(
            cli,
            ["sync", "-b", "1", "--db-path", db_path, "--replay-url", "http://backend.test"],
        )

        assert result.exit_code == 0, result.output
        assert "Synced 1/2 operations (0 failed, 1 conflicts)" in result.output
        assert mock_executor_cls.call_args.args[0] == "http://backend.test"
        assert db.get_operation(ops[0].id).status == "synced"
        assert db.get_operation(ops[1].id).status == "conflict"


class TestRetryCommands:
    """Tests for 'ledgersync retry' and 'ledgersync reset' commands."""

    def test_retry(
        self, runner: CliRunner, db_path: str, queue_op: QueueOp, set_columns: Callable
    ) -> None:
        """Should re-queue retryable failed operations."""
        op = queue_op()
        set_columns(op.id, status="failed", sync_attempts=1)

        result = runner.invoke(cli, ["retry", "-b", "1", "--db-path", db_path])

        assert result.exit_code == 0
        assert f"#{op.id}: retrying" in result.output
        assert "Re-queued 1 of 1 failed operations." in result.output

    def test_retry_nothing(self, runner: CliRunner, db_path: str) -> None:
        """Should say so when nothing is retryable."""
        result = runner.invoke(cli, ["retry", "-b", "1", "--db-path", db_path])

        assert result.exit_code == 0
        assert "No retryable failed operations." in result.output

    def test_reset(
        self, runner: CliRunner, db_path: str, queue_op: QueueOp, set_columns: Callable
    ) -> None:
        """Should grant extra attempts to an exhausted operation."""
        op = queue_op()
        set_columns(op.id, status="failed", sync_attempts=3)

        result = runner.invoke(cli, ["reset", str(op.id), "-n", "2", "--db-path", db_path])

        assert result.exit_code == 0
        assert f"Operation #{op.id} re-queued (attempts 3/5)." in result.output

    def test_reset_pending_fails(self, runner: CliRunner, db_path: str, queue_op: QueueOp) -> None:
        """Should refuse to reset an operation that is not failed."""
        op = queue_op()

        result = runner.invoke(cli, ["reset", str(op.id), "--db-path", db_path])

        assert result.exit_code == 1
        assert "Error:" in result.output


class TestResolveCommand:
    """Tests for 'ledgersync resolve' command."""

    @pytest.fixture
    def conflicted(
        self, db: Database, lifecycle: LifecycleManager, queue_op: QueueOp
    ) -> OfflineOperation:
        """An operation parked as a duplicate conflict."""
        op = queue_op()
        SyncOrchestrator(db, lifecycle=lifecycle).sync_operation(op.id, DUPLICATE)
        return op

    def test_resolve(
        self, runner: CliRunner, db_path: str, conflicted: OfflineOperation
    ) -> None:
        """Should apply the given strategy."""
        result = runner.invoke(
            cli, ["resolve", str(conflicted.id), "-s", "server_wins", "--db-path", db_path]
        )

        assert result.exit_code == 0
        assert f"Operation #{conflicted.id} resolved with server_wins -> synced." in result.output

    def test_resolve_default(
        self, runner: CliRunner, db_path: str, conflicted: OfflineOperation
    ) -> None:
        """Should use the business default strategy."""
        result = runner.invoke(cli, ["resolve", str(conflicted.id), "--db-path", db_path])

        assert result.exit_code == 0
        assert "resolved with client_wins -> pending." in result.output

    def test_invalid_strategy(
        self, runner: CliRunner, db_path: str, conflicted: OfflineOperation
    ) -> None:
        """Should reject unknown strategies at the option level."""
        result = runner.invoke(
            cli, ["resolve", str(conflicted.id), "-s", "newest", "--db-path", db_path]
        )
        assert result.exit_code == 2

    def test_unknown_operation(self, runner: CliRunner, db_path: str) -> None:
        """Should fail for an unknown operation."""
        result = runner.invoke(cli, ["resolve", "999", "-s", "merge", "--db-path", db_path])

        assert result.exit_code == 1
        assert "Operation not found: 999" in result.output


class TestCleanupCommand:
    """Tests for 'ledgersync cleanup' command."""

    def test_cleanup(
        self,
        runner: CliRunner,
        db: Database,
        db_path: str,
        queue_op: QueueOp,
        set_columns: Callable,
    ) -> None:
        """Should delete synced operations past the window."""
        old = queue_op()
        set_columns(old.id, status="synced", synced_at=utcnow() - timedelta(days=10))

        result = runner.invoke(cli, ["cleanup", "-b", "1", "-d", "7", "--db-path", db_path])

        assert result.exit_code == 0
        assert "Deleted 1 synced operations older than 7 days." in result.output
        assert db.get_operation(old.id) is None

    def test_cleanup_nothing(self, runner: CliRunner, db_path: str, queue_op: QueueOp) -> None:
        """Should report when nothing is deleted."""
        queue_op()

        result = runner.invoke(cli, ["cleanup", "-b", "1", "--db-path", db_path])

        assert result.exit_code == 0
        assert "No operations to delete." in result.output

    def test_negative_days(self, runner: CliRunner, db_path: str) -> None:
        """Should fail for a negative window."""
        result = runner.invoke(
            cli, ["cleanup", "-b", "1", "--older-than-days=-1", "--db-path", db_path]
        )
        assert result.exit_code == 1


class TestHistoryCommand:
    """Tests for 'ledgersync history' command."""

    def test_history(
        self,
        runner: CliRunner,
        db: Database,
        lifecycle: LifecycleManager,
        db_path: str,
        queue_op: QueueOp,
    ) -> None:
        """Should print one line per attempt."""
        op = queue_op()
        SyncOrchestrator(db, lifecycle=lifecycle).sync_operation(op.id, DUPLICATE)

        result = runner.invoke(cli, ["history", str(op.id), "--db-path", db_path])

        assert result.exit_code == 0
        assert "manual" in result.output
        assert "Conflict: duplicate" in result.output

    def test_no_history(self, runner: CliRunner, db_path: str) -> None:
        """Should say so when an operation has no attempts."""
        result = runner.invoke(cli, ["history", "5", "--db-path", db_path])

        assert result.exit_code == 0
        assert "No sync history for operation #5." in result.output
