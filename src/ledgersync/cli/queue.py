"""Queue administration commands for ledgersync CLI.

Commands:
- status: Show sync status counts of a business
- sync: Replay a business's pending operations
- retry: Re-queue failed operations with retries left
- reset: Grant an exhausted operation additional attempts
- resolve: Resolve a conflicted operation
- cleanup: Delete old synced operations
- history: Show the sync attempts of an operation
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any, NoReturn

import click

if TYPE_CHECKING:
    from ledgersync.core.config import EngineSettings
    from ledgersync.server.database import Database


def db_path_option(func: Callable[..., Any]) -> Callable[..., Any]:
    """Add the --db-path option to a command."""
    return click.option(
        "--db-path",
        type=click.Path(),
        default=None,
        help="Path to database file (default: LEDGERSYNC_DB_PATH or ./ledgersync.db).",
    )(func)


def business_option(func: Callable[..., Any]) -> Callable[..., Any]:
    """Add the required --business-id option to a command."""
    return click.option(
        "--business-id", "-b", type=int, required=True, help="Business to operate on."
    )(func)


def _load_settings(db_path: str | None) -> EngineSettings:
    from ledgersync.core.config import EngineSettings

    settings = EngineSettings.from_env()
    if db_path:
        settings.db_path = Path(db_path)
    return settings


def _open_database(settings: EngineSettings) -> Database:
    """Open an existing database or exit with an error."""
    from ledgersync.server.database import Database

    if not settings.db_path.exists():
        click.echo(f"Error: Database not found: {settings.db_path}", err=True)
        click.echo("Make sure the server has been run at least once.", err=True)
        sys.exit(1)
    return Database(settings.db_path)


def _fail(error: Exception) -> NoReturn:
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


@click.command()
@business_option
@db_path_option
def status(business_id: int, db_path: str | None) -> None:
    """Show sync status counts of a business."""
    from ledgersync.sync.maintenance import MaintenanceService

    db = _open_database(_load_settings(db_path))
    try:
        summary = MaintenanceService(db).get_sync_status(business_id)
    finally:
        db.close()

    click.echo(f"Business {business_id}:")
    click.echo(f"  Pending:   {summary.pending}")
    click.echo(f"  Syncing:   {summary.syncing}")
    click.echo(f"  Synced:    {summary.synced}")
    click.echo(f"  Conflicts: {summary.conflicts}")
    click.echo(f"  Failed:    {summary.failed}")
    click.echo(f"  Total:     {summary.total}")
    last_sync = summary.last_sync.isoformat() if summary.last_sync else "never"
    click.echo(f"  Last sync: {last_sync}")


@click.command()
@business_option
@db_path_option
@click.option(
    "--replay-url",
    default=None,
    help="Backend base URL to replay against (default: LEDGERSYNC_REPLAY_URL).",
)
def sync(business_id: int, db_path: str | None, replay_url: str | None) -> None:
    """Replay every pending operation of a business.

    Operations are replayed oldest first against the backend. Failures are
    recorded on each operation and retried by later runs.

    Examples:

        ledgersync sync -b 42 --replay-url https://api.example.com
    """
    from ledgersync.core.types import SyncType
    from ledgersync.sync.executor import HttpReplayExecutor
    from ledgersync.sync.lifecycle import LifecycleManager
    from ledgersync.sync.orchestrator import SyncOrchestrator

    settings = _load_settings(db_path)
    base_url = replay_url or settings.replay_url
    if not base_url:
        click.echo("Error: No replay URL (use --replay-url or LEDGERSYNC_REPLAY_URL).", err=True)
        sys.exit(1)

    db = _open_database(settings)
    try:
        orchestrator = SyncOrchestrator(
            db,
            lifecycle=LifecycleManager(db, max_retries=settings.max_retries),
            executor_timeout=settings.executor_timeout,
            batch_limit=settings.batch_limit,
            stale_after_minutes=settings.stale_after_minutes,
        )
        with HttpReplayExecutor(base_url, timeout=settings.executor_timeout) as executor:
            result = orchestrator.sync_all_pending_operations(
                business_id, executor, SyncType.MANUAL
            )
    finally:
        db.close()

    click.echo(
        f"Synced {result.success}/{result.total} operations "
        f"({result.failed} failed, {result.conflict} conflicts) in {result.duration_ms}ms."
    )
    if result.released:
        click.echo(f"Released {result.released} interrupted operations back to the queue.")


@click.command()
@business_option
@db_path_option
def retry(business_id: int, db_path: str | None) -> None:
    """Re-queue failed operations that still have retries left."""
    from ledgersync.sync.retry import RetryManager

    db = _open_database(_load_settings(db_path))
    try:
        results = RetryManager(db).retry_failed_operations(business_id)
    finally:
        db.close()

    if not results:
        click.echo("No retryable failed operations.")
        return
    for result in results:
        if result.error:
            click.echo(f"  #{result.id}: {result.status} ({result.error})")
        else:
            click.echo(f"  #{result.id}: {result.status}")
    retried = sum(1 for r in results if r.status == "retrying")
    click.echo(f"Re-queued {retried} of {len(results)} failed operations.")


@click.command()
@click.argument("queue_id", type=int)
@click.option(
    "--extra-attempts",
    "-n",
    type=int,
    default=1,
    show_default=True,
    help="Attempts granted on top of the ones already used.",
)
@db_path_option
def reset(queue_id: int, extra_attempts: int, db_path: str | None) -> None:
    """Grant an exhausted failed operation additional attempts."""
    from ledgersync.sync.retry import RetryManager
    from ledgersync.sync.types import SyncError

    db = _open_database(_load_settings(db_path))
    try:
        operation = RetryManager(db).reset_exhausted_operation(queue_id, extra_attempts)
    except SyncError as e:
        _fail(e)
    finally:
        db.close()

    click.echo(
        f"Operation #{queue_id} re-queued "
        f"(attempts {operation.sync_attempts}/{operation.max_retries})."
    )


@click.command()
@click.argument("queue_id", type=int)
@click.option(
    "--strategy",
    "-s",
    type=click.Choice(["client_wins", "server_wins", "merge", "manual"]),
    default=None,
    help="Resolution strategy (default: the business's configured strategy).",
)
@db_path_option
def resolve(queue_id: int, strategy: str | None, db_path: str | None) -> None:
    """Resolve a conflicted operation."""
    from ledgersync.sync.resolver import ConflictResolver
    from ledgersync.sync.types import SyncError

    db = _open_database(_load_settings(db_path))
    try:
        resolver = ConflictResolver(db)
        if strategy is None:
            operation = resolver.resolve_with_default(queue_id)
        else:
            operation = resolver.resolve_conflict(queue_id, strategy)
    except SyncError as e:
        _fail(e)
    finally:
        db.close()

    click.echo(
        f"Operation #{queue_id} resolved with {operation.resolution_strategy} "
        f"-> {operation.status}."
    )


@click.command()
@business_option
@click.option(
    "--older-than-days",
    "-d",
    type=int,
    default=None,
    help="Delete operations synced more than N days ago (default: LEDGERSYNC_RETENTION_DAYS).",
)
@db_path_option
def cleanup(business_id: int, older_than_days: int | None, db_path: str | None) -> None:
    """Delete synced operations older than the retention window.

    Pending, conflicted and failed operations are never deleted.
    """
    from ledgersync.sync.maintenance import MaintenanceService
    from ledgersync.sync.types import SyncError

    settings = _load_settings(db_path)
    days = older_than_days if older_than_days is not None else settings.retention_days

    db = _open_database(settings)
    try:
        deleted = MaintenanceService(db).clear_synced_operations(business_id, days)
    except SyncError as e:
        _fail(e)
    finally:
        db.close()

    if deleted > 0:
        click.echo(f"Deleted {deleted} synced operations older than {days} days.")
    else:
        click.echo("No operations to delete.")


@click.command()
@click.argument("queue_id", type=int)
@click.option("--limit", "-l", type=int, default=10, show_default=True, help="Entries to show.")
@db_path_option
def history(queue_id: int, limit: int, db_path: str | None) -> None:
    """Show the most recent sync attempts of an operation."""
    from ledgersync.sync.maintenance import MaintenanceService

    db = _open_database(_load_settings(db_path))
    try:
        entries = MaintenanceService(db).get_sync_history(queue_id, limit)
    finally:
        db.close()

    if not entries:
        click.echo(f"No sync history for operation #{queue_id}.")
        return
    for entry in entries:
        line = f"{entry.started_at.isoformat()}  {entry.sync_type:<9}  {entry.status}"
        if entry.error_message:
            line += f"  {entry.error_message}"
        click.echo(line)
