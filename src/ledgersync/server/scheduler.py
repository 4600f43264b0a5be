"""Scheduler for automatic sync and maintenance tasks.

This module provides:
- Periodic auto-sync of businesses with pending operations, honoring each
  business's auto_sync_enabled flag and sync_interval_minutes
- Automatic daily retention cleanup of synced operations at 3:00 AM
- Manual cleanup function for CLI/API usage
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ledgersync.core.types import OperationStatus, SyncType
from ledgersync.server.models import default_config, utcnow
from ledgersync.sync.maintenance import DEFAULT_RETENTION_DAYS, MaintenanceService

if TYPE_CHECKING:
    from ledgersync.server.database import Database
    from ledgersync.sync.orchestrator import SyncOrchestrator
    from ledgersync.sync.types import BatchSyncResult, Executor

logger = logging.getLogger(__name__)


def cleanup_all_businesses(db: Database, older_than_days: int = DEFAULT_RETENTION_DAYS) -> int:
    """Clear old synced operations of every business.

    Args:
        db: Database instance.
        older_than_days: Delete rows synced at least this many days ago.

    Returns:
        Total number of deleted operations.
    """
    maintenance = MaintenanceService(db)
    total = 0
    for business_id in db.list_businesses(OperationStatus.SYNCED.value):
        total += maintenance.clear_synced_operations(business_id, older_than_days)

    if total > 0:
        logger.info("Retention cleanup completed: %d synced operations deleted", total)
    else:
        logger.debug("Retention cleanup: no synced operations older than %d days", older_than_days)
    return total


class AutoSyncScheduler:
    """Scheduler for automatic sync and maintenance tasks.

    Runs:
    - Auto-sync check every minute (only when an executor is configured)
    - Retention cleanup daily at the configured time
    """

    def __init__(
        self,
        db: Database,
        orchestrator: SyncOrchestrator,
        executor: Executor | None = None,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        hour: int = 3,
        minute: int = 0,
    ) -> None:
        """Initialize the scheduler.

        Args:
            db: Database instance.
            orchestrator: Orchestrator used for the automatic batches.
            executor: Replay executor (auto-sync is disabled without one).
            retention_days: Number of days to retain synced operations.
            hour: Hour to run the cleanup job (0-23).
            minute: Minute to run the cleanup job (0-59).
        """
        self._db = db
        self._orchestrator = orchestrator
        self._executor = executor
        self._retention_days = retention_days
        self._hour = hour
        self._minute = minute
        self._last_sync: dict[int, datetime] = {}
        self._scheduler: BackgroundScheduler | None = None

    def due_businesses(self, now: datetime | None = None) -> list[int]:
        """Businesses with pending work whose sync interval has elapsed.

        Businesses whose queue has drained are forgotten, so their next
        operation is synced on the following pass.
        """
        now = now or utcnow()
        configs = {config.business_id: config for config in self._db.list_configs()}
        pending = self._db.list_businesses(OperationStatus.PENDING.value)

        for business_id in set(self._last_sync).difference(pending):
            del self._last_sync[business_id]

        due = []
        for business_id in pending:
            config = configs.get(business_id) or default_config(business_id)
            if not config.auto_sync_enabled:
                continue
            last = self._last_sync.get(business_id)
            if last is None or now - last >= timedelta(minutes=config.sync_interval_minutes):
                due.append(business_id)
        return due

    def sync_now(self, now: datetime | None = None) -> dict[int, BatchSyncResult]:
        """Run one auto-sync pass immediately.

        Returns:
            Batch result per synced business.
        """
        if self._executor is None:
            logger.debug("Auto-sync skipped: no executor configured")
            return {}

        now = now or utcnow()
        results: dict[int, BatchSyncResult] = {}
        for business_id in self.due_businesses(now):
            self._last_sync[business_id] = now
            try:
                results[business_id] = self._orchestrator.sync_all_pending_operations(
                    business_id, self._executor, SyncType.AUTOMATIC
                )
            except Exception:
                logger.exception("Error during auto-sync of business %d", business_id)
        return results

    def _sync_job(self) -> None:
        """Job function for the periodic auto-sync."""
        try:
            results = self.sync_now()
            if results:
                logger.info("Auto-sync ran for %d businesses", len(results))
        except Exception:
            logger.exception("Error during scheduled auto-sync")

    def _cleanup_job(self) -> None:
        """Job function for scheduled retention cleanup."""
        logger.info(
            "Starting scheduled retention cleanup (retention: %d days)", self._retention_days
        )
        try:
            cleanup_all_businesses(self._db, self._retention_days)
        except Exception:
            logger.exception("Error during scheduled retention cleanup")

    @property
    def running(self) -> bool:
        """Check if the scheduler is started."""
        return self._scheduler is not None

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()

        if self._executor is not None:
            self._scheduler.add_job(
                self._sync_job,
                trigger=CronTrigger(minute="*"),
                id="auto_sync",
                name="Periodic auto-sync",
                replace_existing=True,
            )

        self._scheduler.add_job(
            self._cleanup_job,
            trigger=CronTrigger(hour=self._hour, minute=self._minute),
            id="retention_cleanup",
            name="Daily retention cleanup",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            "Sync scheduler started (auto-sync %s, cleanup daily at %02d:%02d, retention: %d days)",
            "on" if self._executor is not None else "off",
            self._hour,
            self._minute,
            self._retention_days,
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Sync scheduler stopped")

    def run_now(self) -> int:
        """Run the retention cleanup immediately (manual trigger).

        Returns:
            Number of synced operations deleted.
        """
        return cleanup_all_businesses(self._db, self._retention_days)
