"""Status queries, history, config access and retention cleanup."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from ledgersync.core.types import OperationStatus
from ledgersync.server.models import CONFIG_UPDATABLE_FIELDS, utcnow
from ledgersync.sync.resolver import parse_strategy
from ledgersync.sync.types import SyncStatusSummary, ValidationError

if TYPE_CHECKING:
    from ledgersync.server.database import Database
    from ledgersync.server.models import OfflineConfig, OfflineOperation, SyncHistory

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 7
DEFAULT_HISTORY_LIMIT = 10


class MaintenanceService:
    """Read-side queries and housekeeping for one database."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get_sync_status(self, business_id: int) -> SyncStatusSummary:
        """Count operations per status and report the last successful sync."""
        counts = self._db.count_by_status(business_id)
        return SyncStatusSummary(
            pending=counts[OperationStatus.PENDING.value],
            syncing=counts[OperationStatus.SYNCING.value],
            synced=counts[OperationStatus.SYNCED.value],
            conflicts=counts[OperationStatus.CONFLICT.value],
            failed=counts[OperationStatus.FAILED.value],
            last_sync=self._db.get_latest_synced_at(business_id),
        )

    def get_pending_operations(
        self,
        business_id: int,
        status: OperationStatus | str | None = OperationStatus.PENDING,
        limit: int = 100,
        offset: int = 0,
    ) -> list[OfflineOperation]:
        """List a business's operations in one status, oldest first."""
        if status is not None:
            try:
                status = OperationStatus(status).value
            except ValueError as e:
                raise ValidationError(f"Invalid status: {status}") from e
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        return self._db.list_operations(business_id, status=status, limit=limit, offset=offset)

    def clear_synced_operations(
        self, business_id: int, older_than_days: int = DEFAULT_RETENTION_DAYS
    ) -> int:
        """Delete synced operations older than the retention window.

        Only status=synced rows are eligible; pending, conflict and failed rows
        always stay until someone acts on them.

        Args:
            business_id: Business to clean up.
            older_than_days: Delete rows synced at least this many days ago.

        Returns:
            Number of deleted operations.
        """
        if older_than_days < 0:
            raise ValidationError("older_than_days must be non-negative")
        cutoff = utcnow() - timedelta(days=older_than_days)
        deleted = self._db.delete_synced_before(business_id, cutoff)
        if deleted > 0:
            logger.info(
                "Cleared %d synced operations for business %d (older than %d days)",
                deleted,
                business_id,
                older_than_days,
            )
        else:
            logger.debug(
                "Cleanup: no synced operations older than %d days for business %d",
                older_than_days,
                business_id,
            )
        return deleted

    def get_offline_config(self, business_id: int) -> OfflineConfig | None:
        """Get a business's offline config, None if it was never stored."""
        return self._db.get_config(business_id)

    def update_offline_config(self, business_id: int, updates: dict[str, Any]) -> OfflineConfig:
        """Merge updates into a business's offline config.

        Raises:
            ValidationError: On unknown keys or out-of-range values.
            InvalidStrategyError: If default_conflict_strategy is not recognized.
        """
        unknown = set(updates) - CONFIG_UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown config fields: {', '.join(sorted(unknown))}")

        values = dict(updates)
        if "default_conflict_strategy" in values:
            values["default_conflict_strategy"] = parse_strategy(
                values["default_conflict_strategy"]
            ).value
        for field_name in ("sync_interval_minutes", "max_queue_size"):
            if field_name in values and values[field_name] < 1:
                raise ValidationError(f"{field_name} must be at least 1")
        if values.get("retry_delay_seconds", 0) < 0:
            raise ValidationError("retry_delay_seconds must be non-negative")

        config = self._db.upsert_config(business_id, values)
        logger.info("Offline config updated for business %d", business_id)
        return config

    def get_sync_history(
        self, queue_id: int, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[SyncHistory]:
        """Most recent sync attempts of an operation, newest first."""
        return self._db.list_history(queue_id, limit=limit)
