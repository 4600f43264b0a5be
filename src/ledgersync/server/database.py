"""Server database using SQLAlchemy with SQLite.

This module provides the three relations of the offline sync engine:
- Operation queue (insert, filtered select, guarded update, delete)
- Sync history log (append-only)
- Per-business offline config

Every method opens its own session and commits a single statement. No
transaction spans two methods, so a status update and the matching history
insert are independent writes.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, delete, func, or_, select, update
from sqlalchemy.orm import Session

from ledgersync.core.types import OperationStatus
from ledgersync.server.models import (
    Base,
    OfflineConfig,
    OfflineOperation,
    SyncHistory,
    utcnow,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

# Statuses that still occupy a slot in a business's offline queue
UNSYNCED_STATUSES: tuple[str, ...] = (
    OperationStatus.PENDING.value,
    OperationStatus.SYNCING.value,
    OperationStatus.CONFLICT.value,
    OperationStatus.FAILED.value,
)


class Database:
    """SQLAlchemy database for the offline queue.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # check_same_thread=False: the executor timeout and the scheduler use worker threads
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")

        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    def ping(self) -> bool:
        """Check that the database answers a trivial query."""
        with self._engine.connect() as conn:
            return conn.exec_driver_sql("SELECT 1").scalar() == 1

    # === Operation queue ===

    def insert_operation(self, **fields: Any) -> OfflineOperation:
        """Insert a new queued operation.

        Args:
            **fields: Column values for the new row.

        Returns:
            The created OfflineOperation, detached from its session.
        """
        with self._session() as session:
            operation = OfflineOperation(**fields)
            session.add(operation)
            session.commit()
            session.refresh(operation)
            session.expunge(operation)
            return operation

    def get_operation(self, queue_id: int) -> OfflineOperation | None:
        """Get a queued operation by ID.

        Args:
            queue_id: Operation row ID.

        Returns:
            OfflineOperation if found, None otherwise.
        """
        with self._session() as session:
            operation = session.get(OfflineOperation, queue_id)
            if operation:
                session.expunge(operation)
            return operation

    def list_operations(
        self,
        business_id: int,
        status: str | None = OperationStatus.PENDING.value,
        limit: int = 100,
        offset: int = 0,
    ) -> list[OfflineOperation]:
        """List operations of a business, oldest created first.

        Args:
            business_id: Owning business.
            status: Only return rows in this status (None = any status).
            limit: Maximum number of rows.
            offset: Number of rows to skip.

        Returns:
            Operations ordered by created_at, then id.
        """
        with self._session() as session:
            stmt = select(OfflineOperation).where(OfflineOperation.business_id == business_id)
            if status is not None:
                stmt = stmt.where(OfflineOperation.status == status)
            stmt = (
                stmt.order_by(OfflineOperation.created_at.asc(), OfflineOperation.id.asc())
                .limit(limit)
                .offset(offset)
            )
            operations = list(session.execute(stmt).scalars().all())
            for operation in operations:
                session.expunge(operation)
            return operations

    def list_retryable_failed(self, business_id: int) -> list[OfflineOperation]:
        """List failed operations that still have retries left.

        Args:
            business_id: Owning business.

        Returns:
            Failed operations with sync_attempts < max_retries, ordered by failed_at.
        """
        with self._session() as session:
            stmt = (
                select(OfflineOperation)
                .where(
                    OfflineOperation.business_id == business_id,
                    OfflineOperation.status == OperationStatus.FAILED.value,
                    OfflineOperation.sync_attempts < OfflineOperation.max_retries,
                )
                .order_by(OfflineOperation.failed_at.asc(), OfflineOperation.id.asc())
            )
            operations = list(session.execute(stmt).scalars().all())
            for operation in operations:
                session.expunge(operation)
            return operations

    def list_stale_syncing(self, business_id: int, cutoff: datetime) -> list[OfflineOperation]:
        """List operations left in syncing since before cutoff.

        Args:
            business_id: Owning business.
            cutoff: Claims at or before this instant are stale.

        Returns:
            Stale syncing operations, oldest created first.
        """
        with self._session() as session:
            stmt = (
                select(OfflineOperation)
                .where(
                    OfflineOperation.business_id == business_id,
                    OfflineOperation.status == OperationStatus.SYNCING.value,
                    or_(
                        OfflineOperation.claimed_at.is_(None),
                        OfflineOperation.claimed_at <= cutoff,
                    ),
                )
                .order_by(OfflineOperation.created_at.asc(), OfflineOperation.id.asc())
            )
            operations = list(session.execute(stmt).scalars().all())
            for operation in operations:
                session.expunge(operation)
            return operations

    def update_operation(
        self,
        queue_id: int,
        values: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> OfflineOperation | None:
        """Apply a guarded single-row update.

        Args:
            queue_id: Operation row ID.
            values: Column values to set.
            expected: Column values the row must still hold (compare-and-swap).

        Returns:
            The updated operation, or None if no row matched.
        """
        with self._session() as session:
            stmt = update(OfflineOperation).where(OfflineOperation.id == queue_id)
            for column, value in (expected or {}).items():
                stmt = stmt.where(getattr(OfflineOperation, column) == value)
            result = session.execute(stmt.values(**values))
            session.commit()
            if result.rowcount != 1:
                return None

            operation = session.get(OfflineOperation, queue_id)
            if operation:
                session.expunge(operation)
            return operation

    def count_by_status(self, business_id: int) -> dict[str, int]:
        """Count operations of a business grouped by status.

        Args:
            business_id: Owning business.

        Returns:
            Dict mapping every status value to its row count.
        """
        with self._session() as session:
            stmt = (
                select(OfflineOperation.status, func.count(OfflineOperation.id))
                .where(OfflineOperation.business_id == business_id)
                .group_by(OfflineOperation.status)
            )
            counts = {status.value: 0 for status in OperationStatus}
            for status, count in session.execute(stmt).all():
                counts[status] = count
            return counts

    def count_unsynced(self, business_id: int) -> int:
        """Count operations of a business that are not yet synced."""
        with self._session() as session:
            stmt = select(func.count(OfflineOperation.id)).where(
                OfflineOperation.business_id == business_id,
                OfflineOperation.status.in_(UNSYNCED_STATUSES),
            )
            return session.execute(stmt).scalar() or 0

    def get_latest_synced_at(self, business_id: int) -> datetime | None:
        """Get the most recent synced_at of a business, if any."""
        with self._session() as session:
            stmt = select(func.max(OfflineOperation.synced_at)).where(
                OfflineOperation.business_id == business_id,
                OfflineOperation.status == OperationStatus.SYNCED.value,
            )
            return session.execute(stmt).scalar()

    def list_businesses(self, status: str = OperationStatus.PENDING.value) -> list[int]:
        """List business IDs that have at least one operation in a status."""
        with self._session() as session:
            stmt = (
                select(OfflineOperation.business_id)
                .where(OfflineOperation.status == status)
                .distinct()
                .order_by(OfflineOperation.business_id)
            )
            return list(session.execute(stmt).scalars().all())

    def delete_synced_before(self, business_id: int, cutoff: datetime) -> int:
        """Delete synced operations whose synced_at is at or before a cutoff.

        Pending, syncing, conflict and failed rows are never touched.

        Args:
            business_id: Owning business.
            cutoff: Delete rows synced at or before this time.

        Returns:
            Number of rows deleted.
        """
        with self._session() as session:
            stmt = delete(OfflineOperation).where(
                OfflineOperation.business_id == business_id,
                OfflineOperation.status == OperationStatus.SYNCED.value,
                OfflineOperation.synced_at.is_not(None),
                OfflineOperation.synced_at <= cutoff,
            )
            result = session.execute(stmt)
            session.commit()
            return result.rowcount

    # === Sync history ===

    def add_history(
        self,
        queue_id: int,
        user_id: int,
        sync_type: str,
        status: str,
        response_data: Any = None,
        error_message: str | None = None,
        device_id: str | None = None,
        started_at: datetime | None = None,
        sync_duration_ms: int | None = None,
    ) -> SyncHistory:
        """Append an entry to the sync history log.

        Returns:
            The created SyncHistory entry.
        """
        now = utcnow()
        with self._session() as session:
            entry = SyncHistory(
                queue_id=queue_id,
                user_id=user_id,
                sync_type=sync_type,
                status=status,
                response_data=response_data,
                error_message=error_message,
                device_id=device_id,
                started_at=started_at or now,
                completed_at=now,
                sync_duration_ms=sync_duration_ms,
            )
            session.add(entry)
            session.commit()
            session.refresh(entry)
            session.expunge(entry)
            return entry

    def list_history(self, queue_id: int, limit: int = 10) -> list[SyncHistory]:
        """Get the most recent sync attempts of an operation, newest first.

        Args:
            queue_id: Operation row ID.
            limit: Maximum number of entries.

        Returns:
            History entries ordered by started_at descending.
        """
        with self._session() as session:
            stmt = (
                select(SyncHistory)
                .where(SyncHistory.queue_id == queue_id)
                .order_by(SyncHistory.started_at.desc(), SyncHistory.id.desc())
                .limit(limit)
            )
            entries = list(session.execute(stmt).scalars().all())
            for entry in entries:
                session.expunge(entry)
            return entries

    # === Offline config ===

    def get_config(self, business_id: int) -> OfflineConfig | None:
        """Get the offline config of a business.

        Args:
            business_id: Business ID.

        Returns:
            OfflineConfig if one exists, None otherwise.
        """
        with self._session() as session:
            stmt = select(OfflineConfig).where(OfflineConfig.business_id == business_id)
            config = session.execute(stmt).scalar_one_or_none()
            if config:
                session.expunge(config)
            return config

    def upsert_config(self, business_id: int, updates: dict[str, Any]) -> OfflineConfig:
        """Merge updates into a business's config, creating it with defaults if missing.

        Args:
            business_id: Business ID.
            updates: Column values to change.

        Returns:
            The stored OfflineConfig.
        """
        with self._session() as session:
            stmt = select(OfflineConfig).where(OfflineConfig.business_id == business_id)
            config = session.execute(stmt).scalar_one_or_none()
            if config is None:
                config = OfflineConfig(business_id=business_id)
                session.add(config)
            for column, value in updates.items():
                setattr(config, column, value)
            session.commit()
            session.refresh(config)
            session.expunge(config)
            return config

    def list_configs(self, auto_sync_only: bool = False) -> list[OfflineConfig]:
        """List stored business configs.

        Args:
            auto_sync_only: Only return configs with auto_sync_enabled.

        Returns:
            Configs ordered by business_id.
        """
        with self._session() as session:
            stmt = select(OfflineConfig)
            if auto_sync_only:
                stmt = stmt.where(OfflineConfig.auto_sync_enabled.is_(True))
            stmt = stmt.order_by(OfflineConfig.business_id)
            configs = list(session.execute(stmt).scalars().all())
            for config in configs:
                session.expunge(config)
            return configs
