"""SQLAlchemy models for the ledgersync offline queue.

This module defines the database schema using SQLAlchemy ORM:
- OfflineOperation: queued operations awaiting replay
- SyncHistory: append-only log of sync attempts
- OfflineConfig: per-business offline policy
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ledgersync.core.types import OperationStatus, ResolutionStrategy


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


class OfflineOperation(Base):
    """A financial action captured offline and queued for replay."""

    __tablename__ = "offline_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Ownership
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    business_id: Mapped[int] = mapped_column(Integer, nullable=False)
    device_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Operation details
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    operation_id: Mapped[str] = mapped_column(String(50), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    request_body: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    request_headers: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), default=OperationStatus.PENDING.value, nullable=False
    )
    sync_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Outcome
    server_response: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    server_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Conflict
    conflict_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    conflict_data: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    resolution_strategy: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Timestamps
    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Groups operations replayed by the same batch run
    sync_batch_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Indexes
    __table_args__ = (
        Index("idx_offline_queue_business_status", "business_id", "status"),
        Index("idx_offline_queue_created", "created_at"),
    )

    @property
    def retries_left(self) -> int:
        """Number of attempts remaining before the operation is exhausted."""
        return max(self.max_retries - self.sync_attempts, 0)

    def __repr__(self) -> str:
        return (
            f"OfflineOperation(id={self.id}, type={self.operation_type}, "
            f"status={self.status}, attempts={self.sync_attempts}/{self.max_retries})"
        )


class SyncHistory(Base):
    """Audit entry for one sync attempt. Never mutated once written."""

    __tablename__ = "offline_sync_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # No foreign key: history outlives the queue rows removed by retention cleanup
    queue_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    response_data: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    device_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Indexes
    __table_args__ = (Index("idx_sync_history_queue", "queue_id", "started_at"),)


class OfflineConfig(Base):
    """Per-business offline policy (one row per business)."""

    __tablename__ = "offline_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)

    # Feature flags
    offline_mode_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Sync settings
    sync_interval_minutes: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    max_queue_size: Mapped[int] = mapped_column(Integer, default=500, nullable=False)
    retry_delay_seconds: Mapped[int] = mapped_column(Integer, default=30, nullable=False)

    # Conflict resolution
    default_conflict_strategy: Mapped[str] = mapped_column(
        String(20), default=ResolutionStrategy.CLIENT_WINS.value, nullable=False
    )

    # Operations allowed offline
    allow_sales_offline: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    allow_expenses_offline: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    allow_stock_adjustment_offline: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# Columns of OfflineConfig that callers may change through a merge-update
CONFIG_UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "offline_mode_enabled",
        "auto_sync_enabled",
        "sync_interval_minutes",
        "max_queue_size",
        "retry_delay_seconds",
        "default_conflict_strategy",
        "allow_sales_offline",
        "allow_expenses_offline",
        "allow_stock_adjustment_offline",
    }
)


def default_config(business_id: int) -> OfflineConfig:
    """Unsaved config holding the policy of a business without a stored row."""
    return OfflineConfig(
        business_id=business_id,
        offline_mode_enabled=True,
        auto_sync_enabled=True,
        sync_interval_minutes=5,
        max_queue_size=500,
        retry_delay_seconds=30,
        default_conflict_strategy=ResolutionStrategy.CLIENT_WINS.value,
        allow_sales_offline=True,
        allow_expenses_offline=True,
        allow_stock_adjustment_offline=False,
    )
