"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ledgersync.server.models import OfflineConfig, OfflineOperation, SyncHistory

# === Queue schemas ===


class QueueOperationRequest(BaseModel):
    """Request body for queueing an offline operation."""

    user_id: int
    business_id: int
    operation_type: str
    operation_id: str
    endpoint: str
    method: str
    request_body: dict[str, Any]
    request_headers: dict[str, Any] | None = None
    executed_at: datetime | None = None
    device_id: str | None = None


class OperationResponse(BaseModel):
    """Queued operation in responses."""

    id: int
    user_id: int
    business_id: int
    device_id: str | None
    operation_type: str
    operation_id: str
    endpoint: str
    method: str
    status: str
    sync_attempts: int
    max_retries: int
    retries_left: int
    last_error: str | None
    error_code: str | None
    server_id: str | None
    conflict_type: str | None
    resolution_strategy: str | None
    executed_at: str
    created_at: str
    synced_at: str | None
    failed_at: str | None
    resolved_at: str | None


class StatusResponse(BaseModel):
    """Sync status counts of a business."""

    pending: int
    syncing: int
    synced: int
    conflicts: int
    failed: int
    total: int
    last_sync: str | None


# === Sync schemas ===


class SyncOperationRequest(BaseModel):
    """Request body for applying a replay response to one operation."""

    response: Any = None
    sync_type: str = "manual"


class SyncOutcomeResponse(BaseModel):
    """Outcome of a single-operation sync."""

    success: bool
    queue_id: int
    status: str
    conflict_type: str | None
    server_id: str | None


class BatchSyncResponse(BaseModel):
    """Tally of a batch sync."""

    success: int
    failed: int
    conflict: int
    total: int
    duration_ms: int
    released: int = 0


class ResolveRequest(BaseModel):
    """Request body for conflict resolution (default strategy when omitted)."""

    strategy: str | None = None


class RetryResultResponse(BaseModel):
    """Per-operation result of a bulk retry."""

    id: int
    status: str
    error: str | None = None


class ResetRequest(BaseModel):
    """Request body for reclaiming an exhausted operation."""

    extra_attempts: int = Field(default=1, ge=1)


class CleanupResponse(BaseModel):
    """Result of retention cleanup."""

    deleted: int


# === Config schemas ===


class ConfigResponse(BaseModel):
    """Offline policy of a business."""

    business_id: int
    offline_mode_enabled: bool
    auto_sync_enabled: bool
    sync_interval_minutes: int
    max_queue_size: int
    retry_delay_seconds: int
    default_conflict_strategy: str
    allow_sales_offline: bool
    allow_expenses_offline: bool
    allow_stock_adjustment_offline: bool


class ConfigUpdateRequest(BaseModel):
    """Partial update of a business's offline policy."""

    offline_mode_enabled: bool | None = None
    auto_sync_enabled: bool | None = None
    sync_interval_minutes: int | None = None
    max_queue_size: int | None = None
    retry_delay_seconds: int | None = None
    default_conflict_strategy: str | None = None
    allow_sales_offline: bool | None = None
    allow_expenses_offline: bool | None = None
    allow_stock_adjustment_offline: bool | None = None


# === History schemas ===


class HistoryResponse(BaseModel):
    """Single sync attempt in responses."""

    id: int
    queue_id: int
    user_id: int
    sync_type: str
    status: str
    response_data: Any
    error_message: str | None
    sync_duration_ms: int | None
    device_id: str | None
    started_at: str
    completed_at: str | None


# === Health schema ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    scheduler: str


# === Converters ===


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def operation_to_response(op: OfflineOperation) -> OperationResponse:
    """Convert OfflineOperation to response model."""
    return OperationResponse(
        id=op.id,
        user_id=op.user_id,
        business_id=op.business_id,
        device_id=op.device_id,
        operation_type=op.operation_type,
        operation_id=op.operation_id,
        endpoint=op.endpoint,
        method=op.method,
        status=op.status,
        sync_attempts=op.sync_attempts,
        max_retries=op.max_retries,
        retries_left=op.retries_left,
        last_error=op.last_error,
        error_code=op.error_code,
        server_id=op.server_id,
        conflict_type=op.conflict_type,
        resolution_strategy=op.resolution_strategy,
        executed_at=op.executed_at.isoformat(),
        created_at=op.created_at.isoformat(),
        synced_at=_isoformat(op.synced_at),
        failed_at=_isoformat(op.failed_at),
        resolved_at=_isoformat(op.resolved_at),
    )


def config_to_response(config: OfflineConfig) -> ConfigResponse:
    """Convert OfflineConfig to response model."""
    return ConfigResponse(
        business_id=config.business_id,
        offline_mode_enabled=config.offline_mode_enabled,
        auto_sync_enabled=config.auto_sync_enabled,
        sync_interval_minutes=config.sync_interval_minutes,
        max_queue_size=config.max_queue_size,
        retry_delay_seconds=config.retry_delay_seconds,
        default_conflict_strategy=config.default_conflict_strategy,
        allow_sales_offline=config.allow_sales_offline,
        allow_expenses_offline=config.allow_expenses_offline,
        allow_stock_adjustment_offline=config.allow_stock_adjustment_offline,
    )


def history_to_response(entry: SyncHistory) -> HistoryResponse:
    """Convert SyncHistory to response model."""
    return HistoryResponse(
        id=entry.id,
        queue_id=entry.queue_id,
        user_id=entry.user_id,
        sync_type=entry.sync_type,
        status=entry.status,
        response_data=entry.response_data,
        error_message=entry.error_message,
        sync_duration_ms=entry.sync_duration_ms,
        device_id=entry.device_id,
        started_at=entry.started_at.isoformat(),
        completed_at=_isoformat(entry.completed_at),
    )
