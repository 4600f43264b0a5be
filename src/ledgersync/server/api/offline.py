"""Offline queue API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ledgersync.core.types import SyncType
from ledgersync.server.api.deps import (
    get_executor,
    get_lifecycle,
    get_maintenance,
    get_orchestrator,
    get_resolver,
    get_retry_manager,
)
from ledgersync.server.models import default_config
from ledgersync.server.schemas import (
    BatchSyncResponse,
    CleanupResponse,
    ConfigResponse,
    ConfigUpdateRequest,
    HistoryResponse,
    OperationResponse,
    QueueOperationRequest,
    ResetRequest,
    ResolveRequest,
    RetryResultResponse,
    StatusResponse,
    SyncOperationRequest,
    SyncOutcomeResponse,
    config_to_response,
    history_to_response,
    operation_to_response,
)
from ledgersync.sync.lifecycle import LifecycleManager
from ledgersync.sync.maintenance import MaintenanceService
from ledgersync.sync.orchestrator import SyncOrchestrator
from ledgersync.sync.resolver import ConflictResolver
from ledgersync.sync.retry import RetryManager
from ledgersync.sync.types import Executor, ValidationError

router = APIRouter(prefix="/api/offline", tags=["offline"])


@router.get("/status", response_model=StatusResponse)
def get_status(
    business_id: int = Query(...),
    maintenance: MaintenanceService = Depends(get_maintenance),
) -> StatusResponse:
    """Get sync status counts for a business."""
    summary = maintenance.get_sync_status(business_id)
    return StatusResponse(
        pending=summary.pending,
        syncing=summary.syncing,
        synced=summary.synced,
        conflicts=summary.conflicts,
        failed=summary.failed,
        total=summary.total,
        last_sync=summary.last_sync.isoformat() if summary.last_sync else None,
    )


@router.post("/queue", response_model=OperationResponse, status_code=status.HTTP_201_CREATED)
def queue_operation(
    request: QueueOperationRequest,
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> OperationResponse:
    """Queue an operation captured offline."""
    operation = lifecycle.queue_operation(
        user_id=request.user_id,
        business_id=request.business_id,
        operation_type=request.operation_type,
        operation_id=request.operation_id,
        endpoint=request.endpoint,
        method=request.method,
        request_body=request.request_body,
        request_headers=request.request_headers,
        executed_at=request.executed_at,
        device_id=request.device_id,
    )
    return operation_to_response(operation)


@router.get("/pending", response_model=list[OperationResponse])
def list_pending(
    business_id: int = Query(...),
    op_status: str = Query("pending", alias="status"),
    limit: int = Query(100),
    offset: int = Query(0),
    maintenance: MaintenanceService = Depends(get_maintenance),
) -> list[OperationResponse]:
    """List a business's operations in one status, oldest first."""
    operations = maintenance.get_pending_operations(
        business_id, status=op_status, limit=limit, offset=offset
    )
    return [operation_to_response(op) for op in operations]


@router.post("/sync", response_model=BatchSyncResponse)
def sync_all(
    business_id: int = Query(...),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    executor: Executor = Depends(get_executor),
) -> BatchSyncResponse:
    """Replay every pending operation of a business."""
    result = orchestrator.sync_all_pending_operations(business_id, executor, SyncType.MANUAL)
    return BatchSyncResponse(
        success=result.success,
        failed=result.failed,
        conflict=result.conflict,
        total=result.total,
        duration_ms=result.duration_ms,
        released=result.released,
    )


@router.post("/sync/{queue_id}", response_model=SyncOutcomeResponse)
def sync_one(
    queue_id: int,
    request: SyncOperationRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncOutcomeResponse:
    """Apply a replay response to one queued operation."""
    try:
        sync_type = SyncType(request.sync_type)
    except ValueError as e:
        raise ValidationError(f"Invalid sync type: {request.sync_type}") from e

    outcome = orchestrator.sync_operation(queue_id, request.response, sync_type)
    return SyncOutcomeResponse(
        success=not outcome.is_conflict,
        queue_id=outcome.queue_id,
        status=outcome.status.value,
        conflict_type=outcome.conflict_type.value if outcome.is_conflict else None,
        server_id=outcome.server_id,
    )


@router.post("/resolve/{queue_id}", response_model=OperationResponse)
def resolve_conflict(
    queue_id: int,
    request: ResolveRequest,
    resolver: ConflictResolver = Depends(get_resolver),
) -> OperationResponse:
    """Resolve a conflicted operation."""
    if request.strategy is None:
        operation = resolver.resolve_with_default(queue_id)
    else:
        operation = resolver.resolve_conflict(queue_id, request.strategy)
    return operation_to_response(operation)


@router.post("/retry", response_model=list[RetryResultResponse])
def retry_failed(
    business_id: int = Query(...),
    retry_manager: RetryManager = Depends(get_retry_manager),
) -> list[RetryResultResponse]:
    """Re-queue failed operations that still have retries left."""
    results = retry_manager.retry_failed_operations(business_id)
    return [RetryResultResponse(id=r.id, status=r.status, error=r.error) for r in results]


@router.post("/reset/{queue_id}", response_model=OperationResponse)
def reset_operation(
    queue_id: int,
    request: ResetRequest,
    retry_manager: RetryManager = Depends(get_retry_manager),
) -> OperationResponse:
    """Grant an exhausted operation additional attempts."""
    operation = retry_manager.reset_exhausted_operation(queue_id, request.extra_attempts)
    return operation_to_response(operation)


@router.get("/config", response_model=ConfigResponse)
def get_config(
    business_id: int = Query(...),
    maintenance: MaintenanceService = Depends(get_maintenance),
) -> ConfigResponse:
    """Get a business's offline policy (defaults if never stored)."""
    config = maintenance.get_offline_config(business_id)
    return config_to_response(config or default_config(business_id))


@router.patch("/config", response_model=ConfigResponse)
def update_config(
    request: ConfigUpdateRequest,
    business_id: int = Query(...),
    maintenance: MaintenanceService = Depends(get_maintenance),
) -> ConfigResponse:
    """Merge-update a business's offline policy."""
    updates = request.model_dump(exclude_none=True)
    config = maintenance.update_offline_config(business_id, updates)
    return config_to_response(config)


@router.get("/history/{queue_id}", response_model=list[HistoryResponse])
def get_history(
    queue_id: int,
    limit: int = Query(10, ge=1),
    maintenance: MaintenanceService = Depends(get_maintenance),
) -> list[HistoryResponse]:
    """Most recent sync attempts of an operation, newest first."""
    return [history_to_response(e) for e in maintenance.get_sync_history(queue_id, limit)]


@router.delete("/cleanup", response_model=CleanupResponse)
def cleanup_synced(
    business_id: int = Query(...),
    older_than_days: int = Query(7),
    maintenance: MaintenanceService = Depends(get_maintenance),
) -> CleanupResponse:
    """Delete synced operations older than the retention window."""
    deleted = maintenance.clear_synced_operations(business_id, older_than_days)
    return CleanupResponse(deleted=deleted)
