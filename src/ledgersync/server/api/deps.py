"""FastAPI dependencies for API routes."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from ledgersync.server.database import Database
from ledgersync.sync.lifecycle import LifecycleManager
from ledgersync.sync.maintenance import MaintenanceService
from ledgersync.sync.orchestrator import SyncOrchestrator
from ledgersync.sync.resolver import ConflictResolver
from ledgersync.sync.retry import RetryManager
from ledgersync.sync.types import Executor


def get_db(request: Request) -> Database:
    """Get database from app state."""
    db: Database = request.app.state.db
    return db


def get_lifecycle(request: Request) -> LifecycleManager:
    """Get lifecycle manager from app state."""
    lifecycle: LifecycleManager = request.app.state.lifecycle
    return lifecycle


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Get sync orchestrator from app state."""
    orchestrator: SyncOrchestrator = request.app.state.orchestrator
    return orchestrator


def get_resolver(request: Request) -> ConflictResolver:
    """Get conflict resolver from app state."""
    resolver: ConflictResolver = request.app.state.resolver
    return resolver


def get_retry_manager(request: Request) -> RetryManager:
    """Get retry manager from app state."""
    retry_manager: RetryManager = request.app.state.retry_manager
    return retry_manager


def get_maintenance(request: Request) -> MaintenanceService:
    """Get maintenance service from app state."""
    maintenance: MaintenanceService = request.app.state.maintenance
    return maintenance


def get_executor(request: Request) -> Executor:
    """Get the replay executor from app state."""
    executor: Executor | None = request.app.state.executor
    if executor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Replay executor not configured",
        )
    return executor
