"""FastAPI application for the ledgersync admin server.

This module creates and configures the FastAPI application with:
- REST API for the offline queue (status, sync, resolve, retry, config, history)
- Optional background scheduler for auto-sync and retention cleanup

Usage:
    uvicorn ledgersync.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from ledgersync.core.config import EngineSettings
from ledgersync.server.api.errors import register_exception_handlers
from ledgersync.server.api.router import router as api_router
from ledgersync.server.database import Database
from ledgersync.server.scheduler import AutoSyncScheduler
from ledgersync.sync.executor import HttpReplayExecutor
from ledgersync.sync.lifecycle import LifecycleManager
from ledgersync.sync.maintenance import MaintenanceService
from ledgersync.sync.orchestrator import SyncOrchestrator
from ledgersync.sync.resolver import ConflictResolver
from ledgersync.sync.retry import RetryManager
from ledgersync.sync.types import Executor

logger = logging.getLogger(__name__)


def setup_logging(log_path: Path) -> None:
    """Configure logging to output to both file and stdout.

    Args:
        log_path: Path to the log file.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    # Root logger for ledgersync
    root_logger = logging.getLogger("ledgersync")
    root_logger.setLevel(logging.INFO)

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # File handler
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Also capture uvicorn logs to file
    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(uvicorn_name)
        uvicorn_logger.addHandler(file_handler)


def create_app(
    db: Database,
    settings: EngineSettings | None = None,
    executor: Executor | None = None,
) -> FastAPI:
    """Create FastAPI application with a custom database and executor.

    This is primarily used for testing with isolated databases.

    Args:
        db: Database instance.
        settings: Engine settings (defaults when omitted).
        executor: Replay executor for batch sync (batch sync answers 503
            without one).

    Returns:
        Configured FastAPI application.
    """
    settings = settings or EngineSettings()

    lifecycle = LifecycleManager(db, max_retries=settings.max_retries)
    orchestrator = SyncOrchestrator(
        db,
        lifecycle=lifecycle,
        executor_timeout=settings.executor_timeout,
        batch_limit=settings.batch_limit,
        stale_after_minutes=settings.stale_after_minutes,
    )
    scheduler = (
        AutoSyncScheduler(db, orchestrator, executor, retention_days=settings.retention_days)
        if settings.enable_scheduler
        else None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        # Startup
        db_path = getattr(db, "_db_path", "in-memory")
        logger.info("=" * 60)
        logger.info("ledgersync Server Starting")
        logger.info("=" * 60)
        logger.info("  Database:  %s", db_path)
        logger.info("  Replay:    %s", settings.replay_url or "None (batch sync disabled)")
        logger.info("  Scheduler: %s", "enabled" if scheduler else "disabled")
        logger.info("  Logs:      %s", settings.log_path.absolute())
        logger.info("=" * 60)
        if scheduler is not None:
            scheduler.start()

        yield

        # Shutdown
        if scheduler is not None:
            scheduler.stop()
        logger.info("ledgersync Server shutting down")

    application = FastAPI(
        title="ledgersync Server",
        description="Offline operation queue and sync engine for the merchant ledger",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.state.db = db
    application.state.settings = settings
    application.state.executor = executor
    application.state.lifecycle = lifecycle
    application.state.orchestrator = orchestrator
    application.state.resolver = ConflictResolver(db, lifecycle=lifecycle)
    application.state.retry_manager = RetryManager(db, lifecycle=lifecycle)
    application.state.maintenance = MaintenanceService(db)
    application.state.scheduler = scheduler

    register_exception_handlers(application)
    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    settings = EngineSettings.from_env()
    setup_logging(settings.log_path)

    executor = None
    if settings.replay_url:
        executor = HttpReplayExecutor(settings.replay_url, timeout=settings.executor_timeout)

    return create_app(db=Database(settings.db_path), settings=settings, executor=executor)
