"""Offline sync engine for queued ledger operations.

Architecture:
    LifecycleManager → SyncOrchestrator → Executor
                     ↘ ConflictResolver / RetryManager / MaintenanceService

Components:
- **LifecycleManager**: Enqueue and every guarded status transition
- **SyncOrchestrator**: Single-operation and batch replay, history logging
- **ConflictResolver**: Closes out conflicts by strategy
- **RetryManager**: Re-queues failed operations, administrative reset
- **MaintenanceService**: Status counts, config, history, retention cleanup
- **HttpReplayExecutor**: Default executor replaying over HTTP

All public symbols are re-exported here.
"""

from ledgersync.sync.executor import HttpReplayExecutor
from ledgersync.sync.lifecycle import DEFAULT_MAX_RETRIES, LifecycleManager
from ledgersync.sync.maintenance import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_RETENTION_DAYS,
    MaintenanceService,
)
from ledgersync.sync.orchestrator import (
    DEFAULT_BATCH_LIMIT,
    DEFAULT_EXECUTOR_TIMEOUT,
    SyncOrchestrator,
)
from ledgersync.sync.resolver import ConflictResolver, parse_strategy
from ledgersync.sync.retry import RetryManager
from ledgersync.sync.types import (
    BatchSyncResult,
    Executor,
    ExecutorError,
    InvalidStrategyError,
    InvalidTransitionError,
    NetworkError,
    OperationNotFoundError,
    RetryResult,
    ServerError,
    SyncError,
    SyncOutcome,
    SyncStatusSummary,
    ValidationError,
)

__all__ = [
    # Constants
    "DEFAULT_BATCH_LIMIT",
    "DEFAULT_EXECUTOR_TIMEOUT",
    "DEFAULT_HISTORY_LIMIT",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RETENTION_DAYS",
    # Errors
    "ExecutorError",
    "InvalidStrategyError",
    "InvalidTransitionError",
    "NetworkError",
    "OperationNotFoundError",
    "ServerError",
    "SyncError",
    "ValidationError",
    # Types and dataclasses
    "BatchSyncResult",
    "Executor",
    "RetryResult",
    "SyncOutcome",
    "SyncStatusSummary",
    # Services
    "ConflictResolver",
    "HttpReplayExecutor",
    "LifecycleManager",
    "MaintenanceService",
    "RetryManager",
    "SyncOrchestrator",
    "parse_strategy",
]
