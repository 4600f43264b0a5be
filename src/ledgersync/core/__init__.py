"""Core module - Shared settings and enums."""

from ledgersync.core.config import EngineSettings
from ledgersync.core.types import (
    ConflictType,
    ErrorCode,
    HistoryStatus,
    HttpMethod,
    OperationStatus,
    OperationType,
    ResolutionStrategy,
    SyncType,
)

__all__ = [
    # Config
    "EngineSettings",
    # Types
    "ConflictType",
    "ErrorCode",
    "HistoryStatus",
    "HttpMethod",
    "OperationStatus",
    "OperationType",
    "ResolutionStrategy",
    "SyncType",
]
