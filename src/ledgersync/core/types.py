"""Shared types for ledgersync.

This module defines the enums used by the store, the sync engine and the API.
Every enum subclasses ``str`` so members compare equal to the values stored in
the database and sent over the wire.
"""

from __future__ import annotations

from enum import Enum


class OperationStatus(str, Enum):
    """Lifecycle status of a queued offline operation."""

    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    CONFLICT = "conflict"
    FAILED = "failed"


class OperationType(str, Enum):
    """Kind of financial action captured offline."""

    SALE = "sale"
    EXPENSE = "expense"
    RECORD = "record"
    PAYMENT = "payment"
    STOCK_ADJUSTMENT = "stock_adjustment"


class HttpMethod(str, Enum):
    """HTTP methods an operation may be replayed with."""

    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"


class ConflictType(str, Enum):
    """Divergence detected between a replayed operation and server state."""

    NONE = "none"
    DUPLICATE = "duplicate"
    VERSION_MISMATCH = "version_mismatch"
    DELETED = "deleted"


class ResolutionStrategy(str, Enum):
    """Policy used to close a conflict."""

    CLIENT_WINS = "client_wins"
    SERVER_WINS = "server_wins"
    MERGE = "merge"
    MANUAL = "manual"


class ErrorCode(str, Enum):
    """Classification of an executor failure."""

    NETWORK = "NETWORK"
    SERVER_ERROR = "SERVER_ERROR"


class SyncType(str, Enum):
    """What triggered a sync attempt."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class HistoryStatus(str, Enum):
    """Outcome of a single sync attempt in the history log."""

    SUCCESS = "success"
    FAILED = "failed"
