"""Classification of executor failures.

Executors should raise the tagged NetworkError / ServerError types. Anything
else that escapes an executor is mapped onto the same closed set here:
builtin connection errors and messages that look like connectivity problems
become NETWORK, everything else SERVER_ERROR.
"""

from __future__ import annotations

import httpx

from ledgersync.core.types import ErrorCode
from ledgersync.sync.types import ExecutorError, NetworkError, ServerError

# Exception types that indicate connectivity issues
NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
    httpx.TransportError,
)

# Lowercase message fragments of untagged connectivity failures
NETWORK_ERROR_PATTERNS: tuple[str, ...] = (
    "network",
    "timeout",
    "timed out",
    "econnrefused",
    "connection refused",
)


def classify_error(error: BaseException) -> ErrorCode:
    """Return the error code to persist for an executor failure."""
    if isinstance(error, ExecutorError):
        return error.error_code
    if isinstance(error, NETWORK_EXCEPTIONS):
        return ErrorCode.NETWORK

    message = str(error).lower()
    if any(pattern in message for pattern in NETWORK_ERROR_PATTERNS):
        return ErrorCode.NETWORK
    return ErrorCode.SERVER_ERROR


def to_executor_error(error: BaseException) -> ExecutorError:
    """Wrap any executor failure in its tagged error type."""
    if isinstance(error, ExecutorError):
        return error

    message = str(error) or type(error).__name__
    if classify_error(error) is ErrorCode.NETWORK:
        wrapped: ExecutorError = NetworkError(message)
    else:
        wrapped = ServerError(message)
    wrapped.__cause__ = error
    return wrapped
