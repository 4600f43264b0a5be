"""Conflict classification of replay responses.

A replay can "succeed" at the transport level while the authoritative backend
reports that the operation no longer applies. The backend signals this with an
error code in the response body:

- DUPLICATE_OPERATION: the idempotency key was already applied
- VERSION_MISMATCH: the target resource changed since the operation was captured
- RESOURCE_NOT_FOUND: the target resource was deleted

Classification is a pure function of the response; nothing here touches storage.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ledgersync.core.types import ConflictType

# Backend error code -> conflict type
CONFLICT_CODES: dict[str, ConflictType] = {
    "DUPLICATE_OPERATION": ConflictType.DUPLICATE,
    "VERSION_MISMATCH": ConflictType.VERSION_MISMATCH,
    "RESOURCE_NOT_FOUND": ConflictType.DELETED,
}


@dataclass(frozen=True)
class ConflictDescriptor:
    """Result of classifying a replay response.

    Attributes:
        conflict_type: Detected conflict, ConflictType.NONE if the replay applied.
        data: The response that caused the conflict (stored as conflict_data).
    """

    conflict_type: ConflictType
    data: Any = None

    @property
    def is_conflict(self) -> bool:
        """Check if a conflict was detected."""
        return self.conflict_type is not ConflictType.NONE


NO_CONFLICT = ConflictDescriptor(ConflictType.NONE)


def get_error_code(response: Any) -> str | None:
    """Extract ``response["error"]["code"]`` if present."""
    if not isinstance(response, Mapping):
        return None
    error = response.get("error")
    if not isinstance(error, Mapping):
        return None
    code = error.get("code")
    return code if isinstance(code, str) else None


def classify_response(response: Any) -> ConflictDescriptor:
    """Map a replay response to a conflict descriptor.

    Args:
        response: Raw response returned by the executor (any shape).

    Returns:
        Descriptor with the conflict type; NO_CONFLICT for anything unrecognized.
    """
    code = get_error_code(response)
    if code is None:
        return NO_CONFLICT

    conflict_type = CONFLICT_CODES.get(code)
    if conflict_type is None:
        return NO_CONFLICT

    return ConflictDescriptor(conflict_type=conflict_type, data=response)
