"""Conflict resolution for operations the backend rejected as conflicting.

Strategies:
- client_wins: the queued version supersedes; the operation goes back to
  pending and is replayed by the next sync run
- server_wins / manual: the server state (or a manually reconciled one) is
  accepted as final; the operation is closed as synced
- merge: accepted as a policy value and closed like server_wins. No content
  merge happens here; a merged payload must be queued as a new operation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ledgersync.core.types import ResolutionStrategy
from ledgersync.sync.lifecycle import LifecycleManager
from ledgersync.sync.types import InvalidStrategyError

if TYPE_CHECKING:
    from ledgersync.server.database import Database
    from ledgersync.server.models import OfflineOperation

logger = logging.getLogger(__name__)


def parse_strategy(strategy: ResolutionStrategy | str) -> ResolutionStrategy:
    """Validate a resolution strategy.

    Raises:
        InvalidStrategyError: If the value is not a recognized strategy.
    """
    if isinstance(strategy, ResolutionStrategy):
        return strategy
    try:
        return ResolutionStrategy(strategy)
    except ValueError as e:
        raise InvalidStrategyError(strategy) from e


class ConflictResolver:
    """Closes out conflicted operations."""

    def __init__(self, db: Database, lifecycle: LifecycleManager | None = None) -> None:
        self._db = db
        self._lifecycle = lifecycle or LifecycleManager(db)

    def resolve_conflict(
        self, queue_id: int, strategy: ResolutionStrategy | str
    ) -> OfflineOperation:
        """Resolve a conflicted operation with the given strategy.

        The strategy is validated before anything is read or written.

        Args:
            queue_id: Operation row ID.
            strategy: client_wins, server_wins, merge or manual.

        Returns:
            The updated operation (pending for client_wins, synced otherwise).

        Raises:
            InvalidStrategyError: If the strategy is not recognized.
            OperationNotFoundError: If the operation does not exist.
            InvalidTransitionError: If the operation is not in conflict.
        """
        resolved_strategy = parse_strategy(strategy)
        logger.info("Resolving conflict on operation %d with %s", queue_id, resolved_strategy.value)

        operation = self._lifecycle.get(queue_id)
        updated = self._lifecycle.resolve(operation, resolved_strategy)

        logger.info("Conflict resolved on operation %d -> %s", queue_id, updated.status)
        return updated

    def resolve_with_default(self, queue_id: int) -> OfflineOperation:
        """Resolve using the business's default_conflict_strategy.

        Falls back to client_wins when the business has no config row.
        """
        operation = self._lifecycle.get(queue_id)
        config = self._db.get_config(operation.business_id)
        strategy = (
            config.default_conflict_strategy
            if config is not None
            else ResolutionStrategy.CLIENT_WINS.value
        )
        return self.resolve_conflict(queue_id, strategy)
