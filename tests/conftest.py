"""Shared pytest fixtures.

Every test gets its own SQLite database under tmp_path.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import update

from ledgersync.server.database import Database
from ledgersync.server.models import OfflineOperation
from ledgersync.sync.lifecycle import LifecycleManager


@pytest.fixture
def db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a test database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def lifecycle(db: Database) -> LifecycleManager:
    """Lifecycle manager with the default retry budget of 3."""
    return LifecycleManager(db, max_retries=3)


@pytest.fixture
def queue_op(lifecycle: LifecycleManager) -> Callable[..., OfflineOperation]:
    """Factory queueing a sale for business 1 (fields overridable)."""
    counter = itertools.count(1)

    def _queue(**overrides: Any) -> OfflineOperation:
        n = next(counter)
        fields: dict[str, Any] = {
            "user_id": 7,
            "business_id": 1,
            "operation_type": "sale",
            "operation_id": f"op-{n}",
            "endpoint": "/api/sales",
            "method": "POST",
            "request_body": {"amount": 100 * n},
            "device_id": "device-1",
        }
        fields.update(overrides)
        return lifecycle.queue_operation(**fields)

    return _queue


@pytest.fixture
def set_columns(db: Database) -> Callable[..., OfflineOperation | None]:
    """Overwrite columns of an operation directly (bypassing the lifecycle)."""

    def _set(queue_id: int, **values: Any) -> OfflineOperation | None:
        with db._session() as session:
            session.execute(
                update(OfflineOperation).where(OfflineOperation.id == queue_id).values(**values)
            )
            session.commit()
        return db.get_operation(queue_id)

    return _set
