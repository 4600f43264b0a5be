"""Engine configuration for ledgersync.

Per-business policy (retry limits, allowed operation types, default conflict
strategy) lives in the ``offline_config`` table. This module only covers the
process-wide settings shared by the API server, the scheduler and the CLI.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class EngineSettings:
    """Process-wide settings for the sync engine.

    Attributes:
        db_path: Path to the SQLite database file.
        log_path: Path to the server log file.
        replay_url: Base URL of the authoritative backend operations are
            replayed against (None disables the default HTTP executor).
        executor_timeout: Seconds a single replay may take before it is
            treated as a network failure.
        batch_limit: Maximum pending operations pulled by one batch sync.
        stale_after_minutes: Age of a syncing claim after which its run is
            presumed dead and the operation is released.
        retention_days: Age after which synced operations are cleaned up.
        max_retries: Default max_retries for newly queued operations.
        enable_scheduler: Whether the API server starts the auto-sync scheduler.
    """

    db_path: Path = Path("ledgersync.db")
    log_path: Path = Path("ledgersync-server.log")
    replay_url: str | None = None
    executor_timeout: float = 30.0
    batch_limit: int = 1000
    stale_after_minutes: int = 30
    retention_days: int = 7
    max_retries: int = 3
    enable_scheduler: bool = False

    def __post_init__(self) -> None:
        """Normalize paths and the replay URL."""
        self.db_path = Path(self.db_path)
        self.log_path = Path(self.log_path)
        if self.replay_url:
            self.replay_url = self.replay_url.rstrip("/")
        if self.executor_timeout <= 0:
            raise ValueError("executor_timeout must be positive")
        if self.stale_after_minutes < 1:
            raise ValueError("stale_after_minutes must be at least 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    @classmethod
    def from_env(cls) -> EngineSettings:
        """Build settings from LEDGERSYNC_* environment variables."""
        return cls(
            db_path=Path(os.environ.get("LEDGERSYNC_DB_PATH", "ledgersync.db")),
            log_path=Path(os.environ.get("LEDGERSYNC_LOG_PATH", "ledgersync-server.log")),
            replay_url=os.environ.get("LEDGERSYNC_REPLAY_URL") or None,
            executor_timeout=float(os.environ.get("LEDGERSYNC_EXECUTOR_TIMEOUT", "30")),
            batch_limit=int(os.environ.get("LEDGERSYNC_BATCH_LIMIT", "1000")),
            stale_after_minutes=int(os.environ.get("LEDGERSYNC_STALE_AFTER_MINUTES", "30")),
            retention_days=int(os.environ.get("LEDGERSYNC_RETENTION_DAYS", "7")),
            max_retries=int(os.environ.get("LEDGERSYNC_MAX_RETRIES", "3")),
            enable_scheduler=(
                os.environ.get("LEDGERSYNC_ENABLE_SCHEDULER", "false").lower() in _TRUTHY
            ),
        )
