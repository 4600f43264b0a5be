"""Command-line interface for ledgersync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- serve: Run the admin API server
- status: Show sync status counts of a business
- sync: Replay a business's pending operations
- retry: Re-queue failed operations with retries left
- reset: Grant an exhausted operation additional attempts
- resolve: Resolve a conflicted operation
- cleanup: Delete old synced operations
- history: Show the sync attempts of an operation
"""

from __future__ import annotations

import click

from ledgersync.cli.queue import cleanup, history, reset, resolve, retry, status, sync
from ledgersync.cli.server import serve


@click.group()
@click.version_option(package_name="ledgersync")
def cli() -> None:
    """ledgersync - Offline operation queue for the merchant ledger."""


# Server command
cli.add_command(serve)

# Queue commands
cli.add_command(status)
cli.add_command(sync)
cli.add_command(retry)
cli.add_command(reset)
cli.add_command(resolve)
cli.add_command(cleanup)
cli.add_command(history)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
]
