"""Server command for ledgersync CLI.

Commands:
- serve: Run the admin API server with uvicorn
"""

from __future__ import annotations

import click


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind.")
@click.option("--port", "-p", type=int, default=8000, show_default=True, help="Port to bind.")
@click.option("--reload", is_flag=True, help="Reload on code changes (development).")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the admin API server.

    Settings are read from LEDGERSYNC_* environment variables
    (LEDGERSYNC_DB_PATH, LEDGERSYNC_REPLAY_URL, LEDGERSYNC_ENABLE_SCHEDULER, ...).

    Examples:

        # Serve on localhost:8000
        ledgersync serve

        # Serve on all interfaces with auto-sync enabled
        LEDGERSYNC_ENABLE_SCHEDULER=true ledgersync serve --host 0.0.0.0
    """
    import uvicorn

    click.echo(f"Starting ledgersync server on http://{host}:{port}")
    uvicorn.run(
        "ledgersync.server.app:app_factory",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )
