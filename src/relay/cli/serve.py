"""``relay serve``: run the HTTP API under uvicorn."""

from __future__ import annotations

import os

import typer
import uvicorn

from relay.cli.utils import console, load_settings

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    host: str | None = typer.Option(None, "--host", "-h", help="Interface to bind; RELAY_HOST by default"),
    port: int | None = typer.Option(None, "--port", "-p", help="TCP port; RELAY_PORT by default"),
    database: str | None = typer.Option(None, "--database", "-d", help="Overrides RELAY_DATABASE_URL"),
    reload: bool = typer.Option(False, "--reload", help="Restart when source files change"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Serve the relay API until interrupted."""
    settings = load_settings(database)
    bind_host = host or settings.host
    bind_port = port or settings.port
    if database:
        # the app factory reads its settings from the environment
        os.environ["RELAY_DATABASE_URL"] = settings.database_url

    console.print(f"relay API listening on [bold]http://{bind_host}:{bind_port}[/bold]")
    uvicorn.run(
        "relay.api:create_app",
        factory=True,
        host=bind_host,
        port=bind_port,
        reload=reload,
        log_level=log_level,
    )
