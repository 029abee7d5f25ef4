"""
Root Typer application for the relay CLI.

Sub-commands::

    relay db         init | tables | health
    relay workflows  list | show | register | enable | disable | sync
    relay runs       list | show | trigger | cancel | force-terminate | retry | reap | cleanup
    relay batches    preview | execute | sync | list | show | cancel
    relay serve      start
"""

from __future__ import annotations

import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as package_version

import typer
from typer import Typer

from relay.core.logging import configure_logging

app = Typer(
    name="relay",
    help="relay: trigger, track and batch remotely executed workflows.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if not value:
        return
    try:
        installed = package_version("relay-core")
    except PackageNotFoundError:
        installed = "0.1.0"
    typer.echo(f"relay {installed}")
    raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log INFO events to stderr."),
) -> None:
    """relay CLI: manage workflows, runs, batches and the database."""
    configure_logging(level="INFO" if verbose else "WARNING", json_format=False, service="relay-cli", stream=sys.stderr)


# ── Sub-command registration ─────────────────────────────────────────────

from relay.cli.batches import app as batches_app  # noqa: E402
from relay.cli.db import app as db_app  # noqa: E402
from relay.cli.runs import app as runs_app  # noqa: E402
from relay.cli.serve import app as serve_app  # noqa: E402
from relay.cli.workflows import app as wf_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(wf_app, name="workflows", help="Workflow definitions.")
app.add_typer(runs_app, name="runs", help="Workflow run management.")
app.add_typer(batches_app, name="batches", help="Batch preview, execution and progress.")
app.add_typer(serve_app, name="serve", help="Start the API server.")


if __name__ == "__main__":
    app()
