"""``relay db``: schema and connectivity checks against the configured store."""

from __future__ import annotations

import typer

from relay.cli.utils import make_context, output_result
from relay.ops import database as database_ops

app = typer.Typer(no_args_is_help=True)

DatabaseOpt = typer.Option(None, "--database", "-d", help="SQLite path or URL; overrides RELAY_DATABASE_URL")
JsonOpt = typer.Option(False, "--json", help="Print the raw result as JSON")


@app.command()
def init(
    database: str | None = DatabaseOpt,
    dry_run: bool = typer.Option(False, "--dry-run", help="List the tables without creating them"),
    json_out: bool = JsonOpt,
) -> None:
    """Create the relay tables if they do not exist yet."""
    ctx, _conn = make_context(database, dry_run=dry_run)
    result = database_ops.initialize_database(ctx)
    output_result(result, as_json=json_out, title="Schema")


@app.command()
def tables(database: str | None = DatabaseOpt, json_out: bool = JsonOpt) -> None:
    """Row count per relay table."""
    ctx, _conn = make_context(database)
    result = database_ops.get_table_counts(ctx)
    output_result(result, as_json=json_out, title="Rows per table")


@app.command()
def health(database: str | None = DatabaseOpt, json_out: bool = JsonOpt) -> None:
    """Database, orchestration engine and content store reachability.

    Exits with status 2 when the database answers but the engine does not.
    """
    ctx, _conn = make_context(database)
    result = database_ops.check_health(ctx)
    output_result(result, as_json=json_out, title="Health")
    if result.data and result.data.get("status") == "degraded":
        raise typer.Exit(code=2)
