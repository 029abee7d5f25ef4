"""
CLI: ``relay runs``, workflow run management commands.
"""

from __future__ import annotations

from datetime import datetime

import typer

from relay.cli.utils import make_context, output_paged, output_result, parse_json_option

app = typer.Typer(no_args_is_help=True)

_DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]


@app.command("list")
def list_runs(
    status: list[str] = typer.Option([], "--status", "-s", help="Repeatable"),
    workflow: str | None = typer.Option(None, "--workflow", "-w"),
    node_id: int | None = typer.Option(None, "--node"),
    document_id: int | None = typer.Option(None, "--document"),
    batch_id: str | None = typer.Option(None, "--batch"),
    limit: int = typer.Option(20, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List workflow runs, newest first."""
    from relay.ops.requests import ListRunsRequest
    from relay.ops.runs import list_runs as _list

    ctx, _ = make_context(database)
    request = ListRunsRequest(
        node_id=node_id,
        document_id=document_id,
        workflow_key=workflow,
        statuses=tuple(status),
        batch_id=batch_id,
        limit=limit,
        offset=offset,
    )
    output_paged(_list(ctx, request), as_json=json_out, title="Runs")


@app.command("show")
def show_run(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show detailed information about a run."""
    from relay.ops.runs import get_run

    ctx, _ = make_context(database)
    output_result(get_run(ctx, run_id), as_json=json_out, title=f"Run: {run_id}")


@app.command()
def trigger(
    workflow: str = typer.Argument(..., help="Workflow key"),
    node_id: int | None = typer.Option(None, "--node"),
    document_id: int | None = typer.Option(None, "--document"),
    params: str | None = typer.Option(None, "--params", "-p", help="JSON object of parameters"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Trigger a workflow against one node or one document."""
    from relay.ops.requests import TriggerRunRequest
    from relay.ops.runs import trigger_run

    ctx, _ = make_context(database)
    request = TriggerRunRequest(
        workflow_key=workflow,
        node_id=node_id,
        document_id=document_id,
        parameters=parse_json_option(params, "--params"),
    )
    output_result(trigger_run(ctx, request), as_json=json_out, title="Trigger")


@app.command()
def cancel(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Cancel a pending or running run."""
    from relay.ops.runs import cancel_run

    ctx, _ = make_context(database)
    output_result(cancel_run(ctx, run_id), as_json=json_out, title="Cancel")


@app.command("force-terminate")
def force_terminate(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Mark a run failed regardless of what the engine reports."""
    from relay.ops.runs import force_terminate_run

    ctx, _ = make_context(database)
    output_result(force_terminate_run(ctx, run_id), as_json=json_out, title="Force Terminate")


@app.command()
def retry(
    run_id: str = typer.Argument(..., help="Run ID"),
    params: str | None = typer.Option(None, "--params", "-p", help="JSON parameter overrides"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Retry a failed or cancelled run."""
    from relay.ops.requests import RetryRunRequest
    from relay.ops.runs import retry_run

    ctx, _ = make_context(database)
    request = RetryRunRequest(run_id=run_id, parameters=parse_json_option(params, "--params"))
    output_result(retry_run(ctx, request), as_json=json_out, title="Retry")


@app.command()
def reap(
    threshold: int | None = typer.Option(None, "--threshold", "-t", help="Minutes; defaults to settings"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Force-terminate runs stuck past the zombie threshold."""
    from relay.ops.requests import ReapRequest
    from relay.ops.runs import reap_runs

    ctx, _ = make_context(database)
    output_result(reap_runs(ctx, ReapRequest(threshold_minutes=threshold)), as_json=json_out, title="Reap")


@app.command()
def cleanup(
    before: datetime | None = typer.Option(None, "--before", formats=_DATE_FORMATS),
    status: list[str] = typer.Option([], "--status", "-s", help="Repeatable; default terminal statuses"),
    workflow: str | None = typer.Option(None, "--workflow", "-w"),
    node_id: int | None = typer.Option(None, "--node"),
    document_id: int | None = typer.Option(None, "--document"),
    include_zombie: bool = typer.Option(False, "--include-zombie"),
    force_cleanup_active: bool = typer.Option(False, "--force-cleanup-active"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Delete old runs matching the filters."""
    from relay.ops.requests import CleanupRunsRequest
    from relay.ops.runs import cleanup_runs

    ctx, _ = make_context(database, dry_run=dry_run)
    request = CleanupRunsRequest(
        before=before,
        statuses=tuple(status),
        workflow_key=workflow,
        node_id=node_id,
        document_id=document_id,
        include_zombie=include_zombie,
        force_cleanup_active=force_cleanup_active,
        dry_run=dry_run,
    )
    output_result(cleanup_runs(ctx, request), as_json=json_out, title="Cleanup")
