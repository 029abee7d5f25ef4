"""
CLI: ``relay workflows``, workflow definition commands.
"""

from __future__ import annotations

import typer

from relay.cli.utils import make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_workflows(
    source: str | None = typer.Option(None, "--source", help="engine | manual"),
    workflow_type: str | None = typer.Option(None, "--type", "-t", help="node | document"),
    sync_status: str | None = typer.Option(None, "--sync-status"),
    enabled: bool | None = typer.Option(None, "--enabled/--disabled"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List workflow definitions."""
    from relay.ops.requests import ListWorkflowsRequest
    from relay.ops.workflows import list_workflows as _list

    ctx, _ = make_context(database)
    request = ListWorkflowsRequest(
        source=source, workflow_type=workflow_type, sync_status=sync_status, enabled=enabled
    )
    output_paged(_list(ctx, request), as_json=json_out, title="Workflows")


@app.command("show")
def show_workflow(
    key: str = typer.Argument(..., help="Workflow key"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a workflow definition."""
    from relay.ops.workflows import get_workflow

    ctx, _ = make_context(database)
    output_result(get_workflow(ctx, key), as_json=json_out, title=f"Workflow: {key}")


@app.command()
def register(
    key: str = typer.Argument(..., help="Workflow key"),
    deployment: str = typer.Option(..., "--deployment", help="Engine deployment name"),
    workflow_type: str = typer.Option("node", "--type", "-t", help="node | document"),
    name: str | None = typer.Option(None, "--name"),
    description: str | None = typer.Option(None, "--description"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Register (or update) a manually managed workflow."""
    from relay.ops.requests import RegisterWorkflowRequest
    from relay.ops.workflows import register_workflow

    ctx, _ = make_context(database)
    request = RegisterWorkflowRequest(
        workflow_key=key,
        deployment_name=deployment,
        workflow_type=workflow_type,
        name=name,
        description=description,
    )
    output_result(register_workflow(ctx, request), as_json=json_out, title="Registered")


@app.command()
def enable(
    key: str = typer.Argument(..., help="Workflow key"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Enable a workflow."""
    from relay.ops.workflows import set_workflow_enabled

    ctx, _ = make_context(database)
    output_result(set_workflow_enabled(ctx, key, True), as_json=json_out, title="Enabled")


@app.command()
def disable(
    key: str = typer.Argument(..., help="Workflow key"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Disable a workflow; triggers are rejected until re-enabled."""
    from relay.ops.workflows import set_workflow_enabled

    ctx, _ = make_context(database)
    output_result(set_workflow_enabled(ctx, key, False), as_json=json_out, title="Disabled")


@app.command()
def sync(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Reconcile definitions with the engine's deployments."""
    from relay.ops.workflows import sync_workflows

    ctx, _ = make_context(database)
    output_result(sync_workflows(ctx), as_json=json_out, title="Workflow Sync")
