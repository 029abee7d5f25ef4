"""
CLI: ``relay batches``, bulk execution over a node subtree.

``execute`` and ``sync`` run the batch loop in this process and return
when every item has been dispatched.
"""

from __future__ import annotations

import typer

from relay.cli.utils import make_context, output_paged, output_result, parse_json_option

app = typer.Typer(no_args_is_help=True)


def _filters(
    include_descendants: bool,
    skip_no_source: bool,
    skip_no_output: bool,
    skip_name_contains: str | None,
    skip_doc_type: list[str],
):
    from relay.ops.requests import BatchFilters

    return BatchFilters(
        include_descendants=include_descendants,
        skip_no_source=skip_no_source,
        skip_no_output=skip_no_output,
        skip_name_contains=skip_name_contains,
        skip_doc_types=tuple(skip_doc_type),
    )


@app.command()
def preview(
    root_node_id: int = typer.Argument(..., help="Root node ID"),
    workflow: str | None = typer.Option(None, "--workflow", "-w"),
    include_descendants: bool = typer.Option(True, "--descendants/--no-descendants"),
    skip_no_source: bool = typer.Option(True, "--skip-no-source/--keep-no-source"),
    skip_no_output: bool = typer.Option(False, "--skip-no-output"),
    skip_name_contains: str | None = typer.Option(None, "--skip-name-contains"),
    skip_doc_type: list[str] = typer.Option([], "--skip-doc-type", help="Repeatable"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show which nodes a batch would run against, without creating anything."""
    from relay.ops.batches import preview_batch
    from relay.ops.requests import PreviewBatchRequest

    ctx, _ = make_context(database)
    request = PreviewBatchRequest(
        root_node_id=root_node_id,
        workflow_key=workflow,
        filters=_filters(include_descendants, skip_no_source, skip_no_output, skip_name_contains, skip_doc_type),
    )
    output_result(preview_batch(ctx, request), as_json=json_out, title="Batch Preview")


@app.command()
def execute(
    root_node_id: int = typer.Argument(..., help="Root node ID"),
    workflow: str = typer.Option(..., "--workflow", "-w"),
    concurrency: int | None = typer.Option(None, "--concurrency", "-c"),
    params: str | None = typer.Option(None, "--params", "-p", help="JSON object of parameters"),
    include_descendants: bool = typer.Option(True, "--descendants/--no-descendants"),
    skip_no_source: bool = typer.Option(True, "--skip-no-source/--keep-no-source"),
    skip_no_output: bool = typer.Option(False, "--skip-no-output"),
    skip_name_contains: str | None = typer.Option(None, "--skip-name-contains"),
    skip_doc_type: list[str] = typer.Option([], "--skip-doc-type", help="Repeatable"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run a workflow over every eligible node under the root."""
    from relay.ops.batches import execute_batch
    from relay.ops.requests import ExecuteBatchRequest

    ctx, _ = make_context(database)
    request = ExecuteBatchRequest(
        root_node_id=root_node_id,
        workflow_key=workflow,
        filters=_filters(include_descendants, skip_no_source, skip_no_output, skip_name_contains, skip_doc_type),
        parameters=parse_json_option(params, "--params"),
        concurrency=concurrency,
    )
    output_result(execute_batch(ctx, request), as_json=json_out, title="Batch")


@app.command()
def sync(
    root_node_id: int = typer.Argument(..., help="Root node ID"),
    concurrency: int | None = typer.Option(None, "--concurrency", "-c"),
    include_descendants: bool = typer.Option(True, "--descendants/--no-descendants"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Sync every document under the root."""
    from relay.ops.batches import execute_sync_batch
    from relay.ops.requests import SyncBatchRequest

    ctx, _ = make_context(database)
    request = SyncBatchRequest(
        root_node_id=root_node_id, include_descendants=include_descendants, concurrency=concurrency
    )
    output_result(execute_sync_batch(ctx, request), as_json=json_out, title="Sync Batch")


@app.command("list")
def list_batches(
    kind: str | None = typer.Option(None, "--kind", "-k", help="workflow | sync"),
    status: str | None = typer.Option(None, "--status", "-s"),
    limit: int = typer.Option(20, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List batches, newest first."""
    from relay.ops.batches import list_batches as _list
    from relay.ops.requests import ListBatchesRequest

    ctx, _ = make_context(database)
    request = ListBatchesRequest(kind=kind, status=status, limit=limit, offset=offset)
    output_paged(_list(ctx, request), as_json=json_out, title="Batches")


@app.command("show")
def show_batch(
    batch_id: str = typer.Argument(..., help="Batch ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a batch with its counters and item list."""
    from relay.ops.batches import get_batch

    ctx, _ = make_context(database)
    output_result(get_batch(ctx, batch_id), as_json=json_out, title=f"Batch: {batch_id}")


@app.command()
def cancel(
    batch_id: str = typer.Argument(..., help="Batch ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Stop a running batch from dispatching further items."""
    from relay.ops.batches import cancel_batch

    ctx, _ = make_context(database)
    output_result(cancel_batch(ctx, batch_id), as_json=json_out, title="Cancel")
