"""
CLI: ``snapshot-spine repair`` commands.
"""

from __future__ import annotations

import asyncio

import typer

from snapshot_spine.cli.utils import make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command()
def demand(
    category: str = typer.Argument(..., help="Category id"),
    month: str = typer.Argument(..., help="Month key YYYY-MM"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report whether the output is poisoned"),
    database: str | None = typer.Option(None, "--database", "-d"),
    backend: str | None = typer.Option(None, "--backend", help="memory or sqlite"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Detect and rebuild a poisoned demand output."""
    from snapshot_spine.ops.pipeline import repair_demand
    from snapshot_spine.ops.requests import RepairDemandRequest

    ctx = make_context(database, backend=backend, dry_run=dry_run)
    result = asyncio.run(repair_demand(ctx, RepairDemandRequest(category_id=category, month=month)))
    output_result(result, as_json=json_out, title=f"Repair: {category} {month}")


@app.command()
def snapshot(
    category: str = typer.Argument(..., help="Category id"),
    month: str = typer.Argument(..., help="Month key YYYY-MM"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show which snapshot would be repaired"),
    database: str | None = typer.Option(None, "--database", "-d"),
    backend: str | None = typer.Option(None, "--backend", help="memory or sqlite"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Re-validate the active keyword snapshot and rebuild its demand output."""
    from snapshot_spine.ops.pipeline import repair_snapshot
    from snapshot_spine.ops.requests import RepairSnapshotRequest

    ctx = make_context(database, backend=backend, dry_run=dry_run)
    result = asyncio.run(repair_snapshot(ctx, RepairSnapshotRequest(category_id=category, month=month)))
    output_result(result, as_json=json_out, title=f"Snapshot repair: {category} {month}")
