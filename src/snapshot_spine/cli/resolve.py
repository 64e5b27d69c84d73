"""
CLI: ``snapshot-spine resolve`` commands.
"""

from __future__ import annotations

import typer

from snapshot_spine.cli.utils import make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command()
def keywords(
    category: str = typer.Argument(..., help="Category id"),
    database: str | None = typer.Option(None, "--database", "-d"),
    backend: str | None = typer.Option(None, "--backend", help="memory or sqlite"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Resolve the active keyword snapshot for a category."""
    from snapshot_spine.ops.requests import ResolveKeywordsRequest
    from snapshot_spine.ops.resolution import resolve_keywords

    ctx = make_context(database, backend=backend)
    result = resolve_keywords(ctx, ResolveKeywordsRequest(category_id=category))
    output_result(result, as_json=json_out, title=f"Keywords: {category}")


@app.command()
def demand(
    category: str = typer.Argument(..., help="Category id"),
    month: str = typer.Argument(..., help="Month key YYYY-MM"),
    database: str | None = typer.Option(None, "--database", "-d"),
    backend: str | None = typer.Option(None, "--backend", help="memory or sqlite"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Resolve the demand snapshot for a category and month."""
    from snapshot_spine.ops.requests import ResolveDemandRequest
    from snapshot_spine.ops.resolution import resolve_demand

    ctx = make_context(database, backend=backend)
    result = resolve_demand(ctx, ResolveDemandRequest(category_id=category, month=month))
    output_result(result, as_json=json_out, title=f"Demand: {category} {month}")


@app.command()
def signals(
    category: str = typer.Argument(..., help="Category id"),
    month: str = typer.Argument(..., help="Month key YYYY-MM"),
    build: bool = typer.Option(False, "--build", help="Build a corpus snapshot when none exists"),
    database: str | None = typer.Option(None, "--database", "-d"),
    backend: str | None = typer.Option(None, "--backend", help="memory or sqlite"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Resolve the signal corpus for a category and month."""
    from snapshot_spine.ops.requests import ResolveSignalsRequest
    from snapshot_spine.ops.resolution import resolve_signals

    ctx = make_context(database, backend=backend, dry_run=dry_run)
    request = ResolveSignalsRequest(category_id=category, month=month, build_if_missing=build)
    result = resolve_signals(ctx, request)
    output_result(result, as_json=json_out, title=f"Signals: {category} {month}")
