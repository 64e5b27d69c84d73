"""
CLI: ``snapshot-spine pipeline`` commands.
"""

from __future__ import annotations

import asyncio

import typer

from snapshot_spine.cli.utils import make_context, output_result, output_stages

app = typer.Typer(no_args_is_help=True)


@app.command("run")
def run_pipeline(
    category: str = typer.Argument(..., help="Category id"),
    month: str | None = typer.Option(None, "--month", "-m", help="Month key YYYY-MM (default: current)"),
    tier: str = typer.Option("LITE", "--tier", help="LITE or FULL"),
    job_id: str | None = typer.Option(None, "--job-id"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Use stub collaborators; no output writes"),
    database: str | None = typer.Option(None, "--database", "-d"),
    backend: str | None = typer.Option(None, "--backend", help="memory or sqlite"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run the snapshot pipeline for one category."""
    from snapshot_spine.ops.pipeline import run_pipeline as _run
    from snapshot_spine.ops.requests import RunPipelineRequest
    from snapshot_spine.orchestration.models import PipelineTier

    try:
        pipeline_tier = PipelineTier(tier.upper())
    except ValueError:
        raise typer.BadParameter(f"tier must be LITE or FULL, got {tier!r}") from None

    ctx = make_context(database, backend=backend, dry_run=dry_run)
    request = RunPipelineRequest(category_id=category, month=month, tier=pipeline_tier, job_id=job_id)
    result = asyncio.run(_run(ctx, request))
    if not json_out and result.data:
        output_stages(result.data.get("stages", []), title=f"Run {result.data.get('runId')}")
    output_result(result, as_json=json_out, title="Pipeline")
