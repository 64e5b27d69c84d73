"""
CLI: ``snapshot-spine audit`` commands.
"""

from __future__ import annotations

import typer
from rich.table import Table

from snapshot_spine.cli.utils import console, make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("run")
def run_audit(
    category: str = typer.Argument(..., help="Category id"),
    month: str = typer.Argument(..., help="Month key YYYY-MM"),
    strict: bool = typer.Option(False, "--strict", help="Exit 2 on a NO_GO verdict"),
    database: str | None = typer.Option(None, "--database", "-d"),
    backend: str | None = typer.Option(None, "--backend", help="memory or sqlite"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run the integrity audit for a category and month."""
    from snapshot_spine.ops.audit import run_audit as _audit
    from snapshot_spine.ops.requests import RunAuditRequest

    ctx = make_context(database, backend=backend)
    result = _audit(ctx, RunAuditRequest(category_id=category, month=month))
    verdict = result.metadata.get("verdict", "NO_GO")

    if json_out:
        output_result(result, as_json=True)
    else:
        colour = "green" if verdict == "GO" else "red"
        console.print(f"[bold]Verdict:[/bold] [{colour}]{verdict}[/{colour}]")
        blockers = (result.data or {}).get("blockers", [])
        if blockers:
            table = Table(title="Blockers", pad_edge=False)
            table.add_column("code")
            table.add_column("message", overflow="fold")
            table.add_column("remediation", overflow="fold")
            for b in blockers:
                table.add_row(b["code"], b["message"], "; ".join(b.get("remediation") or []))
            console.print(table)
        for warning in (result.data or {}).get("warnings", []):
            console.print(f"[yellow]warning[/yellow] {warning}")

    if strict and verdict != "GO":
        raise typer.Exit(code=2)
