"""
CLI utility helpers: context construction and output formatting.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from snapshot_spine.core.settings import SnapshotSpineSettings
from snapshot_spine.ops.context import OperationContext
from snapshot_spine.ops.result import OperationResult

console = Console()
err_console = Console(stderr=True)


# ── Context helper ───────────────────────────────────────────────────────


def make_context(
    database: str | None = None,
    *,
    backend: str | None = None,
    dry_run: bool = False,
) -> OperationContext:
    """Create an ``OperationContext`` for CLI commands.

    ``--database`` points the sqlite backend at a file; ``--backend``
    overrides ``SNAPSPINE_STORE_BACKEND``. Everything else comes from the
    environment.
    """
    overrides: dict[str, Any] = {}
    if database:
        overrides["sqlite_path"] = Path(database)
        overrides["store_backend"] = "sqlite"
    if backend:
        overrides["store_backend"] = backend
    settings = SnapshotSpineSettings(**overrides)
    return OperationContext.from_settings(settings, caller="cli", dry_run=dry_run)


# ── Output helpers ───────────────────────────────────────────────────────


def output_result(
    result: OperationResult,
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render an ``OperationResult`` to the terminal; exit 1 on failure."""
    if as_json:
        console.print_json(json.dumps(result.to_dict(), default=str))
        if not result.success:
            raise typer.Exit(code=1)
        return

    if result.data is not None:
        _print_dict(result.data, title=title)
    for warning in result.warnings:
        console.print(f"[yellow]warning[/yellow] {warning}")

    if not result.success:
        err = result.error
        msg = err.message if err else "Unknown error"
        code = err.code if err else "ERROR"
        err_console.print(f"[bold red]Error[/bold red] ({code}): {msg}")
        raise typer.Exit(code=1)


def output_stages(stages: list[dict[str, Any]], *, title: str = "Stages") -> None:
    """Render pipeline stage records as a Rich table."""
    if not stages:
        console.print("[dim]No stages executed.[/dim]")
        return
    table = Table(title=title, show_lines=False, pad_edge=False)
    for col in ("stage", "name", "status", "durationMs", "error"):
        table.add_column(col, overflow="fold")
    for stage in stages:
        status = stage.get("status", "")
        style = "green" if status == "COMPLETED" else "red" if status == "FAILED" else ""
        table.add_row(
            stage.get("stage", ""),
            stage.get("name", ""),
            f"[{style}]{status}[/{style}]" if style else status,
            str(stage.get("durationMs") if stage.get("durationMs") is not None else ""),
            stage.get("error") or "",
        )
    console.print(table)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs; nested values as compact JSON."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        if isinstance(v, dict | list):
            v = json.dumps(v, default=str)
        console.print(f"  [cyan]{k}[/cyan]: {v}", soft_wrap=True)
