"""
Root Typer application for the snapshot-spine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from snapshot_spine.core.logging import configure_logging

app = Typer(
    name="snapshot-spine",
    help="snapshot-spine: versioned keyword, demand and signal snapshots.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from snapshot_spine import __version__

        typer.echo(f"snapshot-spine {__version__}")
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
    log_level: str = typer.Option("WARNING", "--log-level", envvar="SNAPSPINE_LOG_LEVEL"),
    log_json: bool = typer.Option(False, "--log-json", help="Render logs as JSON on stderr."),
) -> None:
    """snapshot-spine CLI: resolve, run, repair and audit snapshots."""
    configure_logging(level=log_level, json_format=log_json)


# ── Sub-command registration ─────────────────────────────────────────────

from snapshot_spine.cli.audit import app as audit_app  # noqa: E402
from snapshot_spine.cli.pipeline import app as pipeline_app  # noqa: E402
from snapshot_spine.cli.repair import app as repair_app  # noqa: E402
from snapshot_spine.cli.resolve import app as resolve_app  # noqa: E402

app.add_typer(resolve_app, name="resolve", help="Resolve keyword, demand and signal snapshots.")
app.add_typer(pipeline_app, name="pipeline", help="Pipeline runs.")
app.add_typer(repair_app, name="repair", help="Repair poisoned outputs.")
app.add_typer(audit_app, name="audit", help="Integrity audits.")
