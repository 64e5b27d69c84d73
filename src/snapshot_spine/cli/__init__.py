"""
CLI layer for snapshot-spine.

Provides a Typer application with sub-commands that delegate to the
operations layer (``snapshot_spine.ops``). All business logic lives in
ops; this package handles only argument parsing and terminal output.

Entry point::

    snapshot-spine --help
"""

from snapshot_spine.cli.app import app

__all__ = ["app"]
