"""
Operations layer for snapshot-spine.

Typed request/response functions over the resolvers, the pipeline, the
repair services and the auditor, with consistent patterns:

- All functions accept ``OperationContext`` as first argument
- All functions return ``OperationResult[T]`` (never raise)
- All functions are transport-agnostic (no CLI knowledge)
- All functions honour ``dry_run``

Usage::

    from snapshot_spine.ops import OperationContext
    from snapshot_spine.ops.requests import ResolveDemandRequest
    from snapshot_spine.ops.resolution import resolve_demand

    ctx = OperationContext.from_settings()
    result = resolve_demand(ctx, ResolveDemandRequest("shampoo", "2025-12"))
    assert result.success
"""

from snapshot_spine.ops.audit import run_audit
from snapshot_spine.ops.context import OperationContext
from snapshot_spine.ops.pipeline import repair_demand, repair_snapshot, run_pipeline
from snapshot_spine.ops.resolution import resolve_demand, resolve_keywords, resolve_signals
from snapshot_spine.ops.result import OperationError, OperationResult

__all__ = [
    "OperationContext",
    "OperationError",
    "OperationResult",
    "repair_demand",
    "repair_snapshot",
    "resolve_demand",
    "resolve_keywords",
    "resolve_signals",
    "run_audit",
    "run_pipeline",
]
