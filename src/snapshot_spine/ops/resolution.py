"""
Resolution operations.

Thin wrappers over the keyword, demand and signal resolvers. A resolver
that finds nothing is still a successful operation call: the payload
carries ``ok=False`` and the reason, and the envelope carries a warning.
"""

from __future__ import annotations

from typing import Any

from snapshot_spine.core.logging import get_logger
from snapshot_spine.ops._validate import check_target
from snapshot_spine.ops.context import OperationContext
from snapshot_spine.ops.requests import ResolveDemandRequest, ResolveKeywordsRequest, ResolveSignalsRequest
from snapshot_spine.ops.result import OperationResult, start_timer
from snapshot_spine.resolution.demand import DemandSnapshotResolver
from snapshot_spine.resolution.keywords import KeywordSnapshotResolver
from snapshot_spine.resolution.signals import SignalSnapshotResolver

logger = get_logger(__name__)


def resolve_keywords(ctx: OperationContext, request: ResolveKeywordsRequest) -> OperationResult[dict[str, Any]]:
    """Active keyword snapshot for a category."""
    timer = start_timer()
    if invalid := check_target(request.category_id, None, timer, month_required=False):
        return invalid
    try:
        resolver = KeywordSnapshotResolver(ctx.store, heal=not ctx.dry_run)
        resolved = resolver.resolve(request.category_id, ctx.resolution)
    except Exception as exc:
        logger.exception("op_failed", op="resolve_keywords", error=str(exc), **ctx.log_fields())
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
    warnings = [] if resolved.ok else [resolved.reason or "No active keyword snapshot"]
    return OperationResult.ok(resolved.to_dict(), warnings=warnings, elapsed_ms=timer.elapsed_ms)


def resolve_demand(ctx: OperationContext, request: ResolveDemandRequest) -> OperationResult[dict[str, Any]]:
    """Demand snapshot for a category and month through the fallback ladder."""
    timer = start_timer()
    if invalid := check_target(request.category_id, request.month, timer):
        return invalid
    try:
        resolved = DemandSnapshotResolver(ctx.store).resolve(request.category_id, request.month, ctx.resolution)
    except Exception as exc:
        logger.exception("op_failed", op="resolve_demand", error=str(exc), **ctx.log_fields())
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
    warnings = []
    if not resolved.ok:
        warnings.append(resolved.reason or "Demand snapshot missing")
    elif resolved.mode == "LATEST_ANY" and resolved.reason:
        warnings.append(resolved.reason)
    return OperationResult.ok(resolved.to_dict(), warnings=warnings, elapsed_ms=timer.elapsed_ms)


def resolve_signals(ctx: OperationContext, request: ResolveSignalsRequest) -> OperationResult[dict[str, Any]]:
    """Signal corpus for a category and month; builds one only when asked and not a dry run."""
    timer = start_timer()
    if invalid := check_target(request.category_id, request.month, timer):
        return invalid
    build = request.build_if_missing and not ctx.dry_run
    try:
        resolved = SignalSnapshotResolver(ctx.store).resolve(
            request.category_id, request.month, ctx.resolution, build_if_missing=build
        )
    except Exception as exc:
        logger.exception("op_failed", op="resolve_signals", error=str(exc), **ctx.log_fields())
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
    warnings = []
    if request.build_if_missing and ctx.dry_run:
        warnings.append("Dry run: corpus build skipped")
    if not resolved.ok:
        warnings.append(resolved.reason or "No signal corpus")
    return OperationResult.ok(resolved.to_dict(), warnings=warnings, elapsed_ms=timer.elapsed_ms)
