"""
Pipeline and repair operations.

All are async because the orchestrator and repair services are. A dry run
swaps in the stub collaborators for the pipeline. For the repairs it only
reports what would be touched and writes nothing.
"""

from __future__ import annotations

from typing import Any

from snapshot_spine.core.errors import DocumentNotFoundError
from snapshot_spine.core.logging import get_logger
from snapshot_spine.ops._validate import check_target
from snapshot_spine.ops.context import OperationContext
from snapshot_spine.ops.requests import RepairDemandRequest, RepairSnapshotRequest, RunPipelineRequest
from snapshot_spine.ops.result import OperationResult, start_timer
from snapshot_spine.orchestration.models import PipelineMode, PipelineOptions, RunStatus
from snapshot_spine.orchestration.pipeline import PipelineOrchestrator
from snapshot_spine.orchestration.services import PipelineServices
from snapshot_spine.repair.demand import DemandSnapshotRepairService, RepairAction, is_poisoned_output
from snapshot_spine.repair.snapshot import SnapshotRepairService
from snapshot_spine.resolution.keywords import KeywordSnapshotResolver
from snapshot_spine.snapshots.demand_output import DemandOutputStore, headline_value
from snapshot_spine.snapshots.volume_cache import CachedVolumeValidator, VolumeCache

logger = get_logger(__name__)

NOT_CONFIGURED_MESSAGE = "No collaborator services configured; pass services or use a dry run"


async def run_pipeline(ctx: OperationContext, request: RunPipelineRequest) -> OperationResult[dict[str, Any]]:
    """Run the snapshot pipeline for one category.

    The payload is the run result document. A run that ends FAILED is
    returned as a failure envelope that still carries the payload, so
    callers can show the blockers and executed stages.
    """
    timer = start_timer()
    if invalid := check_target(request.category_id, request.month, timer, month_required=False):
        return invalid

    if ctx.dry_run:
        services = PipelineServices.dry_run()
    elif ctx.services is not None:
        services = ctx.services
    else:
        return OperationResult.fail("NOT_CONFIGURED", NOT_CONFIGURED_MESSAGE, elapsed_ms=timer.elapsed_ms)

    options = PipelineOptions(
        category_id=request.category_id,
        month=request.month,
        tier=request.tier,
        mode=PipelineMode.DRY_RUN if ctx.dry_run else PipelineMode.FULL_RUN,
        job_id=request.job_id,
    )
    orchestrator = PipelineOrchestrator.from_settings(
        ctx.store, services, ctx.settings, ctx=ctx.resolution, telemetry=ctx.telemetry
    )
    try:
        result = await orchestrator.run(options)
    except Exception as exc:
        logger.exception("op_failed", op="run_pipeline", error=str(exc), **ctx.log_fields())
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)

    payload = result.to_dict()
    if result.status != RunStatus.COMPLETED:
        message = "; ".join(result.blockers) or "Pipeline run failed"
        return OperationResult.fail(
            "PIPELINE_FAILED",
            message,
            data=payload,
            details={"runId": result.run_id},
            warnings=list(result.warnings),
            elapsed_ms=timer.elapsed_ms,
        )
    return OperationResult.ok(payload, warnings=list(result.warnings), elapsed_ms=timer.elapsed_ms)


def _preview_repair(ctx: OperationContext, request: RepairDemandRequest) -> dict[str, Any]:
    outputs = DemandOutputStore(ctx.store, version=ctx.resolution.output_version)
    read = outputs.read_raw(ctx.resolution.key(request.category_id), request.month)
    if read.is_err():
        if isinstance(read.error, DocumentNotFoundError):
            return {"ok": True, "action": RepairAction.NO_OP.value, "notes": ["No existing demand snapshot found."]}
        raise read.error
    doc = read.data
    poisoned = is_poisoned_output(doc)
    return {
        "ok": True,
        "action": "WOULD_REBUILD" if poisoned else RepairAction.NO_OP.value,
        "previousSnapshotId": doc.get("docId") or outputs.doc_id(request.category_id, request.month),
        "notes": [f"Lifecycle {doc.get('lifecycle')}, demand {headline_value(doc)}, poisoned={poisoned}"],
    }


async def repair_demand(ctx: OperationContext, request: RepairDemandRequest) -> OperationResult[dict[str, Any]]:
    """Detect and rebuild a poisoned demand output."""
    timer = start_timer()
    if invalid := check_target(request.category_id, request.month, timer):
        return invalid

    try:
        if ctx.dry_run:
            return OperationResult.ok(_preview_repair(ctx, request), elapsed_ms=timer.elapsed_ms)
        if ctx.services is None:
            return OperationResult.fail("NOT_CONFIGURED", NOT_CONFIGURED_MESSAGE, elapsed_ms=timer.elapsed_ms)
        service = DemandSnapshotRepairService(ctx.store, ctx.services.demand, ctx=ctx.resolution)
        outcome = await service.rebuild(request.category_id, request.month)
    except Exception as exc:
        logger.exception("op_failed", op="repair_demand", error=str(exc), **ctx.log_fields())
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)

    if outcome.action == RepairAction.FAILED:
        return OperationResult.fail(
            "REPAIR_FAILED",
            outcome.notes[-1] if outcome.notes else "Repair failed",
            data=outcome.to_dict(),
            elapsed_ms=timer.elapsed_ms,
        )
    warnings = outcome.notes[-1:] if not outcome.ok else []
    return OperationResult.ok(outcome.to_dict(), warnings=warnings, elapsed_ms=timer.elapsed_ms)


async def repair_snapshot(ctx: OperationContext, request: RepairSnapshotRequest) -> OperationResult[dict[str, Any]]:
    """Re-validate the active keyword snapshot, recompute demand and persist the output.

    A dry run resolves the snapshot that would be repaired without healing
    the pointer or touching rows.
    """
    timer = start_timer()
    if invalid := check_target(request.category_id, request.month, timer):
        return invalid

    try:
        if ctx.dry_run:
            active = KeywordSnapshotResolver(ctx.store, heal=False).resolve(request.category_id, ctx.resolution)
            if not active.ok:
                return OperationResult.ok(
                    {"ok": False, "log": [], "error": "No active snapshot found."},
                    warnings=["No active snapshot found."],
                    elapsed_ms=timer.elapsed_ms,
                )
            preview = {
                "ok": True,
                "snapshotId": active.snapshot_id,
                "log": [f"[PREVIEW] Would repair {active.snapshot_id}"],
            }
            return OperationResult.ok(preview, elapsed_ms=timer.elapsed_ms)
        if ctx.services is None:
            return OperationResult.fail("NOT_CONFIGURED", NOT_CONFIGURED_MESSAGE, elapsed_ms=timer.elapsed_ms)
        cache = VolumeCache(
            ctx.store,
            country=ctx.resolution.country,
            language=ctx.resolution.language,
            location_code=ctx.settings.volume_location_code,
            ttl_days=ctx.settings.volume_ttl_days,
            fanout_batch_size=ctx.settings.fanout_batch_size,
            batch_limit=ctx.settings.batch_limit,
        )
        validator = CachedVolumeValidator(cache, ctx.services.validator)
        service = SnapshotRepairService(ctx.store, validator, ctx.services.demand, ctx=ctx.resolution)
        report = await service.run(request.category_id, request.month)
    except Exception as exc:
        logger.exception("op_failed", op="repair_snapshot", error=str(exc), **ctx.log_fields())
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)

    if not report.ok:
        return OperationResult.fail(
            "REPAIR_FAILED",
            report.error or "Snapshot repair failed",
            data=report.to_dict(),
            elapsed_ms=timer.elapsed_ms,
        )
    return OperationResult.ok(report.to_dict(), elapsed_ms=timer.elapsed_ms)
