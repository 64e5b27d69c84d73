"""Integrity audit operation."""

from __future__ import annotations

from typing import Any

from snapshot_spine.audit.auditor import IntegrityAuditor
from snapshot_spine.ops._validate import check_target
from snapshot_spine.ops.context import OperationContext
from snapshot_spine.ops.requests import RunAuditRequest
from snapshot_spine.ops.result import OperationResult, start_timer


def run_audit(ctx: OperationContext, request: RunAuditRequest) -> OperationResult[dict[str, Any]]:
    """Audit one category and month.

    The auditor never raises, so this always succeeds; a NO_GO verdict is
    reported in the payload and its blocker messages become warnings.
    """
    timer = start_timer()
    if invalid := check_target(request.category_id, request.month, timer):
        return invalid
    auditor = IntegrityAuditor.from_settings(ctx.store, ctx.settings, ctx=ctx.resolution, telemetry=ctx.telemetry)
    report = auditor.run(request.category_id, request.month)
    warnings = [f"{b.code.value}: {b.message}" for b in report.blockers] + list(report.warnings)
    return OperationResult.ok(
        report.to_dict(),
        warnings=warnings,
        elapsed_ms=timer.elapsed_ms,
        metadata={"verdict": report.verdict},
    )
