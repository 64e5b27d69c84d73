"""
Typed request objects for operations.

Each dataclass is the input contract for one operation function. Requests
carry only validated, transport-agnostic data, never raw typer params.
"""

from __future__ import annotations

from dataclasses import dataclass

from snapshot_spine.orchestration.models import PipelineTier


@dataclass(frozen=True, slots=True)
class ResolveKeywordsRequest:
    """Request for :func:`snapshot_spine.ops.resolution.resolve_keywords`."""

    category_id: str = ""


@dataclass(frozen=True, slots=True)
class ResolveDemandRequest:
    """Request for :func:`snapshot_spine.ops.resolution.resolve_demand`."""

    category_id: str = ""
    month: str = ""


@dataclass(frozen=True, slots=True)
class ResolveSignalsRequest:
    """Request for :func:`snapshot_spine.ops.resolution.resolve_signals`.

    Attributes:
        build_if_missing: Build a corpus snapshot from the harvester
            collection when neither the exact nor the current month has one.
    """

    category_id: str = ""
    month: str = ""
    build_if_missing: bool = False


@dataclass(frozen=True, slots=True)
class RunPipelineRequest:
    """Request for :func:`snapshot_spine.ops.pipeline.run_pipeline`."""

    category_id: str = ""
    month: str | None = None
    tier: PipelineTier = PipelineTier.LITE
    job_id: str | None = None


@dataclass(frozen=True, slots=True)
class RepairDemandRequest:
    """Request for :func:`snapshot_spine.ops.pipeline.repair_demand`."""

    category_id: str = ""
    month: str = ""


@dataclass(frozen=True, slots=True)
class RepairSnapshotRequest:
    """Request for :func:`snapshot_spine.ops.pipeline.repair_snapshot`."""

    category_id: str = ""
    month: str = ""


@dataclass(frozen=True, slots=True)
class RunAuditRequest:
    """Request for :func:`snapshot_spine.ops.audit.run_audit`."""

    category_id: str = ""
    month: str = ""
