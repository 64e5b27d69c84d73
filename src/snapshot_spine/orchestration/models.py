"""
Pipeline run models.

Pure data structures with no store access. ``PipelineRunResult.to_dict()``
is the payload written to ``pipeline_runs/{runId}.result`` on completion
and printed by the CLI.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from snapshot_spine.core.hashing import CategoryDefinition


class PipelineMode(str, Enum):
    """FULL_RUN calls every collaborator; DRY_RUN substitutes stub payloads."""

    FULL_RUN = "FULL_RUN"
    DRY_RUN = "DRY_RUN"


class PipelineTier(str, Enum):
    LITE = "LITE"
    FULL = "FULL"


class Verdict(str, Enum):
    GO = "GO"
    WARN = "WARN"
    NO_GO = "NO_GO"


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class StageStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


STAGES: tuple[str, ...] = ("S1", "S2", "S3", "S4", "S5", "S6", "S7", "S8", "S9", "S10", "S11")

STAGE_NAMES: dict[str, str] = {
    "S1": "Corpus snapshot loaded",
    "S2": "Corpus rows readable",
    "S3": "Category intelligence",
    "S4": "Demand snapshot resolved",
    "S5": "Demand computed",
    "S6": "Demand output persisted",
    "S7": "Signals resolved",
    "S8": "Report inputs bound",
    "S9": "Report synthesized",
    "S10": "Report persisted",
    "S11": "Playbook",
}


@dataclass(frozen=True)
class PipelineOptions:
    """
    Attributes:
        category_id: Category to run
        month: Target ``YYYY-MM``; defaults to the current month
        tier: LITE or FULL
        mode: FULL_RUN or DRY_RUN
        job_id: Optional external job id, echoed on the run document
        registry: Category taxonomy fingerprinted for drift detection
    """

    category_id: str
    month: str | None = None
    tier: PipelineTier = PipelineTier.LITE
    mode: PipelineMode = PipelineMode.FULL_RUN
    job_id: str | None = None
    registry: Sequence[CategoryDefinition] = ()

    @property
    def dry_run(self) -> bool:
        return self.mode == PipelineMode.DRY_RUN

    def to_dict(self) -> dict[str, Any]:
        return {
            "categoryId": self.category_id,
            "month": self.month,
            "tier": self.tier.value,
            "mode": self.mode.value,
            "jobId": self.job_id,
        }


@dataclass
class PipelineArtifacts:
    corpus_snapshot_id: str = ""
    cna_result_id: str = ""
    demand_snapshot_id: str = ""
    signal_snapshot_id: str | None = None
    report_result_id: str = ""
    report_snapshot_id: str = ""
    playbook_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "corpusSnapshotId": self.corpus_snapshot_id,
            "cnaResultId": self.cna_result_id,
            "demandSnapshotId": self.demand_snapshot_id,
            "signalSnapshotId": self.signal_snapshot_id,
            "deepDiveResultId": self.report_result_id,
            "deepDiveSnapshotId": self.report_snapshot_id,
            "playbookId": self.playbook_id,
        }


@dataclass
class StageRecord:
    stage: str
    status: StageStatus = StageStatus.RUNNING
    started_at: str | None = None
    completed_at: str | None = None
    duration_ms: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "name": STAGE_NAMES.get(self.stage, self.stage),
            "status": self.status.value,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "durationMs": self.duration_ms,
            "error": self.error,
        }


@dataclass
class PipelineRunResult:
    run_id: str
    category_id: str
    month: str
    verdict: Verdict = Verdict.GO
    status: RunStatus = RunStatus.RUNNING
    artifacts: PipelineArtifacts = field(default_factory=PipelineArtifacts)
    stages: list[StageRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)
    timings_ms: dict[str, int] = field(default_factory=dict)
    registry_fingerprint: str | None = None

    @property
    def executed_stages(self) -> list[str]:
        return [s.stage for s in self.stages]

    def stage(self, name: str) -> StageRecord | None:
        return next((s for s in self.stages if s.stage == name), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "categoryId": self.category_id,
            "month": self.month,
            "verdict": self.verdict.value,
            "status": self.status.value,
            "artifacts": self.artifacts.to_dict(),
            "stages": [s.to_dict() for s in self.stages],
            "warnings": list(self.warnings),
            "blockers": list(self.blockers),
            "timingsMs": dict(self.timings_ms),
            "registryFingerprint": self.registry_fingerprint,
        }


__all__ = [
    "STAGES",
    "STAGE_NAMES",
    "PipelineArtifacts",
    "PipelineMode",
    "PipelineOptions",
    "PipelineRunResult",
    "PipelineTier",
    "RunStatus",
    "StageRecord",
    "StageStatus",
    "Verdict",
]
