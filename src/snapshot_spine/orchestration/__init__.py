"""Ordered pipeline runs, run heartbeats and the report telemetry bus."""

from snapshot_spine.orchestration.heartbeat import Heartbeat
from snapshot_spine.orchestration.models import (
    STAGES,
    PipelineArtifacts,
    PipelineMode,
    PipelineOptions,
    PipelineRunResult,
    PipelineTier,
    RunStatus,
    StageRecord,
    StageStatus,
    Verdict,
)
from snapshot_spine.orchestration.pipeline import PipelineOrchestrator
from snapshot_spine.orchestration.services import PipelineServices
from snapshot_spine.orchestration.telemetry import TelemetryBus, TelemetryEvent, TelemetryPhase

__all__ = [
    "STAGES",
    "Heartbeat",
    "PipelineArtifacts",
    "PipelineMode",
    "PipelineOptions",
    "PipelineOrchestrator",
    "PipelineRunResult",
    "PipelineServices",
    "PipelineTier",
    "RunStatus",
    "StageRecord",
    "StageStatus",
    "TelemetryBus",
    "TelemetryEvent",
    "TelemetryPhase",
    "Verdict",
]
