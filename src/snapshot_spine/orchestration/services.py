"""
DRY_RUN stand-ins for the pipeline collaborators.

Each stub satisfies its protocol from :mod:`snapshot_spine.core.protocols`
and returns a fixed payload, so a dry run exercises every store read and
stage transition without any external call.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from snapshot_spine.core.protocols import (
    DemandMetricsRunner,
    IntelligenceService,
    KeywordValidator,
    PlaybookService,
    ReportSynthesizer,
    ServiceReply,
)

DRY_RUN_DEMAND_ID = "DRY_RUN_DEMAND_ID"
DRY_RUN_REPORT_ID = "DRY_RUN_DD_ID"

DRY_RUN_INTELLIGENCE: dict[str, Any] = {"summary": "Dry Run Mock"}
DRY_RUN_DEMAND: dict[str, Any] = {"demand_index_mn": 100, "metric_scores": {"readiness": 5, "spread": 5}}
DRY_RUN_REPORT: dict[str, Any] = {"synthesis": {"consumerTruth": "Mock Truth"}}


class DryRunIntelligence:
    async def analyze(self, category_id: str, month: str, *, snapshot_id: str) -> ServiceReply:
        return ServiceReply.success(DRY_RUN_INTELLIGENCE)


class DryRunDemandRunner:
    async def run(
        self,
        category_id: str,
        month: str,
        *,
        corpus_snapshot_id: str,
        strategy: Mapping[str, Any] | None = None,
        force_recalculate: bool = False,
    ) -> ServiceReply:
        return ServiceReply.success(DRY_RUN_DEMAND)


class DryRunReportSynthesizer:
    async def synthesize(
        self,
        category_id: str,
        month: str,
        *,
        run_id: str,
        demand: Mapping[str, Any],
        signals: Sequence[Mapping[str, Any]],
    ) -> ServiceReply:
        return ServiceReply.success(DRY_RUN_REPORT)

    async def repair(self, report: Mapping[str, Any], missing: Sequence[str]) -> ServiceReply:
        return ServiceReply.success(report)


class DryRunPlaybook:
    async def generate(self, category_id: str, report: Mapping[str, Any]) -> ServiceReply:
        return ServiceReply.success({})


class PassThroughValidator:
    """Returns rows unchanged; used when no volume provider is configured."""

    async def validate(
        self, category_id: str, snapshot_id: str, rows: Sequence[Mapping[str, Any]]
    ) -> ServiceReply:
        return ServiceReply.success({"rows": [dict(r) for r in rows]})


@dataclass(frozen=True)
class PipelineServices:
    """The collaborator set one pipeline run uses."""

    intelligence: IntelligenceService
    demand: DemandMetricsRunner
    reports: ReportSynthesizer
    playbooks: PlaybookService
    validator: KeywordValidator

    @classmethod
    def dry_run(cls) -> PipelineServices:
        return cls(
            intelligence=DryRunIntelligence(),
            demand=DryRunDemandRunner(),
            reports=DryRunReportSynthesizer(),
            playbooks=DryRunPlaybook(),
            validator=PassThroughValidator(),
        )


__all__ = [
    "DRY_RUN_DEMAND",
    "DRY_RUN_DEMAND_ID",
    "DRY_RUN_INTELLIGENCE",
    "DRY_RUN_REPORT",
    "DRY_RUN_REPORT_ID",
    "DryRunDemandRunner",
    "DryRunIntelligence",
    "DryRunPlaybook",
    "DryRunReportSynthesizer",
    "PassThroughValidator",
    "PipelineServices",
]
