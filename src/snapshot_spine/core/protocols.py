"""
Collaborator contracts for the compute services the snapshot subsystem calls.

The pipeline, the repair services and the CLI never talk to an LLM, a
metrics engine or a keyword validator directly. They depend on the shapes
below, so the real services, the DRY_RUN stubs and test fakes are
interchangeable.

Manifesto:
    Every call returns a :class:`ServiceReply` instead of raising for an
    expected failure ("quota exhausted", "model refused"). The caller
    decides whether a failed reply is a blocker, a warning, or a repair
    outcome.

Architecture:
    ::

        protocols.py
        ├── ServiceReply          ok / data / error envelope
        ├── IntelligenceService   category pre-analysis (pipeline S3)
        ├── DemandMetricsRunner   demand computation (pipeline S5, repair)
        ├── ReportSynthesizer     report synthesis + bounded repair (S9)
        ├── PlaybookService       playbook generation (S11)
        └── KeywordValidator      row re-validation (snapshot repair)

Tags:
    protocol, services, runner, synthesizer, validator, snapshot-spine
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class ServiceReply:
    """Outcome of one collaborator call."""

    ok: bool
    data: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def success(cls, data: Mapping[str, Any]) -> ServiceReply:
        return cls(ok=True, data=dict(data))

    @classmethod
    def failure(cls, error: str) -> ServiceReply:
        return cls(ok=False, error=error)


@runtime_checkable
class IntelligenceService(Protocol):
    """Pre-analysis of a category from its active keyword snapshot."""

    async def analyze(self, category_id: str, month: str, *, snapshot_id: str) -> ServiceReply: ...


@runtime_checkable
class DemandMetricsRunner(Protocol):
    """
    Computes demand metrics from a keyword corpus snapshot.

    ``data`` on success holds at least ``demand_index_mn`` and
    ``metric_scores``. ``force_recalculate`` bypasses any cached result.
    """

    async def run(
        self,
        category_id: str,
        month: str,
        *,
        corpus_snapshot_id: str,
        strategy: Mapping[str, Any] | None = None,
        force_recalculate: bool = False,
    ) -> ServiceReply: ...


@runtime_checkable
class ReportSynthesizer(Protocol):
    async def synthesize(
        self,
        category_id: str,
        month: str,
        *,
        run_id: str,
        demand: Mapping[str, Any],
        signals: Sequence[Mapping[str, Any]],
    ) -> ServiceReply: ...

    async def repair(self, report: Mapping[str, Any], missing: Sequence[str]) -> ServiceReply:
        """Fill ``missing`` sections of ``report``; called at most once per run."""
        ...


@runtime_checkable
class PlaybookService(Protocol):
    async def generate(self, category_id: str, report: Mapping[str, Any]) -> ServiceReply: ...


@runtime_checkable
class KeywordValidator(Protocol):
    """
    Re-validates keyword rows against the volume provider.

    ``data["rows"]`` on success holds every row with its refreshed status
    and measures.
    """

    async def validate(
        self, category_id: str, snapshot_id: str, rows: Sequence[Mapping[str, Any]]
    ) -> ServiceReply: ...


__all__ = [
    "DemandMetricsRunner",
    "IntelligenceService",
    "KeywordValidator",
    "PlaybookService",
    "ReportSynthesizer",
    "ServiceReply",
]
