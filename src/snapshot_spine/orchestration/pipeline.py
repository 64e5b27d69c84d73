"""
Ordered pipeline orchestrator.

Runs the eleven stages of one (category, month) refresh strictly in order.
Each stage consumes the previous stage's output, so the first failure
halts the run: it becomes the single blocker, the verdict flips to
``NO_GO`` and no later stage is attempted. Artifacts produced before the
failure are kept.

Stages::

    S1  corpus snapshot loaded       (keyword resolver)
    S2  corpus rows readable         (chunk read + fingerprint)
    S3  category intelligence        (IntelligenceService)
    S4  demand snapshot resolved     (demand resolver, falls back to corpus)
    S5  demand computed              (DemandMetricsRunner)
    S6  demand output persisted      (DemandOutputStore.create_output_snapshot)
    S7  signals resolved             (missing signals only warn)
    S8  report inputs bound
    S9  report synthesized           (ReportSynthesizer, timeout + one repair)
    S10 report persisted             (ReportStore.save_result)
    S11 playbook                     (PlaybookService)

Run document ``pipeline_runs/{runId}``::

    RUNNING ──> COMPLETED   (result payload attached)
            └─> FAILED      (error of the failing stage)

A background :class:`~snapshot_spine.orchestration.heartbeat.Heartbeat`
refreshes the run document every ``heartbeat_interval`` seconds so a
watcher can tell a stalled run from a crashed one.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from snapshot_spine.core.errors import PipelineError, StageTimeoutError
from snapshot_spine.core.hashing import DriftCheck, registry_fingerprint
from snapshot_spine.core.logging import LogContext, get_logger
from snapshot_spine.core.protocols import ServiceReply
from snapshot_spine.core.sanitize import sanitize
from snapshot_spine.core.settings import SnapshotSpineSettings
from snapshot_spine.core.timestamps import Clock, MonotonicMillis, month_key, now_iso, utc_now
from snapshot_spine.orchestration.heartbeat import Heartbeat
from snapshot_spine.orchestration.models import (
    PipelineOptions,
    PipelineRunResult,
    RunStatus,
    StageRecord,
    StageStatus,
    Verdict,
)
from snapshot_spine.orchestration.services import DRY_RUN_DEMAND_ID, DRY_RUN_REPORT_ID, PipelineServices
from snapshot_spine.orchestration.telemetry import TelemetryBus, TelemetryPhase, report_run_key
from snapshot_spine.resolution.context import ResolutionContext
from snapshot_spine.resolution.demand import DemandSnapshotResolver
from snapshot_spine.resolution.keywords import KeywordSnapshotResolver
from snapshot_spine.resolution.signals import SignalSnapshotResolver
from snapshot_spine.snapshots.demand_output import DemandOutputStore
from snapshot_spine.snapshots.models import CategorySnapshot, KeywordRow
from snapshot_spine.snapshots.report_store import ReportResult, ReportStore, missing_sections
from snapshot_spine.snapshots.snapshot_store import CategorySnapshotStore, corpus_fingerprint
from snapshot_spine.storage import paths
from snapshot_spine.storage.protocols import DocumentStore

logger = get_logger(__name__)

T = TypeVar("T")

REPORT_INCOMPLETE = "DEEPDIVE_OUTPUT_INCOMPLETE"
REGISTRY_DRIFT = "REGISTRY_DRIFT"
SIGNALS_BACKFILL_WARNING = "Signals Missing - Using Backfill"


@dataclass
class _RunState:
    """Intermediate outputs handed from one stage to the next."""

    options: PipelineOptions
    month: str
    result: PipelineRunResult
    corpus: CategorySnapshot | None = None
    rows: list[KeywordRow] = field(default_factory=list)
    fingerprint: str | None = None
    intelligence: dict[str, Any] = field(default_factory=dict)
    demand: dict[str, Any] = field(default_factory=dict)
    signal_mode: str | None = None
    signals: list[dict[str, Any]] = field(default_factory=list)
    report: dict[str, Any] = field(default_factory=dict)

    @property
    def category_id(self) -> str:
        return self.options.category_id

    @property
    def run_id(self) -> str:
        return self.result.run_id


class PipelineOrchestrator:
    """Runs the ordered snapshot pipeline for one category and month.

    Example::

        orchestrator = PipelineOrchestrator(store, PipelineServices.dry_run())
        result = await orchestrator.run(PipelineOptions("shampoo", month="2025-12"))
        result.verdict   # Verdict.GO
    """

    def __init__(
        self,
        store: DocumentStore,
        services: PipelineServices,
        *,
        ctx: ResolutionContext | None = None,
        telemetry: TelemetryBus | None = None,
        heartbeat_interval: float = 3.0,
        stage_timeout: float = 180.0,
        report_repair_attempts: int = 1,
        clock: Clock | None = None,
    ):
        self._store = store
        self._services = services
        self._ctx = ctx or ResolutionContext()
        self._clock = clock or utc_now
        self._telemetry = telemetry or TelemetryBus(clock=self._clock)
        self._heartbeat_interval = heartbeat_interval
        self._stage_timeout = stage_timeout
        self._repair_attempts = report_repair_attempts
        self._ids = MonotonicMillis(self._clock)

        self._keywords = KeywordSnapshotResolver(store)
        self._demand = DemandSnapshotResolver(store)
        self._signals = SignalSnapshotResolver(store, clock=self._clock)
        self._snapshots = CategorySnapshotStore(store, root=self._ctx.snapshot_root, clock=clock)
        self._outputs = DemandOutputStore(store, version=self._ctx.output_version, clock=clock)
        self._reports = ReportStore(store, clock=clock)

    @classmethod
    def from_settings(
        cls,
        store: DocumentStore,
        services: PipelineServices,
        settings: SnapshotSpineSettings,
        **kwargs: Any,
    ) -> PipelineOrchestrator:
        kwargs.setdefault("ctx", ResolutionContext.from_settings(settings))
        return cls(
            store,
            services,
            heartbeat_interval=settings.heartbeat_interval,
            stage_timeout=settings.stage_timeout,
            report_repair_attempts=settings.report_repair_attempts,
            **kwargs,
        )

    @property
    def telemetry(self) -> TelemetryBus:
        return self._telemetry

    # ------------------------------------------------------------------ #
    # Run document
    # ------------------------------------------------------------------ #

    def _update_run_doc(self, state: _RunState, stage: str, progress: int, **extra: Any) -> None:
        """Merge progress into the run document. A failed write only warns."""
        payload = {
            "categoryId": state.category_id,
            "month": state.month,
            "mode": state.options.mode.value,
            "tier": state.options.tier.value,
            "currentStage": stage,
            "progress": progress,
            "updatedAt": now_iso(self._clock),
            **extra,
        }
        if state.options.job_id:
            payload["jobId"] = state.options.job_id
        try:
            self._store.set(paths.pipeline_run_doc(state.run_id), sanitize(payload), merge=True)
        except Exception as e:
            logger.warning("pipeline.run_doc.update_failed", run_id=state.run_id, stage=stage, error=str(e))

    async def _beat(self, state: _RunState) -> None:
        self._update_run_doc(state, "HEARTBEAT", 0)

    async def _measure(self, state: _RunState, stage: str, fn: Callable[[_RunState], Awaitable[T]]) -> T:
        await asyncio.sleep(0)
        record = StageRecord(stage=stage, started_at=now_iso(self._clock))
        state.result.stages.append(record)
        logger.info("pipeline.stage.start", stage=stage)
        self._update_run_doc(state, stage, 0, stageStartedAt=record.started_at)
        start = time.perf_counter()
        try:
            value = await fn(state)
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            record.status = StageStatus.FAILED
            record.error = message
            record.completed_at = now_iso(self._clock)
            record.duration_ms = int((time.perf_counter() - start) * 1000)
            state.result.blockers.append(f"{stage}: {message}")
            state.result.verdict = Verdict.NO_GO
            logger.error("pipeline.stage.fail", stage=stage, error=message)
            self._update_run_doc(state, stage, 0, error=message, status=RunStatus.FAILED.value)
            raise
        duration = int((time.perf_counter() - start) * 1000)
        record.status = StageStatus.COMPLETED
        record.completed_at = now_iso(self._clock)
        record.duration_ms = duration
        state.result.timings_ms[stage] = duration
        logger.info("pipeline.stage.done", stage=stage, duration_ms=duration)
        self._update_run_doc(state, stage, 100, stageCompletedAt=record.completed_at)
        return value

    def _services_for(self, state: _RunState) -> PipelineServices:
        return PipelineServices.dry_run() if state.options.dry_run else self._services

    # ------------------------------------------------------------------ #
    # Stages
    # ------------------------------------------------------------------ #

    async def _s1_corpus(self, state: _RunState) -> None:
        resolved = self._keywords.resolve(state.category_id, self._ctx)
        if not resolved.ok or resolved.snapshot is None:
            raise PipelineError("No active corpus snapshot found")
        state.corpus = resolved.snapshot
        state.result.artifacts.corpus_snapshot_id = resolved.snapshot.snapshot_id
        logger.info(
            "pipeline.corpus.loaded",
            snapshot_id=resolved.snapshot.snapshot_id,
            rows=resolved.snapshot.stats.keywords_total,
            source=resolved.source,
        )

    async def _s2_rows(self, state: _RunState) -> None:
        if state.corpus is None:
            raise PipelineError("S1 Failed")
        rows = self._snapshots.read_rows(self._ctx.key(state.category_id), state.corpus.snapshot_id)
        if rows.is_err():
            raise PipelineError("S1 Rows Unreadable", cause=rows.error)
        state.rows = rows.data
        state.fingerprint = corpus_fingerprint(rows.data)
        logger.info("pipeline.corpus.bound", rows=len(rows.data), fingerprint=state.fingerprint[:12])

    async def _s3_intelligence(self, state: _RunState) -> None:
        reply = await self._services_for(state).intelligence.analyze(
            state.category_id, state.month, snapshot_id=state.result.artifacts.corpus_snapshot_id
        )
        if not reply.ok:
            raise PipelineError(reply.error or "Intelligence failed")
        state.intelligence = reply.data or {}
        if not state.options.dry_run:
            state.result.artifacts.cna_result_id = f"CNA_{self._ids.next()}"

    async def _s4_demand_resolve(self, state: _RunState) -> None:
        resolved = self._demand.resolve(state.category_id, state.month, self._ctx)
        if resolved.ok and resolved.snapshot_id:
            logger.info("pipeline.demand.loaded", snapshot_id=resolved.snapshot_id, mode=resolved.mode)
        elif state.result.artifacts.corpus_snapshot_id:
            logger.info("pipeline.demand.fallback", corpus_snapshot_id=state.result.artifacts.corpus_snapshot_id)
        else:
            raise PipelineError("No base snapshot for Demand")

    async def _s5_demand_compute(self, state: _RunState) -> None:
        reply = await self._services_for(state).demand.run(
            state.category_id,
            state.month,
            corpus_snapshot_id=state.result.artifacts.corpus_snapshot_id,
            strategy=state.intelligence,
        )
        if not reply.ok or not reply.data:
            raise PipelineError(reply.error or "Demand Run Failed")
        state.demand = reply.data
        logger.info("pipeline.demand.computed", demand_index_mn=state.demand.get("demand_index_mn"))

    async def _s6_demand_persist(self, state: _RunState) -> None:
        if state.options.dry_run:
            state.result.artifacts.demand_snapshot_id = DRY_RUN_DEMAND_ID
            return
        saved = self._outputs.create_output_snapshot(
            state.result.artifacts.corpus_snapshot_id,
            self._ctx.key(state.category_id),
            state.month,
            strategy=state.intelligence,
            demand=state.demand,
            metrics_version=state.demand.get("metricsVersion") or self._ctx.output_version,
            corpus_fingerprint=state.fingerprint,
        )
        if saved.is_err():
            raise PipelineError("Failed to save Demand Snapshot", cause=saved.error)
        state.result.artifacts.demand_snapshot_id = saved.data.snapshot_id or ""

    async def _s7_signals(self, state: _RunState) -> None:
        resolved = self._signals.resolve(state.category_id, state.month, self._ctx)
        if resolved.ok:
            state.signal_mode = resolved.mode
            state.signals = [s.to_document() for s in resolved.signals]
            state.result.artifacts.signal_snapshot_id = resolved.snapshot_id or "UNKNOWN"
            logger.info("pipeline.signals.resolved", mode=resolved.mode, snapshot_id=resolved.snapshot_id)
        else:
            state.signal_mode = "BACKFILL"
            state.result.warnings.append(SIGNALS_BACKFILL_WARNING)
            logger.warning("pipeline.signals.backfill", reason=resolved.reason)

    async def _s8_bind_inputs(self, state: _RunState) -> None:
        if not state.result.artifacts.demand_snapshot_id and not state.options.dry_run:
            raise PipelineError("Missing Demand Snapshot")
        self._telemetry.emit(
            report_run_key(state.category_id, state.month),
            TelemetryPhase.INPUTS_RESOLVED,
            "Report inputs bound",
            {
                "demandSnapshotId": state.result.artifacts.demand_snapshot_id,
                "signalSnapshotId": state.result.artifacts.signal_snapshot_id or "BACKFILL",
            },
        )

    async def _call_with_timeout(self, run_key: str, what: str, call: Awaitable[ServiceReply]) -> ServiceReply:
        try:
            return await asyncio.wait_for(call, timeout=self._stage_timeout)
        except TimeoutError:
            message = f"TIMEOUT: {what} exceeded {self._stage_timeout:g}s"
            self._telemetry.emit(run_key, TelemetryPhase.TIMEOUT, message)
            raise StageTimeoutError(message) from None

    async def _s9_synthesize(self, state: _RunState) -> None:
        run_key = report_run_key(state.category_id, state.month)
        reports = self._services_for(state).reports
        self._telemetry.emit(run_key, TelemetryPhase.MODEL_CALLING, "Synthesizing report", {"runId": state.run_id})
        reply = await self._call_with_timeout(
            run_key,
            "report synthesis",
            reports.synthesize(
                state.category_id,
                state.month,
                run_id=state.run_id,
                demand=state.demand,
                signals=state.signals,
            ),
        )
        if not reply.ok or reply.data is None:
            self._telemetry.emit(run_key, TelemetryPhase.ERROR, reply.error or "Synthesis failed")
            raise PipelineError(reply.error or "Report synthesis failed")
        state.report = dict(reply.data)
        if not state.options.dry_run:
            await self._complete_sections(state, run_key)
            state.result.artifacts.report_result_id = f"DD_RES_{self._ids.next()}"

    async def _complete_sections(self, state: _RunState, run_key: str) -> None:
        """Bounded repair of missing report sections; leftovers become a warning."""
        missing = missing_sections(state.report)
        attempts = 0
        while missing and attempts < self._repair_attempts:
            attempts += 1
            logger.info("pipeline.report.repair", missing=missing, attempt=attempts)
            try:
                repaired = await self._call_with_timeout(
                    run_key, "report repair", self._services.reports.repair(state.report, missing)
                )
            except StageTimeoutError:
                raise
            except Exception as e:
                logger.warning("pipeline.report.repair_failed", error=str(e))
                break
            if repaired.ok and repaired.data:
                state.report.update(repaired.data)
            missing = missing_sections(state.report)
        if missing:
            state.result.warnings.append(f"{REPORT_INCOMPLETE}: Missing {', '.join(missing)}")

    async def _s10_report_persist(self, state: _RunState) -> None:
        run_key = report_run_key(state.category_id, state.month)
        if state.options.dry_run:
            state.result.artifacts.report_snapshot_id = DRY_RUN_REPORT_ID
            return
        self._telemetry.emit(run_key, TelemetryPhase.WRITING_RESULTS, "Persisting report")
        report = ReportResult.model_validate(
            {
                **state.report,
                "categoryId": state.category_id,
                "monthKey": state.month,
                "runId": state.run_id,
                "provenance": {
                    "demandSnapshotId": state.result.artifacts.demand_snapshot_id,
                    "signalsSnapshotId": state.result.artifacts.signal_snapshot_id,
                    "signalMode": state.signal_mode,
                },
            }
        )
        saved = self._reports.save_result(report, state.run_id)
        if saved.is_err():
            self._telemetry.emit(run_key, TelemetryPhase.ERROR, saved.reason)
            raise PipelineError("Failed to save Deep Dive Snapshot", cause=saved.error)
        state.result.artifacts.report_snapshot_id = saved.data.result_doc_id
        self._telemetry.emit(run_key, TelemetryPhase.POINTER_UPDATED, "Latest pointer updated")
        self._telemetry.emit(run_key, TelemetryPhase.COMPLETE, "Report complete", {"docId": saved.data.result_doc_id})

    async def _s11_playbook(self, state: _RunState) -> None:
        if state.options.dry_run:
            return
        reply = await self._services.playbooks.generate(state.category_id, state.report)
        if not reply.ok:
            raise PipelineError(reply.error or "Playbook failed")
        playbook_id = f"PB_{self._ids.next()}"
        try:
            self._store.set(
                paths.playbook_doc(playbook_id),
                sanitize(
                    {
                        "runId": state.run_id,
                        "categoryId": state.category_id,
                        "createdAt": now_iso(self._clock),
                        "result": reply.data or {},
                    }
                ),
            )
            state.result.artifacts.playbook_id = playbook_id
        except Exception as e:
            logger.warning("pipeline.playbook.save_failed", playbook_id=playbook_id, error=str(e))

    # ------------------------------------------------------------------ #
    # Drift
    # ------------------------------------------------------------------ #

    def _check_registry(self, state: _RunState) -> None:
        if not state.options.registry:
            return
        current = registry_fingerprint(state.options.registry)
        state.result.registry_fingerprint = current
        previous: str | None = None
        try:
            doc = self._store.get(paths.pipeline_latest_doc(state.category_id))
            previous = doc.data.get("registryFingerprint") if doc else None
        except Exception as e:
            logger.warning("pipeline.registry.read_failed", error=str(e))
        check = DriftCheck(current=current, previous=previous)
        if check.drifted:
            state.result.warnings.append(f"{REGISTRY_DRIFT}: {check.describe()}")
            logger.warning("pipeline.registry.drift", previous=previous, current=current)

    def _record_latest(self, state: _RunState) -> None:
        try:
            self._store.set(
                paths.pipeline_latest_doc(state.category_id),
                sanitize(
                    {
                        "runId": state.run_id,
                        "registryFingerprint": state.result.registry_fingerprint,
                        "updatedAt": now_iso(self._clock),
                    }
                ),
            )
        except Exception as e:
            logger.warning("pipeline.latest.write_failed", error=str(e))

    # ------------------------------------------------------------------ #
    # Run
    # ------------------------------------------------------------------ #

    async def run(self, options: PipelineOptions) -> PipelineRunResult:
        month = options.month or month_key(self._clock())
        run_id = f"PIPE_{options.category_id}_{self._ids.next()}"
        result = PipelineRunResult(run_id=run_id, category_id=options.category_id, month=month)
        state = _RunState(options=options, month=month, result=result)

        stages: tuple[tuple[str, Callable[[_RunState], Awaitable[None]]], ...] = (
            ("S1", self._s1_corpus),
            ("S2", self._s2_rows),
            ("S3", self._s3_intelligence),
            ("S4", self._s4_demand_resolve),
            ("S5", self._s5_demand_compute),
            ("S6", self._s6_demand_persist),
            ("S7", self._s7_signals),
            ("S8", self._s8_bind_inputs),
            ("S9", self._s9_synthesize),
            ("S10", self._s10_report_persist),
            ("S11", self._s11_playbook),
        )

        heartbeat = Heartbeat(self._heartbeat_interval, lambda: self._beat(state), name=f"heartbeat:{run_id}")
        async with LogContext(run_id=run_id, category_id=options.category_id):
            try:
                heartbeat.start()
                self._store.set(
                    paths.pipeline_run_doc(run_id),
                    sanitize(
                        {
                            "runId": run_id,
                            "categoryId": options.category_id,
                            "month": month,
                            "startedAt": now_iso(self._clock),
                            "config": options.to_dict(),
                            "status": RunStatus.RUNNING.value,
                        }
                    ),
                )
                self._check_registry(state)
                for name, stage in stages:
                    await self._measure(state, name, stage)

                if result.verdict == Verdict.GO and result.warnings:
                    result.verdict = Verdict.WARN
                result.status = RunStatus.COMPLETED
                self._store.set(
                    paths.pipeline_run_doc(run_id),
                    sanitize(
                        {
                            "status": RunStatus.COMPLETED.value,
                            "completedAt": now_iso(self._clock),
                            "verdict": result.verdict.value,
                            "result": result.to_dict(),
                        }
                    ),
                    merge=True,
                )
                self._record_latest(state)
            except Exception as e:
                logger.error("pipeline.failed", error=str(e))
                result.verdict = Verdict.NO_GO
                result.status = RunStatus.FAILED
                if not result.blockers:
                    result.blockers.append(f"RUN: {getattr(e, 'message', None) or e}")
                self._update_run_doc(
                    state,
                    "FAILED",
                    0,
                    status=RunStatus.FAILED.value,
                    verdict=Verdict.NO_GO.value,
                    result=result.to_dict(),
                )
            finally:
                await heartbeat.stop()

        logger.info("pipeline.finished", verdict=result.verdict.value, stages=result.executed_stages)
        return result


__all__ = ["PipelineOrchestrator", "REGISTRY_DRIFT", "REPORT_INCOMPLETE", "SIGNALS_BACKFILL_WARNING"]
