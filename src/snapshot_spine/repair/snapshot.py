"""End-to-end keyword snapshot repair: re-validate rows, recompute demand, persist the output."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from snapshot_spine.core.errors import PipelineError, SpineError, ValidationError
from snapshot_spine.core.lifecycle import Lifecycle, is_certified, is_poisoned
from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.protocols import DemandMetricsRunner, KeywordValidator
from snapshot_spine.resolution.context import ResolutionContext
from snapshot_spine.resolution.keywords import KeywordSnapshotResolver
from snapshot_spine.snapshots.corpus_index import CorpusIndexStore
from snapshot_spine.snapshots.demand_output import DemandOutputStore
from snapshot_spine.snapshots.snapshot_store import CategorySnapshotStore
from snapshot_spine.storage.protocols import DocumentStore

logger = get_logger(__name__)


@dataclass
class SnapshotRepairReport:
    ok: bool
    log: list[str] = field(default_factory=list)
    error: str | None = None
    snapshot_id: str | None = None
    demand_index_mn: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ok": self.ok, "log": list(self.log)}
        if self.error:
            data["error"] = self.error
        if self.snapshot_id:
            data["snapshotId"] = self.snapshot_id
        if self.demand_index_mn is not None:
            data["demand_index_mn"] = self.demand_index_mn
        return data


class SnapshotRepairService:
    def __init__(
        self,
        store: DocumentStore,
        validator: KeywordValidator,
        runner: DemandMetricsRunner,
        *,
        ctx: ResolutionContext | None = None,
        snapshots: CategorySnapshotStore | None = None,
    ):
        self._ctx = ctx or ResolutionContext()
        self._validator = validator
        self._runner = runner
        self._snapshots = snapshots or CategorySnapshotStore(store, root=self._ctx.snapshot_root)
        self._index = CorpusIndexStore(store)
        self._keywords = KeywordSnapshotResolver(store, corpus_index=self._index)
        self._outputs = DemandOutputStore(store, version=self._ctx.output_version)

    async def _revalidate(self, report: SnapshotRepairReport, category_id: str, snapshot_id: str) -> None:
        key = self._ctx.key(category_id)
        rows = self._snapshots.read_rows(key, snapshot_id).unwrap()
        reply = await self._validator.validate(
            category_id, snapshot_id, [r.model_dump(mode="json") for r in rows]
        )
        if not reply.ok or reply.data is None:
            raise ValidationError(f"Validation Failed: {reply.error or 'Unknown error'}")

        snapshot = self._snapshots.write_rows(key, snapshot_id, reply.data.get("rows") or []).unwrap()
        lifecycle = snapshot.lifecycle
        if snapshot.stats.valid_total > 0 and not (is_certified(lifecycle) or is_poisoned(lifecycle)):
            snapshot = self._snapshots.set_lifecycle(key, snapshot_id, Lifecycle.VALIDATED).unwrap()
        healed = self._index.upsert_from_snapshot(snapshot)
        if healed.is_err():
            logger.warning("snapshot_repair.pointer_failed", snapshot_id=snapshot_id, error=healed.reason)
        report.log.append(f"[VALIDATION] Completed. valid={snapshot.stats.valid_total}/{snapshot.stats.keywords_total}")

    async def run(self, category_id: str, month: str) -> SnapshotRepairReport:
        report = SnapshotRepairReport(ok=False)

        def log(message: str) -> None:
            logger.info("snapshot_repair.step", category_id=category_id, month=month, message=message)
            report.log.append(message)

        log(f"[SNAP_REPAIR][START] category={category_id} month={month}")
        try:
            active = self._keywords.resolve(category_id, self._ctx)
            if not active.ok or active.snapshot_id is None:
                raise PipelineError("No active snapshot found.")
            snapshot_id = active.snapshot_id
            report.snapshot_id = snapshot_id

            log("[VALIDATION] Starting validation...")
            await self._revalidate(report, category_id, snapshot_id)

            log("[METRICS] Recomputing Demand...")
            reply = await self._runner.run(
                category_id, month, corpus_snapshot_id=snapshot_id, force_recalculate=True
            )
            if not reply.ok or not reply.data:
                raise PipelineError(f"Metrics Calc Failed: {reply.error}")
            metrics = reply.data
            report.demand_index_mn = metrics.get("demand_index_mn")
            log(f"[DEMAND_INDEX]={float(metrics.get('demand_index_mn') or 0):.2f} Mn")

            log("[OUTPUT] Saving snapshot...")
            self._outputs.create_output_snapshot(
                snapshot_id,
                self._ctx.key(category_id),
                month,
                strategy={},
                demand=metrics,
                metrics_version=metrics.get("metricsVersion") or self._ctx.output_version,
            ).unwrap()
            log(f"[SNAP_REPAIR][DONE] snapshotId={snapshot_id} rows={metrics.get('totalKeywordsUsedInMetrics', 0)}")
            report.ok = True
        except SpineError as e:
            report.error = e.message
            log(f"[SNAP_REPAIR][ERROR] {e.message}")
        except Exception as e:
            logger.exception("snapshot_repair.crashed", category_id=category_id, month=month)
            report.error = str(e)
            report.log.append(f"[SNAP_REPAIR][ERROR] {e}")
        return report


__all__ = ["SnapshotRepairReport", "SnapshotRepairService"]
