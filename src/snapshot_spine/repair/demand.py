"""
Poisoned demand output repair.

A demand output that is CERTIFIED but carries a zero, negative or
non-finite headline is *poisoned*: it would otherwise be served as the
month's answer forever. :meth:`DemandSnapshotRepairService.rebuild` marks
it POISONED (merge write, history kept), recomputes once with
``force_recalculate=True`` against the same corpus snapshot, and saves a
fresh CERTIFIED output only if the new headline is positive.

Outcomes::

    NO_OP                 nothing to repair (missing, or not poisoned)
    REBUILT               poisoned, recomputed, healthy output saved
    MARKED_POISONED_ONLY  poisoned and marked; recompute failed or still zero
    FAILED                the poison mark itself could not be written

The service never loops: one mark, one recompute, at most one save.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from snapshot_spine.core.errors import DocumentNotFoundError
from snapshot_spine.core.lifecycle import CERTIFIED_SET
from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.protocols import DemandMetricsRunner
from snapshot_spine.resolution.context import ResolutionContext
from snapshot_spine.resolution.keywords import KeywordSnapshotResolver
from snapshot_spine.snapshots.demand_output import (
    POISON_REASON_CERTIFIED_BUT_ZERO,
    DemandOutputStore,
    headline_value,
    is_positive_finite,
)
from snapshot_spine.storage.protocols import DocumentStore

logger = get_logger(__name__)

UNKNOWN_CORPUS_ID = "REPAIR_SOURCE_UNKNOWN"


class RepairAction(str, Enum):
    REBUILT = "REBUILT"
    MARKED_POISONED_ONLY = "MARKED_POISONED_ONLY"
    NO_OP = "NO_OP"
    FAILED = "FAILED"


@dataclass
class RepairOutcome:
    ok: bool
    action: RepairAction
    notes: list[str] = field(default_factory=list)
    previous_snapshot_id: str | None = None
    new_snapshot_id: str | None = None
    computed_demand_mn: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "action": self.action.value,
            "notes": list(self.notes),
            "previousSnapshotId": self.previous_snapshot_id,
            "newSnapshotId": self.new_snapshot_id,
            "computedDemandMn": self.computed_demand_mn,
        }


def is_poisoned_output(doc: dict[str, Any]) -> bool:
    """CERTIFIED (or legacy CERTIFIED_*) with a zero, negative or non-finite headline."""
    lifecycle = str(doc.get("lifecycle") or "")
    return lifecycle in CERTIFIED_SET and not is_positive_finite(headline_value(doc))


class DemandSnapshotRepairService:
    """Detects and rebuilds a poisoned demand output for one (category, month)."""

    def __init__(
        self,
        store: DocumentStore,
        runner: DemandMetricsRunner,
        *,
        ctx: ResolutionContext | None = None,
        keyword_resolver: KeywordSnapshotResolver | None = None,
        outputs: DemandOutputStore | None = None,
    ):
        self._ctx = ctx or ResolutionContext()
        self._runner = runner
        self._keywords = keyword_resolver or KeywordSnapshotResolver(store)
        self._outputs = outputs or DemandOutputStore(store, version=self._ctx.output_version)

    def _corpus_id(self, category_id: str, doc: dict[str, Any]) -> str | None:
        corpus_id = doc.get("corpusSnapshotId")
        if corpus_id:
            return corpus_id
        active = self._keywords.resolve(category_id, self._ctx)
        return active.snapshot_id if active.ok else None

    async def rebuild(self, category_id: str, month: str) -> RepairOutcome:
        key = self._ctx.key(category_id)
        notes: list[str] = []
        log = logger.bind(category_id=category_id, month=month)

        # The raw document is read so a poisoned output is still visible here.
        read = self._outputs.read_raw(key, month)
        if read.is_err():
            if isinstance(read.error, DocumentNotFoundError):
                notes.append("No existing demand snapshot found for this month.")
                log.info("demand_repair.no_op", reason="NOT_FOUND")
                return RepairOutcome(ok=True, action=RepairAction.NO_OP, notes=notes)
            notes.append(f"Store read failed: {read.reason}")
            log.error("demand_repair.read_failed", error=read.reason)
            return RepairOutcome(ok=False, action=RepairAction.FAILED, notes=notes)

        doc = read.data
        snapshot_id = doc.get("docId") or doc.get("snapshot_id") or self._outputs.doc_id(category_id, month)
        lifecycle = doc.get("lifecycle") or "UNKNOWN"
        value = headline_value(doc)

        if not is_poisoned_output(doc):
            notes.append(
                f"Snapshot {snapshot_id} is {lifecycle} with demand {value}. "
                "Not considered poisoned (must be CERTIFIED and <= 0)."
            )
            log.info("demand_repair.no_op", reason="NOT_POISONED", demand_index_mn=value)
            return RepairOutcome(ok=True, action=RepairAction.NO_OP, notes=notes, previous_snapshot_id=snapshot_id)

        notes.append(f"Detected POISONED snapshot {snapshot_id} (Lifecycle: {lifecycle}, Demand: {value})")
        marked = self._outputs.mark_poisoned(key, month, reason=POISON_REASON_CERTIFIED_BUT_ZERO)
        if marked.is_err():
            notes.append(f"Store write failed: {marked.reason}")
            log.error("demand_repair.mark_failed", snapshot_id=snapshot_id, error=marked.reason)
            return RepairOutcome(ok=False, action=RepairAction.FAILED, notes=notes, previous_snapshot_id=snapshot_id)
        notes.append(f"Marked {snapshot_id} as lifecycle=POISONED.")

        notes.append("Triggering fresh DemandMetricsRunner (forceRecalculate=true)...")
        corpus_id = self._corpus_id(category_id, doc)
        if not corpus_id:
            notes.append("Warning: Base corpus snapshot ID could not be resolved. Rebuild may have weak linkage.")
            corpus_id = UNKNOWN_CORPUS_ID

        outcome = RepairOutcome(
            ok=True,
            action=RepairAction.MARKED_POISONED_ONLY,
            notes=notes,
            previous_snapshot_id=snapshot_id,
        )
        try:
            reply = await self._runner.run(
                category_id,
                month,
                corpus_snapshot_id=corpus_id,
                strategy=doc.get("strategy"),
                force_recalculate=True,
            )
        except Exception as e:
            notes.append(f"Exception during recompute: {e}")
            log.error("demand_repair.recompute_raised", error=str(e))
            outcome.ok = False
            outcome.action = RepairAction.FAILED
            return outcome

        if not reply.ok or not reply.data:
            notes.append(f"Runner failed: {reply.error or 'no metrics returned'}")
            log.warning("demand_repair.runner_failed", error=reply.error)
            outcome.ok = False
            return outcome

        computed = reply.data.get("demand_index_mn")
        outcome.computed_demand_mn = computed if isinstance(computed, (int, float)) else None
        if not is_positive_finite(computed):
            notes.append(f"Recompute still returned zero or invalid demand ({computed}).")
            notes.append("Check corpus hydration, volume provider credits, or keyword volumes.")
            log.warning("demand_repair.still_zero", demand_index_mn=computed)
            return outcome

        saved = self._outputs.create_output_snapshot(
            corpus_id,
            key,
            month,
            strategy=doc.get("strategy") or {},
            demand=reply.data,
            metrics_version=reply.data.get("metricsVersion") or self._ctx.output_version,
        )
        if saved.is_err():
            notes.append(f"Save failed: {saved.reason}")
            log.error("demand_repair.save_failed", error=saved.reason)
            outcome.ok = False
            return outcome

        outcome.action = RepairAction.REBUILT
        outcome.new_snapshot_id = saved.data.snapshot_id
        notes.append(f"Saved new HEALTHY snapshot: {saved.data.snapshot_id} (Demand: {computed:.2f} Mn)")
        log.info("demand_repair.rebuilt", new_snapshot_id=saved.data.snapshot_id, demand_index_mn=computed)
        return outcome


__all__ = [
    "DemandSnapshotRepairService",
    "RepairAction",
    "RepairOutcome",
    "UNKNOWN_CORPUS_ID",
    "is_poisoned_output",
]
