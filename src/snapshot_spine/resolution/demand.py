"""
Demand metrics resolution ladder.

    1. ``EXACT_V3``           deterministic output doc for (category, month)
                               at the runtime metrics version, certified and
                               with a positive headline
    2. ``EXACT_V3``           a certified snapshot created in the month
    3. ``EXACT_ANY_VERSION``  a validated snapshot created in the month
    4. ``LATEST_ANY``         the newest snapshot of any month, with a reason
    5. ``MISSING``            ``ok=False`` with a reason

Rungs 2-4 inspect only the newest ``demand_scan_limit`` snapshots ordered
by ``created_at_iso``. Poisoned artifacts are skipped at every rung.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import ValidationError as PydanticValidationError

from snapshot_spine.core.lifecycle import CERTIFIED_SET, VALIDATED_SET, is_poisoned, lifecycle_value
from snapshot_spine.core.logging import get_logger
from snapshot_spine.resolution.context import ResolutionContext
from snapshot_spine.snapshots.demand_output import (
    DemandOutputStore,
    DemandOutputV3,
    headline_value,
    is_positive_finite,
    is_valid_certified_snapshot,
)
from snapshot_spine.snapshots.models import CategorySnapshot
from snapshot_spine.storage import paths
from snapshot_spine.storage.protocols import DocumentStore, OrderBy, Query

logger = get_logger(__name__)

DemandMode = Literal["EXACT_V3", "EXACT_ANY_VERSION", "LATEST_ANY", "MISSING"]


@dataclass
class ResolvedDemand:
    ok: bool
    category_id: str
    month: str
    mode: DemandMode = "MISSING"
    version: str | None = None
    snapshot_id: str | None = None
    corpus_snapshot_id: str | None = None
    lifecycle: str | None = None
    metrics_version: str | None = None
    resolved_month_key: str | None = None
    reason: str | None = None
    output: DemandOutputV3 | None = None
    snapshot: CategorySnapshot | None = None

    @property
    def demand_index_mn(self) -> Any:
        if self.output is not None:
            return self.output.demand_index_mn
        if self.snapshot is not None:
            return self.snapshot.demand_index_mn
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "categoryId": self.category_id,
            "month": self.month,
            "mode": self.mode,
            "version": self.version,
            "snapshotId": self.snapshot_id,
            "corpusSnapshotId": self.corpus_snapshot_id,
            "lifecycle": self.lifecycle,
            "metricsVersion": self.metrics_version,
            "resolvedMonthKey": self.resolved_month_key,
            "reason": self.reason,
            "demand_index_mn": self.demand_index_mn,
        }


def is_poisoned_snapshot(snapshot: CategorySnapshot) -> bool:
    """Flagged POISONED, or certified while carrying a degenerate headline."""
    if snapshot.poisoned or is_poisoned(snapshot.lifecycle):
        return True
    value = snapshot.demand_index_mn
    return lifecycle_value(snapshot.lifecycle) in CERTIFIED_SET and value is not None and not is_positive_finite(value)


class DemandSnapshotResolver:
    def __init__(self, store: DocumentStore):
        self._store = store

    def resolve_exact_output(self, category_id: str, month: str, ctx: ResolutionContext) -> ResolvedDemand | None:
        outputs = DemandOutputStore(self._store, version=ctx.output_version)
        read = outputs.read(ctx.key(category_id), month)
        if read.is_err():
            return None
        output = read.data
        if output.is_poisoned or not is_valid_certified_snapshot(
            output, output.lifecycle, version=ctx.output_version
        ):
            logger.warning(
                "demand.exact_output.untrusted",
                category_id=category_id,
                month=month,
                lifecycle=output.lifecycle,
                demand_index_mn=headline_value(output),
            )
            return None
        return ResolvedDemand(
            ok=True,
            category_id=category_id,
            month=month,
            mode="EXACT_V3",
            version="v3",
            snapshot_id=output.snapshot_id or outputs.doc_id(category_id, month),
            corpus_snapshot_id=output.corpus_snapshot_id,
            lifecycle=output.lifecycle or "CERTIFIED",
            metrics_version=output.version_tag,
            resolved_month_key=month,
            reason="Found exact deterministic doc via DemandOutputStore",
            output=output,
        )

    def _recent_snapshots(self, category_id: str, ctx: ResolutionContext) -> list[CategorySnapshot]:
        docs = self._store.query(
            Query(
                paths.snapshots_collection(category_id, ctx.country, ctx.language, ctx.snapshot_root),
                order_by=[OrderBy("created_at_iso", descending=True)],
                limit=ctx.demand_scan_limit,
            )
        )
        snapshots: list[CategorySnapshot] = []
        for doc in docs:
            try:
                snapshot = CategorySnapshot.model_validate(doc.data)
            except PydanticValidationError:
                logger.warning("demand.scan.malformed", path=doc.path)
                continue
            if is_poisoned_snapshot(snapshot):
                logger.info("demand.scan.skip_poisoned", snapshot_id=snapshot.snapshot_id)
                continue
            snapshots.append(snapshot)
        return snapshots

    @staticmethod
    def _from_snapshot(
        category_id: str, month: str, snapshot: CategorySnapshot, mode: DemandMode, version: str, reason: str | None
    ) -> ResolvedDemand:
        return ResolvedDemand(
            ok=True,
            category_id=category_id,
            month=month,
            mode=mode,
            version=version,
            snapshot_id=snapshot.snapshot_id,
            corpus_snapshot_id=snapshot.snapshot_id,
            lifecycle=lifecycle_value(snapshot.lifecycle),
            resolved_month_key=snapshot.created_at_iso[:7],
            reason=reason,
            snapshot=snapshot,
        )

    def resolve(self, category_id: str, month: str, ctx: ResolutionContext | None = None) -> ResolvedDemand:
        ctx = ctx or ResolutionContext()
        exact = self.resolve_exact_output(category_id, month, ctx)
        if exact is not None:
            logger.info("demand.resolve.hit", category_id=category_id, month=month, mode=exact.mode)
            return exact

        logger.info("demand.resolve.scan", category_id=category_id, month=month)
        try:
            candidates = self._recent_snapshots(category_id, ctx)
        except Exception as e:
            logger.error("demand.resolve.failed", category_id=category_id, month=month, error=str(e))
            return ResolvedDemand(ok=False, category_id=category_id, month=month, reason=str(e))

        in_month = [s for s in candidates if s.created_at_iso.startswith(month)]
        certified = next((s for s in in_month if lifecycle_value(s.lifecycle) in CERTIFIED_SET), None)
        if certified is not None:
            return self._from_snapshot(category_id, month, certified, "EXACT_V3", "v3", None)

        validated = next((s for s in in_month if lifecycle_value(s.lifecycle) in VALIDATED_SET), None)
        if validated is not None:
            return self._from_snapshot(category_id, month, validated, "EXACT_ANY_VERSION", "v2", None)

        if candidates:
            latest = candidates[0]
            reason = f"Exact month {month} missing. Using latest {latest.created_at_iso[:10]}"
            logger.info("demand.resolve.fallback", category_id=category_id, month=month, snapshot_id=latest.snapshot_id)
            return self._from_snapshot(category_id, month, latest, "LATEST_ANY", "fallback", reason)

        return ResolvedDemand(
            ok=False,
            category_id=category_id,
            month=month,
            reason="No snapshots found for category",
        )


__all__ = ["DemandMode", "DemandSnapshotResolver", "ResolvedDemand", "is_poisoned_snapshot"]
