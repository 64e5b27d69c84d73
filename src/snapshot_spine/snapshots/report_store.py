"""
Generated report runs and their latest-run pointers.

Runs live at ``deepDive_runs/deepDiveV2_{category}_{month}_{runId}``; the
pointer ``deepDive_latest/{category}_{month}`` names the newest run and
carries denormalized provenance for fast display.

The pointer is a read-through cache. :meth:`ReportStore.get_latest` reads it
first and falls back to a direct ordered query when the pointer is missing
or names a run document that no longer exists. A soft-deleted pointer is an
explicit NOT_FOUND; the fallback never revives a deleted entry.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from snapshot_spine.core.errors import DocumentNotFoundError
from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.result import Result, guard
from snapshot_spine.core.sanitize import sanitize
from snapshot_spine.core.timestamps import Clock, now_iso
from snapshot_spine.storage import paths
from snapshot_spine.storage.protocols import MAX_BATCH_OPERATIONS, DocumentStore, FieldFilter, OrderBy, Query

logger = get_logger(__name__)

VALID_REPORT_SCHEMAS = ("v2.0", "v2.1", "v2.2-contract")

REQUIRED_REPORT_SECTIONS = (
    "executiveSummary",
    "marketStructure",
    "consumerNeeds",
    "behavioursRituals",
    "triggersBarriersInfluences",
    "categoryEvolutionOpportunities",
    "brandPerceptionsLightTouch",
    "influencerEcosystem",
    "appendix",
)


def missing_sections(report: Mapping[str, Any] | BaseModel) -> list[str]:
    """Required top-level sections that are absent or empty."""
    data = report.model_dump(by_alias=True) if isinstance(report, BaseModel) else report
    return [name for name in REQUIRED_REPORT_SECTIONS if not data.get(name)]


class ReportProvenance(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    demand_snapshot_id: str | None = Field(None, alias="demandSnapshotId")
    signals_snapshot_id: str | None = Field(None, alias="signalsSnapshotId")
    signal_mode: str | None = Field(None, alias="signalMode")
    data_confidence: str | None = Field(None, alias="dataConfidence")


class ReportResult(BaseModel):
    """One synthesized report. Section bodies are kept as extra fields."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    category_id: str = Field(alias="categoryId")
    month_key: str = Field(alias="monthKey")
    run_id: str | None = Field(None, alias="runId")
    schema_version: str | None = Field(None, alias="schemaVersion")
    generated_at: str | None = Field(None, alias="generatedAt")
    verdict: str | None = None
    provenance: ReportProvenance = Field(default_factory=ReportProvenance)

    @property
    def is_legacy(self) -> bool:
        return self.schema_version not in VALID_REPORT_SCHEMAS

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ReportPointer(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    run_id: str = Field(alias="runId")
    result_doc_id: str = Field(alias="resultDocId")
    category_id: str = Field(alias="categoryId")
    month_key: str = Field(alias="monthKey")
    updated_at: str = Field(alias="updatedAt")
    status: str = "SUCCESS"
    demand_snapshot_id: str | None = Field(None, alias="demandSnapshotId")
    signal_snapshot_id: str | None = Field(None, alias="signalSnapshotId")
    signal_mode: str | None = Field(None, alias="signalMode")
    confidence: str | None = None
    schema_version: str = Field("legacy", alias="schemaVersion")
    is_legacy: bool = Field(False, alias="isLegacy")
    deleted_at: str | None = Field(None, alias="deletedAt")
    deleted_by: str | None = Field(None, alias="deletedBy")

    @property
    def deleted(self) -> bool:
        return bool(self.deleted_at)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True, slots=True)
class ReportLookup:
    report: ReportResult
    source: Literal["POINTER", "DIRECT_QUERY"]
    pointer: ReportPointer | None = None


class ReportStore:
    def __init__(self, store: DocumentStore, *, clock: Clock | None = None):
        self._store = store
        self._clock = clock

    def save_result(self, result: ReportResult, run_id: str) -> Result[ReportPointer]:
        """
        Write the run document, then replace the pointer.

        The pointer is written whole (not merged) so a revived pointer loses
        any earlier ``deletedAt`` marker.
        """

        def _save() -> ReportPointer:
            stamp = now_iso(self._clock)
            doc_id = paths.report_run_id(result.category_id, result.month_key, run_id)
            data = result.to_document()
            data["runId"] = run_id
            data.setdefault("generatedAt", stamp)
            self._store.set(paths.join_path(paths.REPORT_RUNS, doc_id), sanitize(data))

            pointer = ReportPointer(
                run_id=run_id,
                result_doc_id=doc_id,
                category_id=result.category_id,
                month_key=result.month_key,
                updated_at=stamp,
                demand_snapshot_id=result.provenance.demand_snapshot_id,
                signal_snapshot_id=result.provenance.signals_snapshot_id,
                signal_mode=result.provenance.signal_mode,
                confidence=result.provenance.data_confidence,
                schema_version=result.schema_version or "legacy",
                is_legacy=result.is_legacy,
            )
            document = pointer.to_document()
            document.update(created_at_iso=stamp, updated_at_iso=stamp)
            self._store.set(paths.report_latest_doc(result.category_id, result.month_key), sanitize(document))
            logger.info(
                "report.saved",
                doc_id=doc_id,
                category_id=result.category_id,
                month=result.month_key,
                schema_version=pointer.schema_version,
            )
            return pointer

        return guard(_save)

    def get_pointer(self, category_id: str, month: str) -> Result[ReportPointer]:
        def _get() -> ReportPointer:
            doc = self._store.get(paths.report_latest_doc(category_id, month))
            if doc is None:
                raise DocumentNotFoundError("No report pointer").with_context(category_id=category_id, month=month)
            return ReportPointer.model_validate(doc.data)

        return guard(_get)

    def _read_run(self, doc_id: str) -> ReportResult | None:
        doc = self._store.get(paths.join_path(paths.REPORT_RUNS, doc_id))
        return ReportResult.model_validate(doc.data) if doc is not None else None

    def find_latest_directly(self, category_id: str, month: str) -> Result[ReportResult]:
        """Newest run by ``generatedAt``; needs the (categoryId, monthKey, generatedAt DESC) index."""

        def _find() -> ReportResult:
            docs = self._store.query(
                Query(
                    paths.REPORT_RUNS,
                    filters=[FieldFilter("categoryId", "==", category_id), FieldFilter("monthKey", "==", month)],
                    order_by=[OrderBy("generatedAt", descending=True)],
                    limit=1,
                )
            )
            if not docs:
                raise DocumentNotFoundError("No report runs").with_context(category_id=category_id, month=month)
            logger.info("report.direct_query.hit", category_id=category_id, month=month, doc_id=docs[0].id)
            return ReportResult.model_validate(docs[0].data)

        return guard(_find)

    def get_latest(self, category_id: str, month: str) -> Result[ReportLookup]:
        def _latest() -> ReportLookup:
            pointer_result = self.get_pointer(category_id, month)
            pointer = pointer_result.unwrap_or(None)
            if pointer is not None:
                if pointer.deleted:
                    raise DocumentNotFoundError("Report pointer is deleted").with_context(
                        category_id=category_id, month=month
                    )
                report = self._read_run(pointer.result_doc_id)
                if report is not None:
                    return ReportLookup(report, "POINTER", pointer)
                logger.warning("report.pointer.dangling", category_id=category_id, doc_id=pointer.result_doc_id)
            elif isinstance(pointer_result.error, DocumentNotFoundError):
                logger.info("report.pointer.missing", category_id=category_id, month=month)
            else:
                raise pointer_result.error

            report = self.find_latest_directly(category_id, month).unwrap()
            return ReportLookup(report, "DIRECT_QUERY", pointer)

        return guard(_latest)

    def soft_delete_all(self, deleted_by: str = "system") -> Result[int]:
        """Mark every live pointer deleted. Run documents are untouched."""

        def _delete() -> int:
            stamp = now_iso(self._clock)
            live = [d for d in self._store.query(Query(paths.REPORT_LATEST)) if not d.data.get("deletedAt")]
            for start in range(0, len(live), MAX_BATCH_OPERATIONS):
                batch = self._store.batch()
                for doc in live[start : start + MAX_BATCH_OPERATIONS]:
                    batch.set(doc.path, {"deletedAt": stamp, "deletedBy": deleted_by}, merge=True)
                batch.commit()
            if live:
                logger.info("report.soft_delete_all", count=len(live), deleted_by=deleted_by)
            return len(live)

        return guard(_delete)


__all__ = [
    "REQUIRED_REPORT_SECTIONS",
    "VALID_REPORT_SCHEMAS",
    "ReportLookup",
    "ReportPointer",
    "ReportProvenance",
    "ReportResult",
    "ReportStore",
    "missing_sections",
]
