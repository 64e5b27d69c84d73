"""
Deterministic demand output documents.

One document per (category, month, country, language) at
``mci_outputs/{country}/{lang}/out_{category}_{month}``. Writers upsert by
that deterministic id, so concurrent duplicate writes converge.

Manifesto:
    Demand documents were written by several generations of producers.
    Instead of guessing at their shape wherever they are consumed, every
    read goes through one versioned-union parser at this boundary:

    - **v3:** headline metrics promoted to the document root
      (``demand_index_mn``, ``metric_scores``, ``totalKeywordsInput`` ...)
    - **legacy:** metrics only inside the nested ``demand`` block; migrated
      to the v3 shape on read when the nested block carries the runtime
      metrics version

    Anything else is reported as ``VERSION_MISMATCH``, never coerced.

Tags:
    demand, outputs, versioned-union, poisoned, read-back, snapshot-spine
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Annotated, Any, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from snapshot_spine.core.errors import DocumentNotFoundError, ValidationError
from snapshot_spine.core.lifecycle import CERTIFIED_SET, Lifecycle, is_poisoned, lifecycle_value
from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.result import Result, guard
from snapshot_spine.core.sanitize import sanitize
from snapshot_spine.core.settings import DEMAND_OUTPUT_VERSION
from snapshot_spine.core.timestamps import Clock, now_iso
from snapshot_spine.snapshots.models import SnapshotKey
from snapshot_spine.storage import paths
from snapshot_spine.storage.protocols import DocumentStore

logger = get_logger(__name__)

# Root keys a v3 document must carry.
V3_ROOT_KEYS = (
    "demand_index_mn",
    "metric_scores",
    "totalKeywordsInput",
    "totalKeywordsUsedInMetrics",
    "computedAt",
)

POISON_REASON_CERTIFIED_BUT_ZERO = "CERTIFIED_BUT_ZERO"

# Carried across a rebuild; everything else is replaced.
POISON_HISTORY_KEYS = ("poisonedAt", "poisonReason", "poisonedBy")


def version_of(doc: Mapping[str, Any] | None) -> str | None:
    """Metrics version tag: root ``metricsVersion``, nested ``demand.metricsVersion``, then ``version``."""
    if not doc:
        return None
    nested = doc.get("demand") if isinstance(doc.get("demand"), Mapping) else {}
    return doc.get("metricsVersion") or nested.get("metricsVersion") or doc.get("version")


def headline_value(doc: Mapping[str, Any] | BaseModel | None) -> Any:
    """``demand_index_mn`` at the root, else inside the nested ``demand`` block."""
    if doc is None:
        return None
    if isinstance(doc, BaseModel):
        doc = doc.model_dump(by_alias=True)
    value = doc.get("demand_index_mn")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    nested = doc.get("demand")
    return nested.get("demand_index_mn") if isinstance(nested, Mapping) else None


def is_positive_finite(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )


def is_valid_certified_snapshot(
    doc: Mapping[str, Any] | BaseModel | None,
    lifecycle: str | Lifecycle | None = None,
    *,
    version: str = DEMAND_OUTPUT_VERSION,
) -> bool:
    """
    True when a demand artifact can be trusted as certified.

    The version tag must equal ``version``; a lifecycle, when given, must be
    in the certified set; the headline measure must be a finite number > 0.
    A certified artifact failing the last check is poisoned.
    """
    if doc is None:
        return False
    data = doc.model_dump(by_alias=True) if isinstance(doc, BaseModel) else doc
    if version_of(data) != version:
        return False
    if lifecycle and lifecycle_value(lifecycle) not in CERTIFIED_SET:
        return False
    return is_positive_finite(headline_value(data))


class MetricScores(BaseModel):
    model_config = ConfigDict(extra="allow")

    readiness: float = 0
    spread: float = 0


class DemandOutputV3(BaseModel):
    """Demand output with root-promoted metrics."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    demand_index_mn: float
    metric_scores: MetricScores
    total_keywords_input: int = Field(alias="totalKeywordsInput")
    total_keywords_used: int = Field(alias="totalKeywordsUsedInMetrics")
    computed_at: str = Field(alias="computedAt")
    metrics_version: str | None = Field(None, alias="metricsVersion")
    version: str | None = None
    trend_5y: dict[str, Any] | None = None
    category_id: str | None = None
    month: str | None = None
    country_code: str | None = None
    language_code: str | None = None
    corpus_snapshot_id: str | None = Field(None, alias="corpusSnapshotId")
    corpus_fingerprint: str | None = Field(None, alias="corpusFingerprint")
    snapshot_id: str | None = None
    lifecycle: str | None = None
    poisoned: bool = False
    strategy: dict[str, Any] = Field(default_factory=dict)
    demand: dict[str, Any] | None = None

    @property
    def version_tag(self) -> str | None:
        return self.metrics_version or (self.demand or {}).get("metricsVersion") or self.version

    @property
    def is_poisoned(self) -> bool:
        return self.poisoned or is_poisoned(self.lifecycle)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LegacyDemandOutput(BaseModel):
    """Older output: metrics only inside the nested ``demand`` block."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    demand: dict[str, Any] | None = None
    version: str | None = None
    metrics_version: str | None = Field(None, alias="metricsVersion")
    category_id: str | None = None
    month: str | None = None
    corpus_snapshot_id: str | None = Field(None, alias="corpusSnapshotId")
    lifecycle: str | None = None
    computed_at: str | None = Field(None, alias="computedAt")
    created_at_iso: str | None = None

    @property
    def version_tag(self) -> str | None:
        return self.metrics_version or (self.demand or {}).get("metricsVersion") or self.version

    def to_v3(self) -> DemandOutputV3:
        """Promote the nested metrics to the root."""
        nested = dict(self.demand or {})
        return DemandOutputV3.model_validate(
            {
                **self.model_dump(by_alias=True, exclude_none=True),
                "demand_index_mn": nested.get("demand_index_mn", 0),
                "metric_scores": nested.get("metric_scores") or {},
                "totalKeywordsInput": nested.get("totalKeywordsInput", 0),
                "totalKeywordsUsedInMetrics": nested.get("totalKeywordsUsedInMetrics", 0),
                "computedAt": self.computed_at or self.created_at_iso or "",
                "trend_5y": nested.get("trend_5y"),
                "metricsVersion": self.version_tag,
            }
        )


def _shape_tag(value: Any) -> str:
    if isinstance(value, BaseModel):
        return "v3" if isinstance(value, DemandOutputV3) else "legacy"
    if isinstance(value, Mapping) and all(key in value for key in V3_ROOT_KEYS):
        return "v3"
    return "legacy"


DemandOutput = Annotated[
    Union[Annotated[DemandOutputV3, Tag("v3")], Annotated[LegacyDemandOutput, Tag("legacy")]],
    Discriminator(_shape_tag),
]

_ADAPTER: TypeAdapter[DemandOutputV3 | LegacyDemandOutput] = TypeAdapter(DemandOutput)


def parse_demand_output(data: Mapping[str, Any]) -> DemandOutputV3 | LegacyDemandOutput:
    return _ADAPTER.validate_python(dict(data))


class DemandOutputStore:
    """Reads, verified writes and poison marking for demand output documents."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        version: str = DEMAND_OUTPUT_VERSION,
        clock: Clock | None = None,
    ):
        self._store = store
        self._version = version
        self._clock = clock

    @property
    def version(self) -> str:
        return self._version

    @staticmethod
    def doc_id(category_id: str, month: str) -> str:
        return paths.demand_output_id(category_id, month)

    def doc_path(self, key: SnapshotKey, month: str) -> str:
        return paths.demand_output_doc(key.category_id, month, key.country, key.language)

    def _parse_current(self, data: Mapping[str, Any], doc_id: str) -> DemandOutputV3:
        try:
            parsed = parse_demand_output(data)
            if isinstance(parsed, LegacyDemandOutput):
                parsed = parsed.to_v3()
        except PydanticValidationError as e:
            raise ValidationError("VERSION_MISMATCH", cause=e).with_context(snapshot_id=doc_id) from e
        if parsed.version_tag != self._version and parsed.version != self._version:
            raise ValidationError("VERSION_MISMATCH").with_context(
                snapshot_id=doc_id, metadata={"found": parsed.version_tag, "expected": self._version}
            )
        return parsed

    def read_raw(self, key: SnapshotKey, month: str) -> Result[dict[str, Any]]:
        """The stored document as-is, whatever its version or lifecycle."""

        def _read() -> dict[str, Any]:
            doc = self._store.get(self.doc_path(key, month))
            if doc is None:
                raise DocumentNotFoundError("NOT_FOUND").with_context(
                    category_id=key.category_id, month=month
                )
            return doc.data

        return guard(_read)

    def read(self, key: SnapshotKey, month: str) -> Result[DemandOutputV3]:
        """Parse the output at the runtime metrics version; ``NOT_FOUND`` or ``VERSION_MISMATCH`` otherwise."""
        doc_id = self.doc_id(key.category_id, month)

        def _read() -> DemandOutputV3:
            data = self.read_raw(key, month).unwrap()
            return self._parse_current(data, doc_id)

        result = guard(_read)
        if result.is_ok():
            logger.debug("demand_output.read.ok", doc_id=doc_id, demand_index_mn=result.data.demand_index_mn)
        else:
            logger.info("demand_output.read.miss", doc_id=doc_id, reason=result.reason)
        return result

    def write(self, key: SnapshotKey, month: str, payload: Mapping[str, Any] | BaseModel) -> Result[DemandOutputV3]:
        """Write, read back and re-validate. Read-back failures are ``POST_WRITE_READ_FAILED``."""
        doc_id = self.doc_id(key.category_id, month)
        path = self.doc_path(key, month)

        def _write() -> DemandOutputV3:
            self._store.set(path, sanitize(payload))
            saved = self._store.get(path)
            if saved is None:
                raise ValidationError("POST_WRITE_READ_FAILED: Document not found after write.").with_context(
                    snapshot_id=doc_id
                )
            try:
                parsed = self._parse_current(saved.data, doc_id)
            except ValidationError as e:
                raise ValidationError("POST_WRITE_READ_FAILED: Validation failed on read-back.", cause=e).with_context(
                    snapshot_id=doc_id
                ) from e
            logger.info("demand_output.write.ok", doc_id=doc_id, demand_index_mn=parsed.demand_index_mn)
            return parsed

        return guard(_write)

    def create_output_snapshot(
        self,
        corpus_snapshot_id: str,
        key: SnapshotKey,
        month: str | None,
        *,
        strategy: Mapping[str, Any] | None = None,
        demand: Mapping[str, Any] | None = None,
        metrics_version: str | None = None,
        corpus_fingerprint: str | None = None,
    ) -> Result[DemandOutputV3]:
        """
        Promote computed metrics to the root and upsert a CERTIFIED output.

        The document is replaced whole. Poison history (``poisonedAt``,
        ``poisonReason``, ``poisonedBy``) from an existing document is carried
        over while ``poisoned`` and ``lifecycle`` are reset.
        """
        demand = dict(demand or {})
        target_month = month or (demand.get("trend_5y") or {}).get("windowId") or now_iso(self._clock)[:7]
        doc_id = self.doc_id(key.category_id, target_month)
        stamp = now_iso(self._clock)
        version = metrics_version or demand.get("metricsVersion") or "UNKNOWN"

        payload: dict[str, Any] = {
            "demand_index_mn": demand.get("demand_index_mn", 0),
            "metric_scores": demand.get("metric_scores") or {"readiness": 0, "spread": 0},
            "trend_5y": demand.get("trend_5y"),
            "totalKeywordsInput": demand.get("totalKeywordsInput", 0),
            "totalKeywordsUsedInMetrics": demand.get("totalKeywordsUsedInMetrics", 0),
            "metricsVersion": version,
            "version": version,
            "computedAt": stamp,
            "category_id": key.category_id,
            "month": target_month,
            "country_code": key.country,
            "language_code": key.language,
            "corpusSnapshotId": corpus_snapshot_id,
            "corpusFingerprint": corpus_fingerprint,
            "snapshot_id": doc_id,
            "docId": doc_id,
            "created_at_iso": stamp,
            "updated_at_iso": stamp,
            "lifecycle": Lifecycle.CERTIFIED.value,
            "poisoned": False,
            "strategy": dict(strategy or {}),
            "demand": demand or None,
            "integrity": {"sha256": "derived_v1"},
        }

        def _create() -> DemandOutputV3:
            path = self.doc_path(key, target_month)
            existing = self._store.get(path)
            if existing is not None:
                payload.update({k: existing.data[k] for k in POISON_HISTORY_KEYS if k in existing.data})
            self._store.set(path, sanitize(payload))
            logger.info(
                "demand_output.snapshot.created",
                doc_id=doc_id,
                corpus_snapshot_id=corpus_snapshot_id,
                demand_index_mn=payload["demand_index_mn"],
            )
            return DemandOutputV3.model_validate(sanitize(payload))

        result = guard(_create)
        if result.is_err():
            logger.error("demand_output.snapshot.failed", doc_id=doc_id, error=result.reason)
        return result

    def mark_poisoned(
        self,
        key: SnapshotKey,
        month: str,
        *,
        reason: str = POISON_REASON_CERTIFIED_BUT_ZERO,
        poisoned_by: str = "IntegrityConsole",
    ) -> Result[dict[str, Any]]:
        """Flag the output POISONED by merge. The document is never deleted."""
        patch = {
            "lifecycle": Lifecycle.POISONED.value,
            "poisoned": True,
            "poisonedAt": now_iso(self._clock),
            "poisonReason": reason,
            "poisonedBy": poisoned_by,
        }

        def _mark() -> dict[str, Any]:
            self._store.set(self.doc_path(key, month), patch, merge=True)
            logger.warning(
                "demand_output.poisoned",
                doc_id=self.doc_id(key.category_id, month),
                reason=reason,
                poisoned_by=poisoned_by,
            )
            return patch

        return guard(_mark)


__all__ = [
    "DemandOutput",
    "DemandOutputStore",
    "DemandOutputV3",
    "LegacyDemandOutput",
    "MetricScores",
    "POISON_HISTORY_KEYS",
    "POISON_REASON_CERTIFIED_BUT_ZERO",
    "V3_ROOT_KEYS",
    "headline_value",
    "is_positive_finite",
    "is_valid_certified_snapshot",
    "parse_demand_output",
    "version_of",
]
