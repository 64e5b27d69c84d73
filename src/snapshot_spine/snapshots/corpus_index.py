"""
Corpus index: the O(1) pointer to the active keyword snapshot.

One document per (category, country, language) at
``corpus_index/{category}__{country}__{language}``. The pointer is a cache;
the keyword resolver always falls back to a collection-group scan when it
is missing or stale and then heals it through :meth:`upsert_from_snapshot`.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from snapshot_spine.core.errors import DocumentNotFoundError
from snapshot_spine.core.lifecycle import lifecycle_value, priority
from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.result import Result, guard
from snapshot_spine.core.sanitize import sanitize
from snapshot_spine.core.timestamps import Clock, now_iso
from snapshot_spine.snapshots.models import CategorySnapshot, SnapshotKey
from snapshot_spine.storage import paths
from snapshot_spine.storage.protocols import DocumentStore

logger = get_logger(__name__)


class KeywordTotals(BaseModel):
    total: int = 0
    validated: int = 0
    valid: int = 0
    zero: int = 0


class AnchorStat(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    anchor_id: str = Field(alias="anchorId")
    total: int = 0
    valid: int = 0
    zero: int = 0
    yield_rate: float = Field(0.0, alias="yieldRate")


class CorpusPointer(BaseModel):
    """Stored pointer document, camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    category_id: str = Field(alias="categoryId")
    country_code: str = Field("IN", alias="countryCode")
    language_code: str = Field("en", alias="languageCode")
    active_snapshot_id: str | None = Field(None, alias="activeSnapshotId")
    snapshot_status: str | None = Field(None, alias="snapshotStatus")
    keyword_totals: KeywordTotals = Field(default_factory=KeywordTotals, alias="keywordTotals")
    anchor_stats: list[AnchorStat] = Field(default_factory=list, alias="anchorStats")
    updated_at: str | None = Field(None, alias="updatedAt")

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def pointer_from_snapshot(snapshot: CategorySnapshot, updated_at: str) -> CorpusPointer:
    stats = snapshot.stats
    anchor_ids = [a.anchor_id for a in snapshot.anchors]
    anchor_ids += [a for a in stats.per_anchor_total_counts if a not in anchor_ids]
    anchor_stats = []
    for anchor_id in anchor_ids:
        total = stats.per_anchor_total_counts.get(anchor_id, 0)
        valid = stats.per_anchor_valid_counts.get(anchor_id, 0)
        anchor_stats.append(
            AnchorStat(
                anchor_id=anchor_id,
                total=total,
                valid=valid,
                zero=total - valid,
                yield_rate=valid / total if total else 0.0,
            )
        )
    return CorpusPointer(
        category_id=snapshot.category_id,
        country_code=snapshot.country_code,
        language_code=snapshot.language_code,
        active_snapshot_id=snapshot.snapshot_id,
        snapshot_status=lifecycle_value(snapshot.lifecycle),
        keyword_totals=KeywordTotals(
            total=stats.keywords_total,
            validated=stats.validated_total,
            valid=stats.valid_total,
            zero=stats.zero_total,
        ),
        anchor_stats=anchor_stats,
        updated_at=updated_at,
    )


class CorpusIndexStore:
    def __init__(self, store: DocumentStore, *, clock: Clock | None = None):
        self._store = store
        self._clock = clock

    def get(self, key: SnapshotKey) -> Result[CorpusPointer]:
        def _get() -> CorpusPointer:
            doc = self._store.get(paths.corpus_index_doc(key.category_id, key.country, key.language))
            if doc is None:
                raise DocumentNotFoundError("No corpus index pointer").with_context(category_id=key.category_id)
            return CorpusPointer.model_validate(doc.data)

        return guard(_get)

    def upsert_from_snapshot(self, snapshot: CategorySnapshot, *, force: bool = False) -> Result[CorpusPointer]:
        """
        Point the index at ``snapshot``.

        A pointer to a different snapshot with a higher lifecycle priority is
        left alone unless ``force`` is set; the pointer in effect is returned
        either way.
        """

        def _upsert() -> CorpusPointer:
            path = paths.corpus_index_doc(snapshot.category_id, snapshot.country_code, snapshot.language_code)
            current_doc = self._store.get(path)
            if current_doc is not None and not force:
                current = CorpusPointer.model_validate(current_doc.data)
                if current.active_snapshot_id != snapshot.snapshot_id and priority(
                    current.snapshot_status
                ) > priority(snapshot.lifecycle):
                    logger.info(
                        "corpus_index.upsert.skipped",
                        category_id=snapshot.category_id,
                        current=current.active_snapshot_id,
                        current_status=current.snapshot_status,
                        candidate=snapshot.snapshot_id,
                        candidate_status=lifecycle_value(snapshot.lifecycle),
                    )
                    return current

            pointer = pointer_from_snapshot(snapshot, now_iso(self._clock))
            self._store.set(path, sanitize(pointer.to_document()))
            logger.info(
                "corpus_index.upsert.done",
                category_id=snapshot.category_id,
                snapshot_id=snapshot.snapshot_id,
                status=pointer.snapshot_status,
            )
            return pointer

        return guard(_upsert)


__all__ = ["AnchorStat", "CorpusIndexStore", "CorpusPointer", "KeywordTotals", "pointer_from_snapshot"]
