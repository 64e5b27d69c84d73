"""
Typed CRUD over keyword snapshot documents plus their chunked rows.

Snapshots live at
``mci_category_snapshots/{country}/{lang}/{category}/snapshots/{snapshot_id}``
with rows in the ``chunks`` sub-collection underneath.

Manifesto:
    The snapshot document is the *metadata* of record; the rows are bulk
    payload. The two must never disagree about how many chunks exist, so
    every row write also refreshes ``integrity`` and ``stats`` and every
    row read checks the chunk count against ``integrity.chunk_count``.

    - **Uniform results:** Every public method returns ``Ok | Err``
    - **Creation-ordered ids:** ``snap_{epoch_ms}_draft``, strictly
      increasing within a process, derived from the same instant as
      ``created_at_iso``
    - **Loud overrides:** ``force_mark_all_valid`` manufactures data and
      logs at warning level every time it runs

Examples:
    >>> store = CategorySnapshotStore(MemoryDocumentStore())
    >>> snap = store.create_draft("shampoo", anchors=["anti dandruff"]).unwrap()
    >>> snap.lifecycle
    'DRAFT'

Tags:
    snapshot, lifecycle, chunks, stats, crud, snapshot-spine
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from snapshot_spine.core.errors import DocumentNotFoundError, ValidationError
from snapshot_spine.core.hashing import keyword_fingerprint
from snapshot_spine.core.lifecycle import Lifecycle, RowStatus, lifecycle_value
from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.result import Result, guard
from snapshot_spine.core.sanitize import sanitize
from snapshot_spine.core.timestamps import Clock, MonotonicMillis, iso_from_epoch_ms, now_iso
from snapshot_spine.snapshots.chunk_store import DEFAULT_CHUNK_SIZE, ChunkStore
from snapshot_spine.snapshots.models import (
    CategorySnapshot,
    ChunkRecord,
    KeywordRow,
    SnapshotAnchor,
    SnapshotIntegrity,
    SnapshotKey,
    SnapshotStats,
    SnapshotTargets,
)
from snapshot_spine.storage import paths
from snapshot_spine.storage.protocols import DocumentStore, OrderBy, Query

logger = get_logger(__name__)


def _row_value(row: Mapping[str, Any] | KeywordRow, name: str) -> Any:
    value = getattr(row, name, None) if isinstance(row, KeywordRow) else row.get(name)
    return getattr(value, "value", value)


def compute_stats(
    rows: Sequence[Mapping[str, Any] | KeywordRow],
    anchors: Iterable[SnapshotAnchor | str] = (),
) -> SnapshotStats:
    """
    Recount a snapshot's stats from its rows.

    Zero rows produce all-zero stats. ``anchors_total`` counts declared
    anchors, or the distinct anchors seen in rows when none are declared.
    """
    statuses = Counter(_row_value(r, "status") or RowStatus.UNVERIFIED.value for r in rows)
    per_total: Counter[str] = Counter()
    per_valid: Counter[str] = Counter()
    for row in rows:
        anchor = str(_row_value(row, "anchor_id") or "")
        per_total[anchor] += 1
        if _row_value(row, "status") == RowStatus.VALID.value:
            per_valid[anchor] += 1

    declared = [a.anchor_id if isinstance(a, SnapshotAnchor) else a for a in anchors]
    return SnapshotStats(
        anchors_total=len(declared) if declared else len(per_total),
        keywords_total=len(rows),
        validated_total=len(rows) - statuses[RowStatus.UNVERIFIED.value],
        valid_total=statuses[RowStatus.VALID.value],
        zero_total=statuses[RowStatus.ZERO.value],
        low_total=statuses[RowStatus.LOW.value],
        error_total=statuses[RowStatus.ERROR.value],
        per_anchor_valid_counts=dict(per_valid),
        per_anchor_total_counts=dict(per_total),
    )


def corpus_fingerprint(rows: Iterable[KeywordRow]) -> str:
    """Keyword-base fingerprint of snapshot rows, recorded on outputs for drift checks."""
    return keyword_fingerprint(
        {
            "keywordCanonical": row.keyword_text,
            "anchor": row.anchor_id,
            "intent": row.intent_bucket,
            "language": row.language_code,
            "canonicalFamilyId": row.keyword_id,
        }
        for row in rows
    )


class CategorySnapshotStore:
    """Keyword snapshot metadata and rows for any (category, country, language)."""

    def __init__(
        self,
        store: DocumentStore,
        chunks: ChunkStore | None = None,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        root: str = paths.CATEGORY_SNAPSHOTS_ROOT,
        clock: Clock | None = None,
        ids: MonotonicMillis | None = None,
    ):
        self._store = store
        self._chunks = chunks or ChunkStore(store, clock=clock)
        self._chunk_size = chunk_size
        self._root = root
        self._clock = clock
        self._ids = ids or MonotonicMillis(clock)

    @property
    def chunks(self) -> ChunkStore:
        return self._chunks

    def doc_path(self, key: SnapshotKey, snapshot_id: str) -> str:
        return paths.snapshot_doc(key.category_id, key.country, key.language, snapshot_id, self._root)

    def _load(self, key: SnapshotKey, snapshot_id: str) -> CategorySnapshot:
        doc = self._store.get(self.doc_path(key, snapshot_id))
        if doc is None:
            raise DocumentNotFoundError(f"Snapshot {snapshot_id} not found").with_context(
                category_id=key.category_id, snapshot_id=snapshot_id
            )
        return CategorySnapshot.model_validate(doc.data)

    def _save(self, snapshot: CategorySnapshot) -> CategorySnapshot:
        snapshot.updated_at_iso = now_iso(self._clock)
        self._store.set(self.doc_path(snapshot.key, snapshot.snapshot_id), sanitize(snapshot.to_document()))
        return snapshot

    # ------------------------------------------------------------------ #
    # Metadata
    # ------------------------------------------------------------------ #

    def create_draft(
        self,
        category_id: str,
        anchors: Sequence[SnapshotAnchor | str] = (),
        targets: SnapshotTargets | None = None,
        *,
        country: str = "IN",
        language: str = "en",
    ) -> Result[CategorySnapshot]:
        """Allocate a new DRAFT snapshot with zeroed stats."""

        def _create() -> CategorySnapshot:
            stamp = self._ids.next()
            created = iso_from_epoch_ms(stamp)
            anchor_models = [
                a if isinstance(a, SnapshotAnchor) else SnapshotAnchor(anchor_id=a, order=i)
                for i, a in enumerate(anchors)
            ]
            snapshot = CategorySnapshot(
                snapshot_id=f"snap_{stamp}_draft",
                category_id=category_id,
                country_code=country,
                language_code=language,
                lifecycle=Lifecycle.DRAFT,
                created_at_iso=created,
                updated_at_iso=created,
                anchors=anchor_models,
                targets=targets or SnapshotTargets(),
                stats=SnapshotStats(anchors_total=len(anchor_models)),
                integrity=SnapshotIntegrity(sha256="", chunk_count=0, chunk_size=self._chunk_size),
            )
            self._store.set(self.doc_path(snapshot.key, snapshot.snapshot_id), sanitize(snapshot.to_document()))
            logger.info("snapshot.draft.created", category_id=category_id, snapshot_id=snapshot.snapshot_id)
            return snapshot

        return guard(_create)

    def get_latest(self, key: SnapshotKey, lifecycles: Iterable[str] | None = None) -> Result[CategorySnapshot]:
        """
        Newest snapshot by ``created_at_iso``, optionally restricted to a
        lifecycle allow-list. The allow-list is applied in memory over the
        ordered scan so no composite index is needed.
        """
        allowed = {lifecycle_value(lc) for lc in lifecycles} if lifecycles else None

        def _latest() -> CategorySnapshot:
            query = Query(
                paths.snapshots_collection(key.category_id, key.country, key.language, self._root),
                order_by=[OrderBy("created_at_iso", descending=True)],
                limit=None if allowed else 1,
            )
            for doc in self._store.query(query):
                if allowed is None or doc.data.get("lifecycle") in allowed:
                    return CategorySnapshot.model_validate(doc.data)
            raise DocumentNotFoundError("No snapshot matches").with_context(
                category_id=key.category_id, metadata={"lifecycles": sorted(allowed or [])}
            )

        return guard(_latest)

    def get_by_id(self, key: SnapshotKey, snapshot_id: str) -> Result[CategorySnapshot]:
        return guard(lambda: self._load(key, snapshot_id))

    def write(self, snapshot: CategorySnapshot) -> Result[CategorySnapshot]:
        """Upsert metadata; ``updated_at_iso`` is always refreshed."""
        return guard(lambda: self._save(snapshot))

    def set_lifecycle(self, key: SnapshotKey, snapshot_id: str, lifecycle: Lifecycle) -> Result[CategorySnapshot]:
        def _advance() -> CategorySnapshot:
            snapshot = self._load(key, snapshot_id)
            if snapshot.lifecycle == Lifecycle.POISONED.value and lifecycle != Lifecycle.POISONED:
                raise ValidationError(f"Snapshot {snapshot_id} is POISONED; lifecycle is terminal")
            snapshot.lifecycle = lifecycle
            logger.info("snapshot.lifecycle.set", snapshot_id=snapshot_id, lifecycle=lifecycle.value)
            return self._save(snapshot)

        return guard(_advance)

    # ------------------------------------------------------------------ #
    # Rows
    # ------------------------------------------------------------------ #

    def write_rows(
        self,
        key: SnapshotKey,
        snapshot_id: str,
        rows: Sequence[Mapping[str, Any] | KeywordRow],
        chunk_size: int | None = None,
    ) -> Result[CategorySnapshot]:
        """Persist rows as chunks, then refresh integrity and stats on the metadata."""
        size = chunk_size or self._chunk_size

        def _write() -> CategorySnapshot:
            snapshot = self._load(key, snapshot_id)
            summary = self._chunks.write_chunks(self.doc_path(key, snapshot_id), rows, size).unwrap()
            snapshot.integrity = SnapshotIntegrity(
                sha256=summary.combined_sha256,
                chunk_count=summary.chunk_count,
                chunk_size=size,
                last_published_iso=now_iso(self._clock),
            )
            snapshot.stats = compute_stats(rows, snapshot.anchors)
            return self._save(snapshot)

        return guard(_write)

    def read_rows(self, key: SnapshotKey, snapshot_id: str) -> Result[list[KeywordRow]]:
        """All rows, with the chunk count checked against the metadata."""

        def _read() -> list[KeywordRow]:
            snapshot = self._load(key, snapshot_id)
            result = self._chunks.read_chunks(
                self.doc_path(key, snapshot_id), expected_count=snapshot.integrity.chunk_count
            ).unwrap()
            return [KeywordRow.model_validate(r) for r in result.rows]

        return guard(_read)

    def get_chunk_ids(self, key: SnapshotKey, snapshot_id: str) -> Result[list[str]]:
        return self._chunks.get_chunk_ids(self.doc_path(key, snapshot_id))

    def read_chunk(self, key: SnapshotKey, snapshot_id: str, chunk_id: str) -> Result[ChunkRecord]:
        return self._chunks.read_chunk(self.doc_path(key, snapshot_id), chunk_id)

    def write_chunk(
        self,
        key: SnapshotKey,
        snapshot_id: str,
        chunk_id: str,
        rows: Sequence[Mapping[str, Any] | KeywordRow],
        index: int,
    ) -> Result[str]:
        return self._chunks.write_single_chunk(self.doc_path(key, snapshot_id), chunk_id, rows, index)

    def force_mark_all_valid(self, key: SnapshotKey, snapshot_id: str) -> Result[CategorySnapshot]:
        """
        Last-resort unblock: mark every row VALID with placeholder measures.

        This manufactures data. It is never called by the pipeline or by
        repair; only an operator invokes it.
        """

        def _force() -> CategorySnapshot:
            rows = self.read_rows(key, snapshot_id).unwrap()
            stamp = now_iso(self._clock)
            for row in rows:
                row.status = RowStatus.VALID.value
                row.validation_tier = "A"
                row.volume = 500
                row.cpc = 1.0
                row.competition = 0.5
                row.validated_at_iso = stamp
                row.active = True
            logger.warning(
                "snapshot.force_mark_all_valid",
                category_id=key.category_id,
                snapshot_id=snapshot_id,
                rows=len(rows),
                manufactured_data=True,
            )
            return self.write_rows(key, snapshot_id, rows).unwrap()

        return guard(_force)


__all__ = ["CategorySnapshotStore", "compute_stats", "corpus_fingerprint"]
