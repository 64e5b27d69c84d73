"""
Active keyword snapshot resolution.

Ladder:
    1. ``CORPUS_INDEX``: the pointer names a real, non-poisoned snapshot
       that still exists and holds rows
    2. collection-group scan of ``snapshots`` for the category, newest first:

       - ``SCAN_PRIORITY``: certified or validated with valid rows
       - ``SCAN_VALID``: any lifecycle with valid rows
       - ``SCAN_ROWS``: any lifecycle with rows
       - ``SCAN_LATEST``: the newest candidate

    3. ``NONE``: explicit failure

Diagnostic snapshots (``diag_*``, ``v4_check_*``, ids containing
``integrity``) are never returned. A scan hit heals the pointer unless the
resolver was built with ``heal=False``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from snapshot_spine.core.lifecycle import TRUSTED_SCAN_SET, is_poisoned, lifecycle_value
from snapshot_spine.core.logging import get_logger
from snapshot_spine.resolution.context import ResolutionContext
from snapshot_spine.snapshots.corpus_index import CorpusIndexStore
from snapshot_spine.snapshots.models import CategorySnapshot
from snapshot_spine.storage import paths
from snapshot_spine.storage.protocols import DocumentStore, FieldFilter, Query

logger = get_logger(__name__)

SNAPSHOT_ID_PREFIXES = ("snap_", "cbv3_")
DIAGNOSTIC_PREFIXES = ("diag_", "v4_check_")


def is_real_snapshot(snapshot_id: str | None) -> bool:
    """Production snapshot ids only; diagnostic and probe ids are rejected."""
    if not snapshot_id or not snapshot_id.startswith(SNAPSHOT_ID_PREFIXES):
        return False
    return not snapshot_id.startswith(DIAGNOSTIC_PREFIXES) and "integrity" not in snapshot_id


def _usable(snapshot: CategorySnapshot) -> bool:
    return not (snapshot.poisoned or is_poisoned(snapshot.lifecycle))


@dataclass
class ResolvedKeywordSnapshot:
    ok: bool
    category_id: str
    snapshot_id: str | None = None
    snapshot_status: str = "UNKNOWN"
    resolution_status: str = "NOT_FOUND"
    reason: str = ""
    source: str = "NONE"
    snapshot: CategorySnapshot | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        stats = self.snapshot.stats if self.snapshot is not None else None
        return {
            "ok": self.ok,
            "categoryId": self.category_id,
            "snapshotId": self.snapshot_id,
            "snapshotStatus": self.snapshot_status,
            "resolutionStatus": self.resolution_status,
            "source": self.source,
            "reason": self.reason,
            "keywordsTotal": stats.keywords_total if stats else None,
            "validTotal": stats.valid_total if stats else None,
            "error": self.error,
        }


class KeywordSnapshotResolver:
    def __init__(self, store: DocumentStore, *, corpus_index: CorpusIndexStore | None = None, heal: bool = True):
        self._store = store
        self._index = corpus_index or CorpusIndexStore(store)
        # Read-only callers (audits, previews) turn pointer healing off.
        self._heal_pointer = heal

    def _from_pointer(self, category_id: str, ctx: ResolutionContext) -> tuple[CategorySnapshot | None, bool]:
        """Snapshot named by the pointer, and whether a pointer existed but was rejected."""
        pointer = self._index.get(ctx.key(category_id))
        if pointer.is_err():
            return None, False
        active = pointer.data.active_snapshot_id
        if not is_real_snapshot(active):
            logger.warning("keywords.pointer.ignored", category_id=category_id, snapshot_id=active)
            return None, True
        doc = self._store.get(paths.snapshot_doc(category_id, ctx.country, ctx.language, active, ctx.snapshot_root))
        if doc is None:
            logger.warning("keywords.pointer.dangling", category_id=category_id, snapshot_id=active)
            return None, True
        snapshot = CategorySnapshot.model_validate(doc.data)
        if _usable(snapshot) and (snapshot.stats.valid_total > 0 or snapshot.stats.keywords_total > 0):
            return snapshot, False
        logger.warning(
            "keywords.pointer.rejected",
            category_id=category_id,
            snapshot_id=active,
            lifecycle=lifecycle_value(snapshot.lifecycle),
        )
        return None, True

    def _scan(self, category_id: str, ctx: ResolutionContext) -> list[CategorySnapshot]:
        docs = self._store.query(
            Query(
                paths.SNAPSHOTS_GROUP,
                filters=[FieldFilter("category_id", "==", category_id)],
                limit=ctx.keyword_scan_limit,
                collection_group=True,
            )
        )
        candidates: list[CategorySnapshot] = []
        for doc in docs:
            if not doc.path.startswith(f"{ctx.snapshot_root}/") or not is_real_snapshot(doc.data.get("snapshot_id")):
                continue
            try:
                snapshot = CategorySnapshot.model_validate(doc.data)
            except PydanticValidationError:
                logger.warning("keywords.scan.malformed", path=doc.path)
                continue
            if snapshot.country_code == ctx.country and snapshot.language_code == ctx.language and _usable(snapshot):
                candidates.append(snapshot)
        candidates.sort(key=lambda s: s.created_at_iso or s.updated_at_iso or "", reverse=True)
        return candidates

    def resolve(self, category_id: str, ctx: ResolutionContext | None = None) -> ResolvedKeywordSnapshot:
        ctx = ctx or ResolutionContext()
        logger.info("keywords.resolve.start", category_id=category_id)

        pointer_rejected = False
        try:
            snapshot, pointer_rejected = self._from_pointer(category_id, ctx)
        except Exception as e:
            logger.warning("keywords.pointer.failed", category_id=category_id, error=str(e))
            snapshot = None
        if snapshot is not None:
            return self._success(category_id, snapshot, "CORPUS_INDEX", "Stable Index Pointer")

        try:
            candidates = self._scan(category_id, ctx)
        except Exception as e:
            logger.warning("keywords.scan.failed", category_id=category_id, error=str(e))
            candidates = []
        logger.info("keywords.scan.candidates", category_id=category_id, count=len(candidates))

        passes = (
            ("SCAN_PRIORITY", lambda s: lifecycle_value(s.lifecycle) in TRUSTED_SCAN_SET and s.stats.valid_total > 0, "Valid > 0"),
            ("SCAN_VALID", lambda s: s.stats.valid_total > 0, "Valid > 0"),
            ("SCAN_ROWS", lambda s: s.stats.keywords_total > 0, "Rows > 0"),
            ("SCAN_LATEST", lambda s: True, "Latest"),
        )
        for source, accept, label in passes:
            hit = next((s for s in candidates if accept(s)), None)
            if hit is not None:
                if self._heal_pointer:
                    self._heal(hit, force=pointer_rejected)
                return self._success(category_id, hit, source, f"Found {lifecycle_value(hit.lifecycle)} ({label})")

        return ResolvedKeywordSnapshot(
            ok=False,
            category_id=category_id,
            reason="No valid snapshot found",
            error="SNAPSHOT_NOT_FOUND",
        )

    def _heal(self, snapshot: CategorySnapshot, *, force: bool) -> None:
        healed = self._index.upsert_from_snapshot(snapshot, force=force)
        if healed.is_err():
            logger.warning("keywords.pointer.heal_failed", snapshot_id=snapshot.snapshot_id, error=healed.reason)

    @staticmethod
    def _success(category_id: str, snapshot: CategorySnapshot, source: str, reason: str) -> ResolvedKeywordSnapshot:
        logger.info("keywords.resolve.hit", category_id=category_id, snapshot_id=snapshot.snapshot_id, source=source)
        return ResolvedKeywordSnapshot(
            ok=True,
            category_id=category_id,
            snapshot_id=snapshot.snapshot_id,
            snapshot_status=lifecycle_value(snapshot.lifecycle),
            resolution_status="OK",
            reason=reason,
            source=source,
            snapshot=snapshot,
        )


__all__ = ["KeywordSnapshotResolver", "ResolvedKeywordSnapshot", "is_real_snapshot"]
