"""
Per-call resolution context.

Collection overrides (a test harvester collection, an alternate snapshot
root) travel with the request in a :class:`ResolutionContext` instead of
living in module-level state, so two callers in one process never see each
other's overrides.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from snapshot_spine.core.settings import DEMAND_OUTPUT_VERSION, SnapshotSpineSettings
from snapshot_spine.snapshots.models import SnapshotKey
from snapshot_spine.snapshots.signal_corpus import CorpusBuildOptions
from snapshot_spine.storage import paths
from snapshot_spine.storage.indexes import DEFAULT_SIGNALS_COLLECTION


@dataclass(frozen=True, slots=True)
class ResolutionContext:
    """Locale, collection overrides and scan bounds for one resolution call.

    Attributes:
        country: Country code of the snapshot series (``IN``).
        language: Language code of the snapshot series (``en``).
        signals_collection: Harvester collection the signal paths query.
        snapshot_root: Root collection of keyword snapshots.
        output_version: Metrics version a demand output must carry.
        demand_scan_limit: Newest snapshots the demand ladder inspects.
        keyword_scan_limit: Candidates the keyword scan inspects.
        corpus_options: Build options when a signal corpus is built on demand.
    """

    country: str = "IN"
    language: str = "en"
    signals_collection: str = DEFAULT_SIGNALS_COLLECTION
    snapshot_root: str = paths.CATEGORY_SNAPSHOTS_ROOT
    output_version: str = DEMAND_OUTPUT_VERSION
    demand_scan_limit: int = 30
    keyword_scan_limit: int = 50
    corpus_options: CorpusBuildOptions = CorpusBuildOptions()

    @classmethod
    def from_settings(cls, settings: SnapshotSpineSettings) -> ResolutionContext:
        return cls(
            country=settings.country,
            language=settings.language,
            signals_collection=settings.signals_collection,
            output_version=settings.demand_output_version,
            demand_scan_limit=settings.demand_scan_limit,
            keyword_scan_limit=settings.keyword_scan_limit,
            corpus_options=CorpusBuildOptions(
                limit=settings.signal_limit,
                platform_cap_ratio=settings.platform_cap_ratio,
                chunk_size=settings.signal_chunk_size,
                sparse_window_threshold=settings.sparse_window_threshold,
                fallback_window_days=settings.fallback_window_days,
            ),
        )

    def key(self, category_id: str) -> SnapshotKey:
        return SnapshotKey(category_id, self.country, self.language)

    def with_overrides(self, **changes: Any) -> ResolutionContext:
        """Copy of this context with ``changes`` applied; the original is untouched."""
        return replace(self, **changes)


__all__ = ["ResolutionContext"]
