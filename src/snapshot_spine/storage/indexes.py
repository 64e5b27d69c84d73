"""Composite indexes the deployed system provisions."""

from __future__ import annotations

from snapshot_spine.storage import paths
from snapshot_spine.storage.protocols import CompositeIndex

DEFAULT_SIGNALS_COLLECTION = "signal_harvester_v2"


def signal_indexes(collection: str = DEFAULT_SIGNALS_COLLECTION) -> list[CompositeIndex]:
    """Canonical (category + trusted + recency) and category-light indexes."""
    return [
        CompositeIndex(
            collection,
            (("categoryId", "ASC"), ("trusted", "ASC"), ("lastSeenAt", "DESC")),
        ),
        CompositeIndex(collection, (("categoryId", "ASC"), ("lastSeenAt", "DESC"))),
    ]


def default_indexes(signals_collection: str = DEFAULT_SIGNALS_COLLECTION) -> list[CompositeIndex]:
    return [
        CompositeIndex(
            paths.SNAPSHOTS_GROUP,
            (("category_id", "ASC"), ("created_at_iso", "DESC")),
            collection_group=True,
        ),
        CompositeIndex(
            paths.REPORT_RUNS,
            (("categoryId", "ASC"), ("monthKey", "ASC"), ("generatedAt", "DESC")),
        ),
        *signal_indexes(signals_collection),
    ]


__all__ = ["DEFAULT_SIGNALS_COLLECTION", "signal_indexes", "default_indexes"]
