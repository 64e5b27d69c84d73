"""
Shared pytest fixtures for snapshot-spine tests.

This module provides:
- Document stores (plain, index-enforcing, sqlite on a temp file)
- A fixed clock so snapshot ids and month keys are deterministic
- Seed helpers for keyword snapshots, demand outputs and harvested signals

Usage:
    Fixtures are auto-discovered by pytest. Seed helpers are fixtures that
    return callables:

        def test_something(memory_store, seed_snapshot):
            snapshot = seed_snapshot(memory_store, "shampoo", rows=12)
"""

from collections.abc import Callable, Generator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from snapshot_spine.core.lifecycle import Lifecycle
from snapshot_spine.core.settings import DEMAND_OUTPUT_VERSION, SnapshotSpineSettings
from snapshot_spine.snapshots.demand_output import DemandOutputStore
from snapshot_spine.snapshots.models import CategorySnapshot, SnapshotKey
from snapshot_spine.snapshots.snapshot_store import CategorySnapshotStore
from snapshot_spine.storage import paths
from snapshot_spine.storage.indexes import DEFAULT_SIGNALS_COLLECTION, default_indexes
from snapshot_spine.storage.memory import MemoryDocumentStore
from snapshot_spine.storage.protocols import CompositeIndex
from snapshot_spine.storage.sqlite import SqliteDocumentStore

FIXED_NOW = datetime(2025, 12, 15, 12, 0, 0, tzinfo=UTC)
MONTH = "2025-12"


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock pinned to 2025-12-15T12:00:00Z."""
    return lambda: FIXED_NOW


@pytest.fixture
def month() -> str:
    return MONTH


# =============================================================================
# Stores
# =============================================================================


@pytest.fixture
def memory_store() -> MemoryDocumentStore:
    """In-memory store that never enforces composite indexes."""
    return MemoryDocumentStore()


@pytest.fixture
def indexed_store() -> MemoryDocumentStore:
    """In-memory store with the deployed indexes, enforced."""
    return MemoryDocumentStore(indexes=default_indexes(), enforce_indexes=True)


@pytest.fixture
def no_signal_index_store() -> MemoryDocumentStore:
    """Enforcing store where the harvester collection has no composite indexes."""
    indexes: list[CompositeIndex] = [
        index for index in default_indexes() if index.collection != DEFAULT_SIGNALS_COLLECTION
    ]
    return MemoryDocumentStore(indexes=indexes, enforce_indexes=True)


@pytest.fixture
def sqlite_store(tmp_path: Path) -> Generator[SqliteDocumentStore, None, None]:
    store = SqliteDocumentStore(tmp_path / "documents.db")
    yield store
    store.close()


@pytest.fixture
def settings(tmp_path: Path) -> SnapshotSpineSettings:
    return SnapshotSpineSettings(
        store_backend="memory",
        sqlite_path=tmp_path / "unused.db",
        heartbeat_interval=0.05,
        stage_timeout=2.0,
    )


# =============================================================================
# Seed helpers
# =============================================================================


def _rows(count: int, *, anchors: tuple[str, ...] = ("anti dandruff", "hair fall"), status: str = "VALID") -> list[dict[str, Any]]:
    return [
        {
            "keyword_id": f"kw_{i:03d}",
            "keyword_text": f"shampoo keyword {i}",
            "anchor_id": anchors[i % len(anchors)],
            "intent_bucket": "Discovery",
            "status": status,
            "volume": 100 + i,
        }
        for i in range(count)
    ]


@pytest.fixture
def make_rows() -> Callable[..., list[dict[str, Any]]]:
    """Factory for keyword row dicts: ``make_rows(10, status="UNVERIFIED")``."""
    return _rows


@pytest.fixture
def seed_snapshot(clock: Callable[[], datetime]) -> Callable[..., CategorySnapshot]:
    """Create a keyword snapshot with rows and a lifecycle in one call."""

    def _seed(
        store: Any,
        category_id: str = "shampoo",
        *,
        rows: int = 12,
        status: str = "VALID",
        lifecycle: Lifecycle = Lifecycle.VALIDATED,
        chunk_size: int = 5,
        snapshots: CategorySnapshotStore | None = None,
    ) -> CategorySnapshot:
        snapshots = snapshots or CategorySnapshotStore(store, chunk_size=chunk_size, clock=clock)
        key = SnapshotKey(category_id)
        draft = snapshots.create_draft(category_id, anchors=["anti dandruff", "hair fall"]).unwrap()
        if rows:
            snapshots.write_rows(key, draft.snapshot_id, _rows(rows, status=status)).unwrap()
        if lifecycle != Lifecycle.DRAFT:
            return snapshots.set_lifecycle(key, draft.snapshot_id, lifecycle).unwrap()
        return snapshots.get_by_id(key, draft.snapshot_id).unwrap()

    return _seed


@pytest.fixture
def seed_output(clock: Callable[[], datetime]) -> Callable[..., dict[str, Any]]:
    """Write a CERTIFIED demand output for (category, month)."""

    def _seed(
        store: Any,
        category_id: str = "shampoo",
        month: str = MONTH,
        *,
        demand_index_mn: float = 42.5,
        corpus_snapshot_id: str = "snap_1765800000000_draft",
        version: str = DEMAND_OUTPUT_VERSION,
    ) -> dict[str, Any]:
        outputs = DemandOutputStore(store, clock=clock)
        outputs.create_output_snapshot(
            corpus_snapshot_id,
            SnapshotKey(category_id),
            month,
            demand={
                "demand_index_mn": demand_index_mn,
                "metric_scores": {"readiness": 6.5, "spread": 4.0},
                "totalKeywordsInput": 120,
                "totalKeywordsUsedInMetrics": 96,
            },
            metrics_version=version,
        ).unwrap()
        return store.get(paths.demand_output_doc(category_id, month, "IN", "en")).data

    return _seed


@pytest.fixture
def seed_signals() -> Callable[..., list[str]]:
    """Write harvested signal documents into the harvester collection."""

    def _seed(
        store: Any,
        category_id: str = "shampoo",
        *,
        count: int = 30,
        day: str = "2025-12-10",
        trusted: Any = True,
        trust_score: float = 90,
        enrichment: str = "OK",
        platforms: tuple[str, ...] = ("reddit", "youtube", "instagram"),
        collection: str = DEFAULT_SIGNALS_COLLECTION,
        prefix: str = "sig",
    ) -> list[str]:
        ids = []
        for i in range(count):
            doc_id = f"{prefix}_{category_id}_{i:03d}"
            store.set(
                paths.join_path(collection, doc_id),
                {
                    "categoryId": category_id,
                    "trusted": trusted,
                    "trustScore": trust_score,
                    "lastSeenAt": f"{day}T{i % 24:02d}:{i % 60:02d}:00.000Z",
                    "platform": platforms[i % len(platforms)],
                    "title": f"Signal {i}",
                    "url": f"https://example.com/{doc_id}",
                    "_meta": {"enrichmentStatus": enrichment},
                },
            )
            ids.append(doc_id)
        return ids

    return _seed
