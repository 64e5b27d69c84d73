"""Snapshot, chunk and pointer stores. Every public method returns ``Ok | Err``."""

from snapshot_spine.snapshots.chunk_store import ChunkStore, combined_hash
from snapshot_spine.snapshots.corpus_index import CorpusIndexStore, CorpusPointer
from snapshot_spine.snapshots.demand_output import (
    DemandOutputStore,
    DemandOutputV3,
    LegacyDemandOutput,
    headline_value,
    is_valid_certified_snapshot,
)
from snapshot_spine.snapshots.models import (
    CategorySnapshot,
    ChunkRecord,
    KeywordRow,
    SnapshotAnchor,
    SnapshotKey,
    SnapshotStats,
)
from snapshot_spine.snapshots.report_store import ReportPointer, ReportResult, ReportStore
from snapshot_spine.snapshots.signal_corpus import SignalCorpusReader, SignalCorpusService, SignalDoc
from snapshot_spine.snapshots.snapshot_store import CategorySnapshotStore, compute_stats
from snapshot_spine.snapshots.volume_cache import VolumeCache

__all__ = [
    "CategorySnapshot",
    "CategorySnapshotStore",
    "ChunkRecord",
    "ChunkStore",
    "CorpusIndexStore",
    "CorpusPointer",
    "DemandOutputStore",
    "DemandOutputV3",
    "KeywordRow",
    "LegacyDemandOutput",
    "ReportPointer",
    "ReportResult",
    "ReportStore",
    "SignalCorpusReader",
    "SignalCorpusService",
    "SignalDoc",
    "SnapshotAnchor",
    "SnapshotKey",
    "SnapshotStats",
    "VolumeCache",
    "combined_hash",
    "compute_stats",
    "headline_value",
    "is_valid_certified_snapshot",
]
