"""
Tests for snapshot_spine.snapshots.corpus_index.

Tests cover:
- Pointer creation from a snapshot (camelCase wire shape)
- Priority guard against downgrading the pointer
- Forced overwrite
"""

from snapshot_spine.core.errors import DocumentNotFoundError
from snapshot_spine.core.lifecycle import Lifecycle
from snapshot_spine.snapshots.corpus_index import CorpusIndexStore
from snapshot_spine.snapshots.models import SnapshotKey
from snapshot_spine.snapshots.snapshot_store import CategorySnapshotStore
from snapshot_spine.storage import paths

KEY = SnapshotKey("shampoo")


class TestCorpusIndexStore:
    """Tests for CorpusIndexStore."""

    def test_missing_pointer(self, memory_store):
        """Test an absent pointer is NOT_FOUND."""
        result = CorpusIndexStore(memory_store).get(KEY)
        assert isinstance(result.error, DocumentNotFoundError)

    def test_upsert_writes_camel_case(self, memory_store, seed_snapshot, clock):
        """Test the stored pointer uses camelCase and carries totals."""
        snap = seed_snapshot(memory_store, rows=6, lifecycle=Lifecycle.CERTIFIED)
        pointer = CorpusIndexStore(memory_store, clock=clock).upsert_from_snapshot(snap).unwrap()

        raw = memory_store.get(paths.corpus_index_doc("shampoo", "IN", "en")).data
        assert raw["activeSnapshotId"] == snap.snapshot_id
        assert raw["snapshotStatus"] == "CERTIFIED"
        assert raw["keywordTotals"]["valid"] == 6
        assert {a["anchorId"] for a in raw["anchorStats"]} == {"anti dandruff", "hair fall"}
        assert pointer.active_snapshot_id == snap.snapshot_id

    def test_lower_priority_does_not_replace(self, memory_store, seed_snapshot, clock):
        """Test a VALIDATED snapshot cannot displace a CERTIFIED pointer."""
        snapshots = CategorySnapshotStore(memory_store, clock=clock)
        certified = seed_snapshot(memory_store, lifecycle=Lifecycle.CERTIFIED, snapshots=snapshots)
        validated = seed_snapshot(memory_store, lifecycle=Lifecycle.VALIDATED, snapshots=snapshots)
        index = CorpusIndexStore(memory_store, clock=clock)
        index.upsert_from_snapshot(certified).unwrap()

        kept = index.upsert_from_snapshot(validated).unwrap()

        assert kept.active_snapshot_id == certified.snapshot_id
        assert index.get(KEY).unwrap().active_snapshot_id == certified.snapshot_id

    def test_force_replaces(self, memory_store, seed_snapshot, clock):
        """Test force overrides the priority guard."""
        snapshots = CategorySnapshotStore(memory_store, clock=clock)
        certified = seed_snapshot(memory_store, lifecycle=Lifecycle.CERTIFIED, snapshots=snapshots)
        validated = seed_snapshot(memory_store, lifecycle=Lifecycle.VALIDATED, snapshots=snapshots)
        index = CorpusIndexStore(memory_store, clock=clock)
        index.upsert_from_snapshot(certified).unwrap()

        index.upsert_from_snapshot(validated, force=True).unwrap()
        assert index.get(KEY).unwrap().active_snapshot_id == validated.snapshot_id

    def test_same_snapshot_refreshes(self, memory_store, seed_snapshot, clock):
        """Test re-upserting the active snapshot updates its status."""
        snapshots = CategorySnapshotStore(memory_store, clock=clock)
        snap = seed_snapshot(memory_store, lifecycle=Lifecycle.CERTIFIED, snapshots=snapshots)
        index = CorpusIndexStore(memory_store, clock=clock)
        index.upsert_from_snapshot(snap).unwrap()

        demoted = snapshots.set_lifecycle(KEY, snap.snapshot_id, Lifecycle.VALIDATED).unwrap()
        assert index.upsert_from_snapshot(demoted).unwrap().snapshot_status == "VALIDATED"
