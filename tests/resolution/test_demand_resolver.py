"""
Tests for snapshot_spine.resolution.demand.

Tests cover:
- Exact deterministic output hit
- Poisoned or mismatched outputs falling through to the snapshot scan
- In-month certified and validated snapshots, certified first regardless of age
- Draft-only months falling through to the latest snapshot
- Latest-any fallback with a reason
- Missing category
"""

from datetime import UTC, datetime

from snapshot_spine.core.lifecycle import Lifecycle
from snapshot_spine.resolution.context import ResolutionContext
from snapshot_spine.resolution.demand import DemandSnapshotResolver, is_poisoned_snapshot
from snapshot_spine.snapshots.models import SnapshotKey
from snapshot_spine.snapshots.snapshot_store import CategorySnapshotStore

KEY = SnapshotKey("shampoo")
MONTH = "2025-12"


def _store_at(store, day):
    return CategorySnapshotStore(store, clock=lambda: datetime(2025, 12, day, 9, tzinfo=UTC))


def _november_store(store):
    return CategorySnapshotStore(store, clock=lambda: datetime(2025, 11, 20, 9, tzinfo=UTC))


class TestDemandSnapshotResolver:
    """Tests for DemandSnapshotResolver.resolve."""

    def test_exact_output(self, memory_store, seed_output):
        """Test a certified v3 output is returned directly."""
        seed_output(memory_store, demand_index_mn=42.5)
        resolved = DemandSnapshotResolver(memory_store).resolve("shampoo", MONTH)

        assert resolved.ok
        assert resolved.mode == "EXACT_V3"
        assert resolved.snapshot_id == "out_shampoo_2025-12"
        assert resolved.reason == "Found exact deterministic doc via DemandOutputStore"
        assert resolved.demand_index_mn == 42.5

    def test_poisoned_output_falls_through(self, memory_store, seed_output, seed_snapshot):
        """Test a zero-headline output is skipped in favour of an in-month snapshot."""
        seed_output(memory_store, demand_index_mn=0)
        snap = seed_snapshot(memory_store, lifecycle=Lifecycle.CERTIFIED)

        resolved = DemandSnapshotResolver(memory_store).resolve("shampoo", MONTH)
        assert resolved.mode == "EXACT_V3"
        assert resolved.snapshot_id == snap.snapshot_id
        assert resolved.resolved_month_key == MONTH

    def test_version_mismatch_falls_through(self, memory_store, seed_output, seed_snapshot):
        """Test an output at another metrics version is not trusted."""
        seed_output(memory_store, version="ABS_V2")
        snap = seed_snapshot(memory_store, lifecycle=Lifecycle.VALIDATED)

        resolved = DemandSnapshotResolver(memory_store).resolve("shampoo", MONTH)
        assert resolved.mode == "EXACT_ANY_VERSION"
        assert resolved.snapshot_id == snap.snapshot_id

    def test_context_version_override(self, memory_store, seed_output):
        """Test the runtime version comes from the resolution context."""
        seed_output(memory_store, version="ABS_V2")
        ctx = ResolutionContext(output_version="ABS_V2")
        assert DemandSnapshotResolver(memory_store).resolve("shampoo", MONTH, ctx).mode == "EXACT_V3"

    def test_latest_any_fallback(self, memory_store, seed_snapshot):
        """Test an older month is used with an explanatory reason."""
        seed_snapshot(memory_store, lifecycle=Lifecycle.CERTIFIED, snapshots=_november_store(memory_store))

        resolved = DemandSnapshotResolver(memory_store).resolve("shampoo", MONTH)
        assert resolved.mode == "LATEST_ANY"
        assert resolved.reason == "Exact month 2025-12 missing. Using latest 2025-11-20"
        assert resolved.resolved_month_key == "2025-11"

    def test_certified_beats_newer_validated(self, memory_store, seed_snapshot):
        """Test an older certified snapshot wins over a newer validated one in the same month."""
        certified = seed_snapshot(memory_store, lifecycle=Lifecycle.CERTIFIED, snapshots=_store_at(memory_store, 5))
        validated = seed_snapshot(memory_store, lifecycle=Lifecycle.VALIDATED, snapshots=_store_at(memory_store, 14))
        assert validated.created_at_iso > certified.created_at_iso

        resolved = DemandSnapshotResolver(memory_store).resolve("shampoo", MONTH)
        assert resolved.mode == "EXACT_V3"
        assert resolved.snapshot_id == certified.snapshot_id
        assert resolved.lifecycle == "CERTIFIED"

    def test_draft_only_month_falls_back(self, memory_store, seed_snapshot):
        """Test a month holding only a draft is not treated as an exact hit."""
        seed_snapshot(memory_store, lifecycle=Lifecycle.DRAFT, snapshots=_store_at(memory_store, 10))

        resolved = DemandSnapshotResolver(memory_store).resolve("shampoo", MONTH)
        assert resolved.ok
        assert resolved.mode == "LATEST_ANY"
        assert resolved.lifecycle == "DRAFT"
        assert resolved.reason == "Exact month 2025-12 missing. Using latest 2025-12-10"

    def test_poisoned_snapshot_skipped(self, memory_store, seed_snapshot, clock):
        """Test a certified snapshot with a zero headline is never returned."""
        snapshots = CategorySnapshotStore(memory_store, clock=clock)
        snap = seed_snapshot(memory_store, lifecycle=Lifecycle.CERTIFIED, snapshots=snapshots)
        snap.demand_index_mn = 0
        snapshots.write(snap).unwrap()

        assert is_poisoned_snapshot(snap)
        resolved = DemandSnapshotResolver(memory_store).resolve("shampoo", MONTH)
        assert not resolved.ok
        assert resolved.reason == "No snapshots found for category"

    def test_missing(self, memory_store):
        """Test an unknown category resolves to ok=False."""
        resolved = DemandSnapshotResolver(memory_store).resolve("unknown", MONTH)
        assert not resolved.ok
        assert resolved.mode == "MISSING"
        assert resolved.to_dict()["demand_index_mn"] is None
