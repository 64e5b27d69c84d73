"""
Tests for snapshot_spine.ops.resolution.

Tests cover:
- Input validation (category and month format)
- Keyword, demand and signal resolution envelopes
- Resolver misses returned as success with a warning
- Dry-run suppression of corpus builds
"""

from datetime import UTC, datetime

import pytest

from snapshot_spine.core.lifecycle import Lifecycle
from snapshot_spine.ops import OperationContext, resolve_demand, resolve_keywords, resolve_signals
from snapshot_spine.ops.requests import ResolveDemandRequest, ResolveKeywordsRequest, ResolveSignalsRequest
from snapshot_spine.snapshots.signal_corpus import SignalCorpusService
from snapshot_spine.snapshots.snapshot_store import CategorySnapshotStore

MONTH = "2025-12"


@pytest.fixture
def ctx(memory_store, settings):
    return OperationContext(store=memory_store, settings=settings, caller="test")


class TestValidation:
    """Tests for shared request validation."""

    def test_missing_category(self, ctx):
        """Test an empty category id fails validation."""
        result = resolve_keywords(ctx, ResolveKeywordsRequest(""))
        assert not result.success
        assert result.error.code == "VALIDATION_FAILED"

    @pytest.mark.parametrize("month", ["2025-13", "2025-1", "Dec-2025", ""])
    def test_bad_month(self, ctx, month):
        """Test malformed or missing months fail validation."""
        result = resolve_demand(ctx, ResolveDemandRequest("shampoo", month))
        assert result.error.code == "VALIDATION_FAILED"


class TestResolveKeywords:
    """Tests for resolve_keywords."""

    def test_found(self, ctx, seed_snapshot):
        """Test a found snapshot is returned without warnings."""
        snap = seed_snapshot(ctx.store)
        result = resolve_keywords(ctx, ResolveKeywordsRequest("shampoo"))

        assert result.success
        assert result.data["snapshotId"] == snap.snapshot_id
        assert result.warnings == []

    def test_miss_is_success_with_warning(self, ctx):
        """Test a category without snapshots is a successful call with ok=False."""
        result = resolve_keywords(ctx, ResolveKeywordsRequest("shampoo"))
        assert result.success
        assert result.data["ok"] is False
        assert result.warnings == ["No valid snapshot found"]


class TestResolveDemand:
    """Tests for resolve_demand."""

    def test_exact(self, ctx, seed_output):
        """Test an exact output resolves with no warning."""
        seed_output(ctx.store)
        result = resolve_demand(ctx, ResolveDemandRequest("shampoo", MONTH))

        assert result.data["mode"] == "EXACT_V3"
        assert result.data["demand_index_mn"] == 42.5
        assert result.warnings == []

    def test_latest_any_warns(self, ctx, seed_snapshot):
        """Test falling back to an older month surfaces the reason as a warning."""
        older = CategorySnapshotStore(ctx.store, clock=lambda: datetime(2025, 10, 3, tzinfo=UTC))
        seed_snapshot(ctx.store, lifecycle=Lifecycle.CERTIFIED, snapshots=older)

        result = resolve_demand(ctx, ResolveDemandRequest("shampoo", MONTH))
        assert result.data["mode"] == "LATEST_ANY"
        assert result.warnings == ["Exact month 2025-12 missing. Using latest 2025-10-03"]

    def test_missing(self, ctx):
        """Test a missing category is a warning, not an error."""
        result = resolve_demand(ctx, ResolveDemandRequest("shampoo", MONTH))
        assert result.success
        assert result.data["mode"] == "MISSING"
        assert len(result.warnings) == 1


class TestResolveSignals:
    """Tests for resolve_signals."""

    def test_exact(self, ctx, seed_signals, clock):
        """Test an existing corpus is returned."""
        seed_signals(ctx.store, count=25)
        SignalCorpusService(ctx.store, clock=clock).create_snapshot("shampoo", MONTH).unwrap()

        result = resolve_signals(ctx, ResolveSignalsRequest("shampoo", MONTH))
        assert result.data["mode"] == "EXACT"
        assert result.data["signalCount"] == 25
        assert result.to_dict()["success"] is True

    def test_dry_run_skips_build(self, memory_store, settings, seed_signals):
        """Test a dry run never builds a corpus even when asked."""
        seed_signals(memory_store, count=25)
        ctx = OperationContext(store=memory_store, settings=settings, dry_run=True)

        result = resolve_signals(ctx, ResolveSignalsRequest("shampoo", MONTH, build_if_missing=True))
        assert result.success
        assert result.data["ok"] is False
        assert result.warnings == ["Dry run: corpus build skipped", "NO_SIGNAL_SNAPSHOT"]
