"""
Tests for snapshot_spine.repair.snapshot.

Tests cover:
- Full repair: re-validate, promote, recompute, persist output
- Missing active snapshot
- Validator and runner failures reported on the report
"""

import pytest

from snapshot_spine.core.lifecycle import Lifecycle
from snapshot_spine.core.protocols import ServiceReply
from snapshot_spine.repair.snapshot import SnapshotRepairService
from snapshot_spine.snapshots.corpus_index import CorpusIndexStore
from snapshot_spine.snapshots.models import SnapshotKey
from snapshot_spine.snapshots.snapshot_store import CategorySnapshotStore
from snapshot_spine.storage import paths

KEY = SnapshotKey("shampoo")
MONTH = "2025-12"


class MarkValidValidator:
    """Validator that marks every row VALID."""

    def __init__(self, error=None):
        self.error = error
        self.seen = []

    async def validate(self, category_id, snapshot_id, rows):
        self.seen.append((snapshot_id, len(rows)))
        if self.error:
            return ServiceReply.failure(self.error)
        return ServiceReply.success({"rows": [{**row, "status": "VALID"} for row in rows]})


class FixedRunner:
    """Demand runner with a canned reply."""

    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    async def run(self, category_id, month, *, corpus_snapshot_id, strategy=None, force_recalculate=False):
        self.calls.append((corpus_snapshot_id, force_recalculate))
        return self.reply


def _good_runner():
    return FixedRunner(
        ServiceReply.success({"demand_index_mn": 18.4, "metric_scores": {"readiness": 5}, "totalKeywordsUsedInMetrics": 8})
    )


class TestSnapshotRepairService:
    """Tests for SnapshotRepairService.run."""

    @pytest.mark.asyncio
    async def test_full_repair(self, memory_store, seed_snapshot):
        """Test rows are re-validated, the snapshot promoted and a demand output saved."""
        snap = seed_snapshot(memory_store, rows=8, status="UNVERIFIED", lifecycle=Lifecycle.HYDRATED)
        validator = MarkValidValidator()
        runner = _good_runner()

        report = await SnapshotRepairService(memory_store, validator, runner).run("shampoo", MONTH)

        assert report.ok, report.error
        assert report.snapshot_id == snap.snapshot_id
        assert report.demand_index_mn == 18.4
        assert validator.seen == [(snap.snapshot_id, 8)]
        assert runner.calls == [(snap.snapshot_id, True)]
        assert "[VALIDATION] Completed. valid=8/8" in report.log
        assert report.log[-1] == f"[SNAP_REPAIR][DONE] snapshotId={snap.snapshot_id} rows=8"

        repaired = CategorySnapshotStore(memory_store).get_by_id(KEY, snap.snapshot_id).unwrap()
        assert repaired.lifecycle == Lifecycle.VALIDATED.value
        assert CorpusIndexStore(memory_store).get(KEY).unwrap().active_snapshot_id == snap.snapshot_id

        output = memory_store.get(paths.demand_output_doc("shampoo", MONTH, "IN", "en")).data
        assert output["corpusSnapshotId"] == snap.snapshot_id
        assert output["demand_index_mn"] == 18.4
        assert report.to_dict()["snapshotId"] == snap.snapshot_id

    @pytest.mark.asyncio
    async def test_certified_snapshot_keeps_lifecycle(self, memory_store, seed_snapshot):
        """Test a certified snapshot is not demoted to VALIDATED."""
        snap = seed_snapshot(memory_store, lifecycle=Lifecycle.CERTIFIED)
        report = await SnapshotRepairService(memory_store, MarkValidValidator(), _good_runner()).run("shampoo", MONTH)

        assert report.ok
        repaired = CategorySnapshotStore(memory_store).get_by_id(KEY, snap.snapshot_id).unwrap()
        assert repaired.lifecycle == Lifecycle.CERTIFIED.value

    @pytest.mark.asyncio
    async def test_no_active_snapshot(self, memory_store):
        """Test a category without snapshots fails before validation."""
        validator = MarkValidValidator()
        report = await SnapshotRepairService(memory_store, validator, _good_runner()).run("shampoo", MONTH)

        assert not report.ok
        assert report.error == "No active snapshot found."
        assert validator.seen == []
        assert report.to_dict()["error"] == "No active snapshot found."

    @pytest.mark.asyncio
    async def test_validation_failure(self, memory_store, seed_snapshot):
        """Test a failed validator reply stops the repair."""
        seed_snapshot(memory_store)
        runner = _good_runner()
        report = await SnapshotRepairService(
            memory_store, MarkValidValidator(error="provider down"), runner
        ).run("shampoo", MONTH)

        assert not report.ok
        assert report.error == "Validation Failed: provider down"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_metrics_failure(self, memory_store, seed_snapshot):
        """Test a failed runner reply stops before any output is written."""
        seed_snapshot(memory_store)
        runner = FixedRunner(ServiceReply.failure("engine offline"))
        report = await SnapshotRepairService(memory_store, MarkValidValidator(), runner).run("shampoo", MONTH)

        assert not report.ok
        assert report.error == "Metrics Calc Failed: engine offline"
        assert memory_store.get(paths.demand_output_doc("shampoo", MONTH, "IN", "en")) is None
