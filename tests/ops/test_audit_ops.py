"""
Tests for snapshot_spine.ops.audit.

Tests cover:
- NO_GO audits still succeed, with blockers surfaced as warnings
- GO audit metadata
- Input validation
"""

from snapshot_spine.ops import OperationContext, run_audit
from snapshot_spine.ops.requests import RunAuditRequest

MONTH = "2025-12"


class TestRunAudit:
    """Tests for run_audit."""

    def test_no_go_is_success(self, memory_store, settings):
        """Test an empty category audit succeeds and reports NO_GO."""
        ctx = OperationContext(store=memory_store, settings=settings)
        result = run_audit(ctx, RunAuditRequest("shampoo", MONTH))

        assert result.success
        assert result.metadata == {"verdict": "NO_GO"}
        assert result.data["verdict"] == "NO_GO"
        assert result.warnings[0].startswith("DEMAND_MISSING: ")

    def test_go(self, memory_store, settings, seed_snapshot, seed_output):
        """Test a healthy demand-only audit is GO."""
        seed_snapshot(memory_store)
        seed_output(memory_store)
        ctx = OperationContext(store=memory_store, settings=settings.model_copy(update={"demand_only": True}))

        result = run_audit(ctx, RunAuditRequest("shampoo", MONTH))
        assert result.metadata["verdict"] == "GO"
        assert result.data["target"]["categoryId"] == "shampoo"

    def test_invalid_month(self, memory_store, settings):
        """Test a malformed month is rejected before probing."""
        ctx = OperationContext(store=memory_store, settings=settings)
        result = run_audit(ctx, RunAuditRequest("shampoo", "12-2025"))
        assert result.error.code == "VALIDATION_FAILED"
        assert result.to_dict()["error"]["details"] == {"month": "12-2025"}
