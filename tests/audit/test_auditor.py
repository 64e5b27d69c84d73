"""
Tests for snapshot_spine.audit.

Tests cover:
- GO verdict with demand, keywords and a signal corpus
- Missing signal index: blocker with remediation, other probes still run
- Empty category blockers and stale warning
- Demand-only mode
- Report, telemetry and store probes
- Schema checks over sampled signal documents
"""

from snapshot_spine.audit import BlockerCode, IntegrityAuditor, validate_signal_docs
from snapshot_spine.audit.contract import SignalsProbe
from snapshot_spine.orchestration.telemetry import TelemetryBus, TelemetryPhase, report_run_key
from snapshot_spine.snapshots.corpus_index import CorpusIndexStore
from snapshot_spine.snapshots.models import SnapshotKey
from snapshot_spine.snapshots.report_store import ReportResult, ReportStore
from snapshot_spine.snapshots.signal_corpus import SignalCorpusService
from snapshot_spine.storage import paths
from snapshot_spine.storage.memory import MemoryDocumentStore

MONTH = "2025-12"
WINDOW = ("2025-12-01T00:00:00.000Z", "2026-01-01T00:00:00.000Z")


class NoDeleteStore(MemoryDocumentStore):
    """Store that refuses deletes."""

    def delete(self, path):
        raise PermissionError("delete not allowed")


class UnreadableMarkerStore(MemoryDocumentStore):
    """Store whose reads fail for round-trip marker documents."""

    def get(self, path):
        if path.startswith(paths.INTEGRITY_PROBE):
            raise ConnectionError("read timed out")
        return super().get(path)


def _codes(report):
    return [b.code for b in report.blockers]


class TestIntegrityAuditor:
    """Tests for IntegrityAuditor.run."""

    def test_go(self, memory_store, seed_snapshot, seed_output, seed_signals, clock):
        """Test a healthy category with a signal corpus is GO."""
        seed_snapshot(memory_store)
        seed_output(memory_store, demand_index_mn=42.5)
        seed_signals(memory_store, count=25)
        SignalCorpusService(memory_store, clock=clock).create_snapshot("shampoo", MONTH).unwrap()

        report = IntegrityAuditor(memory_store, clock=clock).run("shampoo", MONTH)

        assert report.verdict == "GO"
        assert report.blockers == []
        assert report.probes.demand.demand_index_mn == 42.5
        assert report.probes.keywords.rows == 12
        signals = report.probes.signals
        assert signals.mode == "CORPUS_SNAPSHOT"
        assert signals.trusted_used == 25
        assert signals.schema_check.failures == []
        assert report.probes.store.ok
        assert report.probes.report.notes == ["No previous run found."]
        assert report.probes.telemetry.notes == ["Telemetry bus not attached"]

    def test_keyword_probe_does_not_write_pointer(self, memory_store, seed_snapshot, clock):
        """Test auditing a category without a pointer leaves it without one."""
        seed_snapshot(memory_store)
        IntegrityAuditor(memory_store, clock=clock).run("shampoo", MONTH)
        assert CorpusIndexStore(memory_store).get(SnapshotKey("shampoo")).is_err()

    def test_missing_index_still_probes_other_domains(
        self, no_signal_index_store, seed_snapshot, seed_output, seed_signals, clock
    ):
        """Test a missing canonical index blocks signals but demand and keywords are still probed."""
        store = no_signal_index_store
        seed_snapshot(store)
        seed_output(store, demand_index_mn=42.5)
        seed_signals(store, count=25)

        report = IntegrityAuditor(store, clock=clock).run("shampoo", MONTH)

        assert report.verdict == "NO_GO"
        assert _codes(report) == [BlockerCode.SIGNALS_INDEX_MISSING]
        blocker = report.blockers[0]
        assert blocker.remediation[0].startswith("Create Composite Index (")
        assert blocker.evidence["url"].startswith("https://")

        assert report.probes.demand.ok
        assert report.probes.keywords.ok
        signals = report.probes.signals
        assert not signals.required_index_ok
        assert signals.sampled == 25
        assert signals.query_plan[-1] == "Fallback OK. Returned 25 raw docs."

    def test_empty_category(self, memory_store, clock):
        """Test an empty store yields every missing-data blocker and a stale warning."""
        report = IntegrityAuditor(memory_store, clock=clock).run("shampoo", MONTH)

        assert report.verdict == "NO_GO"
        codes = _codes(report)
        assert BlockerCode.DEMAND_MISSING in codes
        assert BlockerCode.KEYWORDS_MISSING in codes
        assert BlockerCode.SIGNALS_NOT_TRUSTED in codes
        assert BlockerCode.SIGNALS_NOT_ENRICHED in codes
        assert report.warnings == ["SIGNALS_STALE: Only 0 signals in requested month window."]

    def test_demand_only(self, memory_store, seed_snapshot, seed_output, clock):
        """Test demand-only mode skips signal thresholds."""
        seed_snapshot(memory_store)
        seed_output(memory_store)

        report = IntegrityAuditor(memory_store, demand_only=True, clock=clock).run("shampoo", MONTH)
        assert report.verdict == "GO"
        assert report.signal_blockers == []
        assert "Demand-only mode: signal thresholds not enforced" in report.probes.signals.notes

    def test_zero_headline_is_not_go(self, memory_store, seed_snapshot, seed_output, seed_signals, clock):
        """Test a resolved demand snapshot without a positive headline blocks."""
        seed_snapshot(memory_store)
        seed_output(memory_store, demand_index_mn=0)
        seed_signals(memory_store, count=25)
        SignalCorpusService(memory_store, clock=clock).create_snapshot("shampoo", MONTH).unwrap()

        report = IntegrityAuditor(memory_store, clock=clock).run("shampoo", MONTH)
        assert report.verdict == "NO_GO"
        assert report.blockers[0].message == "Demand Snapshot exists but metrics missing"

    def test_report_probe_warnings(self, memory_store, clock):
        """Test an incomplete legacy report adds warnings, not blockers."""
        ReportStore(memory_store, clock=clock).save_result(
            ReportResult.model_validate({"categoryId": "shampoo", "monthKey": MONTH, "executiveSummary": {"a": 1}}),
            "run_1",
        ).unwrap()

        report = IntegrityAuditor(memory_store, demand_only=True, clock=clock).run("shampoo", MONTH)
        probe = report.probes.report
        assert probe.last_run_pointer.ok
        assert probe.last_run_pointer.run_id == "run_1"
        assert "executiveSummary" not in probe.missing_sections
        assert any(w.startswith("DEEPDIVE_OUTPUT_INCOMPLETE: Missing marketStructure") for w in report.warnings)
        assert "DEEPDIVE_PROMPT_NOT_CONTRACT: Output is legacy format." in report.warnings

    def test_telemetry_probe(self, memory_store, clock):
        """Test the latest phase and recent events are copied from the bus."""
        bus = TelemetryBus(clock=clock)
        bus.emit(report_run_key("shampoo", MONTH), TelemetryPhase.MODEL_CALLING, "Synthesizing report")

        report = IntegrityAuditor(memory_store, telemetry=bus, clock=clock).run("shampoo", MONTH)
        assert report.probes.telemetry.phase == "MODEL_CALLING"
        assert report.probes.telemetry.last_events == ["MODEL_CALLING: Synthesizing report"]

    def test_store_round_trip_failure(self, clock):
        """Test a store that cannot complete the probe round trip is blocked."""
        report = IntegrityAuditor(NoDeleteStore(), clock=clock).run("shampoo", MONTH)
        assert BlockerCode.POINTER_WRITE_FAILED in _codes(report)
        assert not report.probes.store.ok

    def test_round_trip_marker_removed_when_read_back_fails(self, clock):
        """Test the round-trip marker is deleted even when reading it back raises."""
        store = UnreadableMarkerStore()
        report = IntegrityAuditor(store, clock=clock).run("shampoo", MONTH)
        assert BlockerCode.POINTER_WRITE_FAILED in _codes(report)
        assert not report.probes.store.ok
        assert store.list_ids(paths.INTEGRITY_PROBE) == []

    def test_to_dict_is_camel_case(self, memory_store, clock):
        """Test the serialized report uses camelCase keys."""
        data = IntegrityAuditor(memory_store, clock=clock).run("shampoo", MONTH).to_dict()
        assert data["target"] == {"categoryId": "shampoo", "monthKey": MONTH}
        assert "requiredIndexOk" in data["probes"]["signals"]
        assert data["probes"]["signals"]["monthWindow"]["from"] == WINDOW[0]
        assert data["blockers"][0]["code"] == "DEMAND_MISSING"


class TestValidateSignalDocs:
    """Tests for validate_signal_docs."""

    def test_flags_schema_failures(self):
        """Test string trust flags, bad timestamps and foreign categories are reported."""
        probe = SignalsProbe(min_trust_score=70)
        docs = [
            {"id": "a", "categoryId": "shampoo", "trusted": True, "trustScore": 90,
             "lastSeenAt": "2025-12-05T10:00:00.000Z", "platform": "reddit", "_meta": {"enrichmentStatus": "OK"}},
            {"id": "b", "categoryId": "shampoo", "trusted": "true", "lastSeenAt": "2025-12-05", "platform": "youtube"},
            {"id": "c", "categoryId": "hair_oil", "trusted": True, "trustScore": 40,
             "lastSeenAt": "2025-11-05T10:00:00.000Z"},
        ]
        validate_signal_docs(docs, probe, WINDOW, "shampoo")

        assert probe.used == 3
        assert probe.trusted_used == 1
        assert probe.enriched_used == 1
        assert probe.month_window.in_window == 2
        assert probe.platforms == {"reddit": 1, "youtube": 1, "unknown": 1}
        assert probe.schema_check.failures == [
            "Doc b not trusted",
            "Doc b invalid lastSeenAt: 2025-12-05",
            "Doc c category mismatch: hair_oil != shampoo",
        ]
        assert not probe.schema_check.trusted_ok
        assert probe.schema_check.enrichment_ok
        assert probe.freshness.oldest_used_iso == "2025-11-05T10:00:00.000Z"
