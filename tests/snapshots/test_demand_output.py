"""
Tests for snapshot_spine.snapshots.demand_output.

Tests cover:
- Certified-validity predicate and headline lookup
- Versioned union parsing (v3 vs legacy) with migration
- NOT_FOUND / VERSION_MISMATCH reads
- Verified writes and POST_WRITE_READ_FAILED
- create_output_snapshot replacement and mark_poisoned merge semantics
"""

import math

from snapshot_spine.core.errors import DocumentNotFoundError, ValidationError
from snapshot_spine.core.settings import DEMAND_OUTPUT_VERSION
from snapshot_spine.snapshots.demand_output import (
    DemandOutputStore,
    DemandOutputV3,
    LegacyDemandOutput,
    headline_value,
    is_valid_certified_snapshot,
    parse_demand_output,
    version_of,
)
from snapshot_spine.snapshots.models import SnapshotKey
from snapshot_spine.storage import paths

KEY = SnapshotKey("shampoo")
MONTH = "2025-12"
PATH = paths.demand_output_doc("shampoo", MONTH, "IN", "en")


def _v3(**overrides):
    doc = {
        "demand_index_mn": 12.5,
        "metric_scores": {"readiness": 7, "spread": 3},
        "totalKeywordsInput": 100,
        "totalKeywordsUsedInMetrics": 80,
        "computedAt": "2025-12-15T12:00:00.000Z",
        "metricsVersion": DEMAND_OUTPUT_VERSION,
    }
    doc.update(overrides)
    return doc


class TestPredicates:
    """Tests for the module-level helpers."""

    def test_version_of_prefers_root(self):
        """Test root metricsVersion wins over nested and plain version."""
        assert version_of({"metricsVersion": "A", "demand": {"metricsVersion": "B"}, "version": "C"}) == "A"
        assert version_of({"demand": {"metricsVersion": "B"}, "version": "C"}) == "B"
        assert version_of({"version": "C"}) == "C"
        assert version_of(None) is None

    def test_headline_falls_back_to_nested(self):
        """Test the nested demand block is consulted when the root lacks the measure."""
        assert headline_value({"demand": {"demand_index_mn": 3.0}}) == 3.0
        assert headline_value({"demand_index_mn": 4.0}) == 4.0

    def test_valid_certified(self):
        """Test version, lifecycle and positive headline are all required."""
        assert is_valid_certified_snapshot(_v3(), "CERTIFIED")
        assert not is_valid_certified_snapshot(_v3(), "VALIDATED")
        assert not is_valid_certified_snapshot(_v3(metricsVersion="OLD"), "CERTIFIED")
        assert not is_valid_certified_snapshot(_v3(demand_index_mn=0), "CERTIFIED")
        assert not is_valid_certified_snapshot(_v3(demand_index_mn=math.nan))
        assert not is_valid_certified_snapshot(None)


class TestParsing:
    """Tests for parse_demand_output."""

    def test_v3_shape(self):
        """Test root-promoted documents parse as v3."""
        parsed = parse_demand_output(_v3())
        assert isinstance(parsed, DemandOutputV3)
        assert parsed.total_keywords_used == 80

    def test_legacy_shape_migrates(self):
        """Test nested-only documents parse as legacy and promote to v3."""
        legacy = {
            "demand": {"demand_index_mn": 9.0, "metricsVersion": DEMAND_OUTPUT_VERSION, "totalKeywordsInput": 40},
            "created_at_iso": "2025-12-01T00:00:00.000Z",
        }
        parsed = parse_demand_output(legacy)
        assert isinstance(parsed, LegacyDemandOutput)
        v3 = parsed.to_v3()
        assert v3.demand_index_mn == 9.0
        assert v3.total_keywords_input == 40
        assert v3.version_tag == DEMAND_OUTPUT_VERSION
        assert v3.computed_at == "2025-12-01T00:00:00.000Z"


class TestDemandOutputStore:
    """Tests for DemandOutputStore."""

    def test_doc_id(self):
        """Test the deterministic id layout."""
        assert DemandOutputStore.doc_id("shampoo", MONTH) == "out_shampoo_2025-12"

    def test_read_not_found(self, memory_store):
        """Test a missing output reads as NOT_FOUND."""
        result = DemandOutputStore(memory_store).read(KEY, MONTH)
        assert isinstance(result.error, DocumentNotFoundError)
        assert result.reason == "NOT_FOUND"

    def test_read_version_mismatch(self, memory_store):
        """Test a different metrics version is reported, not coerced."""
        memory_store.set(PATH, _v3(metricsVersion="ABS_V2"))
        result = DemandOutputStore(memory_store).read(KEY, MONTH)
        assert isinstance(result.error, ValidationError)
        assert result.reason == "VERSION_MISMATCH"

    def test_read_legacy_migrates(self, memory_store):
        """Test a legacy document at the runtime version reads as v3."""
        memory_store.set(PATH, {"demand": {"demand_index_mn": 5.5, "metricsVersion": DEMAND_OUTPUT_VERSION}})
        assert DemandOutputStore(memory_store).read(KEY, MONTH).unwrap().demand_index_mn == 5.5

    def test_read_raw_returns_any_version(self, memory_store):
        """Test read_raw ignores the version contract."""
        memory_store.set(PATH, {"anything": True})
        assert DemandOutputStore(memory_store).read_raw(KEY, MONTH).unwrap() == {"anything": True}

    def test_write_verifies_read_back(self, memory_store):
        """Test a valid write returns the parsed document."""
        written = DemandOutputStore(memory_store).write(KEY, MONTH, _v3()).unwrap()
        assert written.demand_index_mn == 12.5

    def test_write_wrong_version_fails_read_back(self, memory_store):
        """Test a payload at another version fails post-write validation."""
        result = DemandOutputStore(memory_store).write(KEY, MONTH, _v3(metricsVersion="ABS_V2"))
        assert result.reason.startswith("POST_WRITE_READ_FAILED")

    def test_create_output_snapshot(self, memory_store, clock):
        """Test metrics are promoted to the root and the output is CERTIFIED."""
        outputs = DemandOutputStore(memory_store, clock=clock)
        created = outputs.create_output_snapshot(
            "snap_1",
            KEY,
            MONTH,
            demand={"demand_index_mn": 21.0, "metricsVersion": DEMAND_OUTPUT_VERSION, "totalKeywordsInput": 7},
        ).unwrap()

        raw = memory_store.get(PATH).data
        assert created.demand_index_mn == 21.0
        assert raw["lifecycle"] == "CERTIFIED"
        assert raw["docId"] == "out_shampoo_2025-12"
        assert raw["metricsVersion"] == DEMAND_OUTPUT_VERSION
        assert raw["computedAt"] == "2025-12-15T12:00:00.000Z"
        assert outputs.read(KEY, MONTH).unwrap().corpus_snapshot_id == "snap_1"

    def test_unknown_version(self, memory_store, clock):
        """Test a missing version is stamped UNKNOWN."""
        created = DemandOutputStore(memory_store, clock=clock).create_output_snapshot(
            "snap_1", KEY, MONTH, demand={"demand_index_mn": 1.0}
        ).unwrap()
        assert created.version_tag == "UNKNOWN"

    def test_mark_poisoned_then_rebuild_keeps_history(self, memory_store, clock, seed_output):
        """Test poisoning merges flags, and a rebuild resets them but keeps history."""
        seed_output(memory_store, demand_index_mn=0)
        outputs = DemandOutputStore(memory_store, clock=clock)
        outputs.mark_poisoned(KEY, MONTH).unwrap()

        poisoned = memory_store.get(PATH).data
        assert poisoned["lifecycle"] == "POISONED"
        assert poisoned["poisoned"] is True
        assert poisoned["poisonReason"] == "CERTIFIED_BUT_ZERO"
        assert poisoned["poisonedBy"] == "IntegrityConsole"
        assert poisoned["demand_index_mn"] == 0

        outputs.create_output_snapshot(
            "snap_2", KEY, MONTH, demand={"demand_index_mn": 8.0}, metrics_version=DEMAND_OUTPUT_VERSION
        ).unwrap()
        rebuilt = memory_store.get(PATH).data
        assert rebuilt["poisoned"] is False
        assert rebuilt["lifecycle"] == "CERTIFIED"
        assert rebuilt["poisonReason"] == "CERTIFIED_BUT_ZERO"

    def test_rebuild_replaces_nested_fields(self, memory_store, clock):
        """Test nested keys from the previous output are not carried into a rebuild."""
        outputs = DemandOutputStore(memory_store, clock=clock)
        outputs.create_output_snapshot(
            "snap_1",
            KEY,
            MONTH,
            strategy={"mode": "FULL", "seedAnchors": ["hair fall"]},
            demand={"demand_index_mn": 0, "metric_scores": {"readiness": 0, "spread": 0, "legacyBoost": 3}},
            metrics_version=DEMAND_OUTPUT_VERSION,
        ).unwrap()
        outputs.mark_poisoned(KEY, MONTH).unwrap()

        outputs.create_output_snapshot(
            "snap_2",
            KEY,
            MONTH,
            strategy={"mode": "LITE"},
            demand={"demand_index_mn": 9.0, "metric_scores": {"readiness": 5, "spread": 2}},
            metrics_version=DEMAND_OUTPUT_VERSION,
        ).unwrap()
        rebuilt = memory_store.get(PATH).data
        assert rebuilt["strategy"] == {"mode": "LITE"}
        assert rebuilt["metric_scores"] == {"readiness": 5, "spread": 2}
        assert "legacyBoost" not in rebuilt["demand"]["metric_scores"]
        assert rebuilt["corpusSnapshotId"] == "snap_2"
        assert rebuilt["poisonedBy"] == "IntegrityConsole"
