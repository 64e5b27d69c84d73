"""
Tests for snapshot_spine.snapshots.signal_corpus.

Tests cover:
- Query ladder step-down on missing indexes
- Strict trust, enrichment and category filtering
- Exact-month vs 90-day window selection
- Platform caps
- Reader validation of stored chunks
"""

from snapshot_spine.core.errors import DocumentNotFoundError, ValidationError
from snapshot_spine.snapshots.signal_corpus import (
    NO_SIGNAL_CORPUS,
    NO_TRUSTED_SIGNALS,
    PLAN_CANONICAL,
    PLAN_GLOBAL_LIGHT,
    WINDOW_EXACT_MONTH,
    WINDOW_GLOBAL_90D,
    CorpusBuildOptions,
    SignalCorpusReader,
    SignalCorpusService,
    SignalDoc,
    cap_by_platform,
    normalize_signal,
    signal_chunk_path,
)
from snapshot_spine.storage import paths
from snapshot_spine.storage.indexes import DEFAULT_SIGNALS_COLLECTION


def _signal(i, platform):
    return SignalDoc(
        id=f"s{i}",
        category_id="shampoo",
        trusted=True,
        last_seen_at=f"2025-12-{i + 1:02d}T00:00:00.000Z",
        platform=platform,
    )


class TestHelpers:
    """Tests for normalize_signal and cap_by_platform."""

    def test_normalize_reads_meta_enrichment(self):
        """Test enrichment status comes from _meta and trusted must be a real bool."""
        signal = normalize_signal(
            {"id": "x", "categoryId": "shampoo", "trusted": 1, "platform": "Reddit", "_meta": {"enrichmentStatus": "OK"}},
            "shampoo",
            PLAN_CANONICAL,
            "2025-12-15T00:00:00.000Z",
        )
        assert signal.enrichment_status == "OK"
        assert signal.trusted is False
        assert signal.platform == "reddit"
        assert signal.last_seen_at == "2025-12-15T00:00:00.000Z"

    def test_cap_by_platform(self):
        """Test no platform exceeds floor(limit * ratio)."""
        signals = [_signal(i, "reddit") for i in range(8)] + [_signal(i + 8, "youtube") for i in range(8)]
        selected, counts = cap_by_platform(signals, limit=10, cap_ratio=0.4)
        assert counts == {"reddit": 4, "youtube": 4}
        assert len(selected) == 8


class TestSignalCorpusService:
    """Tests for SignalCorpusService.create_snapshot."""

    def test_exact_month_with_canonical_index(self, indexed_store, seed_signals, clock):
        """Test a dense month builds from the canonical query."""
        seed_signals(indexed_store, count=30)
        build = SignalCorpusService(indexed_store, clock=clock).create_snapshot("shampoo", "2025-12").unwrap()

        assert build.snapshot_id == "sigcorpus_shampoo_2025-12"
        assert build.plan == PLAN_CANONICAL
        assert build.window == WINDOW_EXACT_MONTH
        assert build.stats["producedCount"] == 30

        doc = indexed_store.get(paths.signal_corpus_doc("shampoo", "2025-12")).data
        assert doc["signalCount"] == 30
        assert doc["chunkCount"] == 2
        assert indexed_store.get(signal_chunk_path(build.snapshot_id, 1)) is not None

    def test_steps_down_without_indexes(self, no_signal_index_store, seed_signals, clock):
        """Test missing indexes step down to the global query and still filter by category."""
        seed_signals(no_signal_index_store, count=25)
        seed_signals(no_signal_index_store, "hair_oil", count=25, prefix="other")

        build = SignalCorpusService(no_signal_index_store, clock=clock).create_snapshot("shampoo", "2025-12").unwrap()
        assert build.plan == PLAN_GLOBAL_LIGHT
        assert build.stats["producedCount"] == 25

    def test_sparse_month_widens_window(self, memory_store, seed_signals, clock):
        """Test fewer than the threshold in-month switches to the 90-day window."""
        seed_signals(memory_store, count=5)
        seed_signals(memory_store, count=5, day="2025-10-20", prefix="older")

        build = SignalCorpusService(memory_store, clock=clock).create_snapshot("shampoo", "2025-12").unwrap()
        assert build.window == WINDOW_GLOBAL_90D
        assert build.stats["producedCount"] == 10

    def test_untrusted_and_unenriched_excluded(self, memory_store, seed_signals, clock):
        """Test numeric trusted flags and failed enrichment never enter the corpus."""
        seed_signals(memory_store, count=10, trusted=1)
        seed_signals(memory_store, count=10, enrichment="FAILED", prefix="raw")

        result = SignalCorpusService(memory_store, clock=clock).create_snapshot("shampoo", "2025-12")
        assert isinstance(result.error, ValidationError)
        assert result.reason == NO_TRUSTED_SIGNALS
        assert memory_store.get(paths.signal_corpus_doc("shampoo", "2025-12")) is None

    def test_min_trust_score(self, memory_store, seed_signals, clock):
        """Test an optional trust floor removes low-score signals."""
        seed_signals(memory_store, count=4, trust_score=50)
        seed_signals(memory_store, count=3, trust_score=95, prefix="hi")

        build = SignalCorpusService(memory_store, clock=clock).create_snapshot(
            "shampoo", "2025-12", CorpusBuildOptions(min_trust_score=70)
        ).unwrap()
        assert build.stats["producedCount"] == 3

    def test_rebuild_removes_extra_chunks(self, memory_store, seed_signals, clock):
        """Test a smaller rebuild deletes chunks past the new count."""
        service = SignalCorpusService(memory_store, clock=clock)
        seed_signals(memory_store, count=30)
        service.create_snapshot("shampoo", "2025-12").unwrap()
        service.create_snapshot("shampoo", "2025-12", CorpusBuildOptions(limit=10, platform_cap_ratio=1.0)).unwrap()

        assert memory_store.get(signal_chunk_path("sigcorpus_shampoo_2025-12", 1)) is None

    def test_rebuild_replaces_stats(self, memory_store, seed_signals, clock):
        """Test platform counts from an earlier build do not survive a rebuild."""
        service = SignalCorpusService(memory_store, clock=clock)
        options = CorpusBuildOptions(limit=30, platform_cap_ratio=1.0)
        reddit = seed_signals(memory_store, count=30, platforms=("reddit",), prefix="r")
        service.create_snapshot("shampoo", "2025-12", options).unwrap()
        for doc_id in reddit:
            memory_store.delete(paths.join_path(DEFAULT_SIGNALS_COLLECTION, doc_id))
        seed_signals(memory_store, count=30, platforms=("youtube",), prefix="y")
        service.create_snapshot("shampoo", "2025-12", options).unwrap()

        doc = memory_store.get(paths.signal_corpus_doc("shampoo", "2025-12")).data
        assert doc["stats"]["perPlatformCounts"] == {"youtube": 30}
        assert doc["stats"]["producedCount"] == 30
        assert doc["platforms"] == ["youtube"]


class TestSignalCorpusReader:
    """Tests for SignalCorpusReader."""

    def test_missing_snapshot(self, memory_store):
        """Test a missing corpus is NO_SIGNAL_CORPUS."""
        result = SignalCorpusReader(memory_store).load_snapshot("shampoo", "2025-12")
        assert isinstance(result.error, DocumentNotFoundError)
        assert result.reason == NO_SIGNAL_CORPUS

    def test_reads_all_signals(self, memory_store, seed_signals, clock):
        """Test all chunks are read back in order."""
        seed_signals(memory_store, count=30)
        SignalCorpusService(memory_store, clock=clock).create_snapshot("shampoo", "2025-12").unwrap()
        reader = SignalCorpusReader(memory_store)

        snapshot = reader.load_snapshot("shampoo", "2025-12").unwrap()
        signals = reader.read_signals(snapshot).unwrap()
        assert len(signals) == 30
        assert signals[0].last_seen_at >= signals[-1].last_seen_at

    def test_chunk_drops_invalid_signals(self, memory_store):
        """Test untrusted or malformed stored signals are dropped and counted."""
        memory_store.set(
            signal_chunk_path("sigcorpus_shampoo_2025-12", 0),
            {
                "index": 0,
                "signals": [
                    {"id": "a", "categoryId": "shampoo", "trusted": True, "lastSeenAt": "2025-12-01T00:00:00.000Z"},
                    {"id": "b", "categoryId": "shampoo", "trusted": "true", "lastSeenAt": "2025-12-01T00:00:00.000Z"},
                    {"id": "c", "trusted": True, "lastSeenAt": "2025-12-01T00:00:00.000Z"},
                ],
            },
        )
        chunk = SignalCorpusReader(memory_store).read_chunk("sigcorpus_shampoo_2025-12", 0).unwrap()
        assert [s.id for s in chunk.signals] == ["a"]
        assert chunk.dropped == 2
