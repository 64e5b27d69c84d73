"""
Tests for snapshot_spine.snapshots.volume_cache.

Tests cover:
- Cache key layout
- Batched writes and fan-out reads
- TTL staleness
- Read failures treated as misses
- Cache-first validation that only sends misses to the provider
"""

from datetime import UTC, datetime, timedelta

import pytest

from snapshot_spine.core.cache import InMemoryCache
from snapshot_spine.core.errors import StoreUnavailableError
from snapshot_spine.core.protocols import ServiceReply
from snapshot_spine.snapshots.volume_cache import CachedVolumeValidator, VolumeCache, VolumeEntry
from snapshot_spine.storage import paths
from snapshot_spine.storage.memory import MemoryDocumentStore


class FlakyReadStore(MemoryDocumentStore):
    """Store whose reads always fail."""

    def get(self, path):
        raise StoreUnavailableError("read timeout")


class TestVolumeCache:
    """Tests for VolumeCache."""

    def test_key_uses_normalized_keyword(self, memory_store):
        """Test the document key embeds country, language, location and normalized text."""
        cache = VolumeCache(memory_store)
        assert cache.key("Anti-Dandruff Shampoo") == "IN__en__2356__antidandruff shampoo"

    @pytest.mark.asyncio
    async def test_set_then_get(self, memory_store, clock):
        """Test written entries are returned keyed by normalized keyword."""
        cache = VolumeCache(memory_store, clock=clock)
        written = await cache.set_many(
            [VolumeEntry("Hair Oil", 1200, cpc=0.4), VolumeEntry("argan oil", 300, source="MANUAL")]
        )
        assert written.unwrap() == 2

        found = await cache.get_many(["hair oil", "argan oil", "unknown"])
        assert set(found) == {"hair oil", "argan oil"}
        assert found["hair oil"].volume == 1200
        assert found["hair oil"].cpc == 0.4

        raw = memory_store.get(paths.volume_cache_doc(cache.key("argan oil"))).data
        assert raw["source"] == "MANUAL"
        assert raw["updatedAt"] == "2025-12-15T12:00:00.000Z"

    @pytest.mark.asyncio
    async def test_writes_split_into_batches(self, memory_store, clock):
        """Test more entries than the batch limit are all written."""
        cache = VolumeCache(memory_store, batch_limit=3, fanout_batch_size=4, clock=clock)
        entries = [VolumeEntry(f"keyword {i}", i + 1) for i in range(10)]
        assert (await cache.set_many(entries)).unwrap() == 10

        found = await cache.get_many([e.keyword for e in entries])
        assert len(found) == 10

    @pytest.mark.asyncio
    async def test_stale_entries_are_misses(self, memory_store):
        """Test entries older than the TTL are not returned."""
        now = [datetime(2025, 11, 1, tzinfo=UTC)]
        writer = VolumeCache(memory_store, clock=lambda: now[0])
        await writer.set_many([VolumeEntry("shampoo", 900)])

        now[0] += timedelta(days=31)
        reader = VolumeCache(memory_store, memory=InMemoryCache(), clock=lambda: now[0])
        assert await reader.get_many(["shampoo"]) == {}

    @pytest.mark.asyncio
    async def test_read_failure_is_miss(self, clock):
        """Test a failing store read does not raise from get_many."""
        cache = VolumeCache(FlakyReadStore(), clock=clock)
        assert await cache.get_many(["shampoo"]) == {}


class RecordingProvider:
    """Validator that prices every row it is asked about at a fixed volume."""

    def __init__(self, volume=250, error=None):
        self.volume = volume
        self.error = error
        self.asked = []

    async def validate(self, category_id, snapshot_id, rows):
        self.asked.extend(r["keyword_text"] for r in rows)
        if self.error:
            return ServiceReply.failure(self.error)
        return ServiceReply.success(
            {"rows": [{**r, "volume": self.volume, "status": "VALID" if self.volume else "ZERO"} for r in rows]}
        )


def _row(i, text):
    return {"keyword_id": f"kw_{i}", "keyword_text": text, "anchor_id": "hair fall", "status": "UNVERIFIED"}


class TestCachedVolumeValidator:
    """Tests for CachedVolumeValidator.validate."""

    @pytest.mark.asyncio
    async def test_only_misses_reach_provider(self, memory_store, clock):
        """Test cached keywords are settled locally and fresh answers are cached."""
        cache = VolumeCache(memory_store, clock=clock)
        await cache.set_many([VolumeEntry("Hair Oil", 1200), VolumeEntry("dry scalp", 0)])
        provider = RecordingProvider()

        reply = await CachedVolumeValidator(cache, provider, clock=clock).validate(
            "shampoo", "snap_1", [_row(0, "hair oil"), _row(1, "Dry Scalp"), _row(2, "argan oil")]
        )

        rows = reply.data["rows"]
        assert provider.asked == ["argan oil"]
        assert [r["keyword_id"] for r in rows] == ["kw_0", "kw_1", "kw_2"]
        assert (rows[0]["status"], rows[0]["volume"]) == ("VALID", 1200)
        assert rows[0]["validated_at_iso"] == "2025-12-15T12:00:00.000Z"
        assert (rows[1]["status"], rows[1]["volume"]) == ("ZERO", 0)
        assert (rows[2]["status"], rows[2]["volume"]) == ("VALID", 250)
        assert (await cache.get_many(["argan oil"]))["argan oil"].volume == 250

    @pytest.mark.asyncio
    async def test_all_hits_skip_provider(self, memory_store, clock):
        """Test the provider is never called when every keyword is cached."""
        cache = VolumeCache(memory_store, clock=clock)
        await cache.set_many([VolumeEntry("hair oil", 900)])
        provider = RecordingProvider()

        validator = CachedVolumeValidator(cache, provider, clock=clock)
        reply = await validator.validate("shampoo", "snap_1", [_row(0, "hair oil")])
        assert reply.ok
        assert provider.asked == []

    @pytest.mark.asyncio
    async def test_provider_failure_is_returned(self, memory_store, clock):
        """Test a failed provider reply is passed through and nothing is cached."""
        cache = VolumeCache(memory_store, clock=clock)
        provider = RecordingProvider(error="quota exceeded")

        validator = CachedVolumeValidator(cache, provider, clock=clock)
        reply = await validator.validate("shampoo", "snap_1", [_row(0, "hair oil")])
        assert not reply.ok
        assert reply.error == "quota exceeded"
        assert memory_store.list_ids(paths.VOLUME_CACHE) == []
