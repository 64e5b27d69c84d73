"""
Keyword volume cache with a 30-day TTL.

Entries live at ``keyword_volume_cache/{country}__{lang}__{loc}__{normalized}``
and are fronted by an in-process :class:`~snapshot_spine.core.cache.InMemoryCache`.
Lookups fan out in fixed batches of ``fanout_batch_size`` concurrent reads;
writes commit sequential batches below the store's operation ceiling.

:class:`CachedVolumeValidator` puts the cache in front of a keyword validator:
rows with a fresh cached volume are settled locally and only the misses are
sent to the provider, whose answers are written back.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from snapshot_spine.core.cache import CacheBackend, InMemoryCache
from snapshot_spine.core.hashing import normalize_keyword
from snapshot_spine.core.lifecycle import RowStatus
from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.protocols import KeywordValidator, ServiceReply
from snapshot_spine.core.result import Result, guard
from snapshot_spine.core.sanitize import sanitize
from snapshot_spine.core.timestamps import Clock, from_iso, now_iso, utc_now
from snapshot_spine.storage import paths
from snapshot_spine.storage.protocols import DocumentStore

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class VolumeRecord:
    keyword_norm: str
    volume: float
    cpc: float
    competition: float
    fetched_at_iso: str | None
    source: str = "CACHE"


@dataclass(frozen=True, slots=True)
class VolumeEntry:
    keyword: str
    volume: float
    cpc: float = 0.0
    competition: float = 0.0
    source: str = "PROVIDER"


class VolumeCache:
    def __init__(
        self,
        store: DocumentStore,
        *,
        country: str = "IN",
        language: str = "en",
        location_code: int = 2356,
        ttl_days: int = 30,
        fanout_batch_size: int = 20,
        batch_limit: int = 450,
        memory: CacheBackend | None = None,
        clock: Clock | None = None,
    ):
        self._store = store
        self._country = country
        self._language = language
        self._location = location_code
        self._ttl = timedelta(days=ttl_days)
        self._fanout = fanout_batch_size
        self._batch_limit = batch_limit
        self._memory = memory if memory is not None else InMemoryCache(default_ttl_seconds=3600)
        self._clock = clock or utc_now

    def key(self, keyword: str) -> str:
        return paths.volume_cache_key(self._country, self._language, self._location, normalize_keyword(keyword))

    def _fresh(self, updated_at: str | None) -> bool:
        updated = from_iso(updated_at)
        return updated is not None and self._clock() - updated < self._ttl

    def _lookup(self, keyword: str) -> VolumeRecord | None:
        key = self.key(keyword)
        data: dict[str, Any] | None = self._memory.get(key)
        if data is None:
            doc = self._store.get(paths.volume_cache_doc(key))
            if doc is None:
                return None
            data = doc.data
            self._memory.set(key, data)
        if not self._fresh(data.get("updatedAt")):
            return None
        return VolumeRecord(
            keyword_norm=normalize_keyword(keyword),
            volume=data.get("volume") or 0,
            cpc=data.get("cpc") or 0,
            competition=data.get("competition") or 0,
            fetched_at_iso=data.get("updatedAt"),
        )

    async def _lookup_async(self, keyword: str) -> VolumeRecord | None:
        try:
            return await asyncio.to_thread(self._lookup, keyword)
        except Exception as e:
            # A failed read is a miss; the caller fetches the volume upstream.
            logger.warning("volume_cache.read.failed", keyword=keyword, error=str(e))
            return None

    async def get_many(self, keywords: Sequence[str]) -> dict[str, VolumeRecord]:
        """Fresh cached volumes keyed by normalized keyword. Misses and stale entries are absent."""
        found: dict[str, VolumeRecord] = {}
        for start in range(0, len(keywords), self._fanout):
            batch = keywords[start : start + self._fanout]
            records = await asyncio.gather(*(self._lookup_async(kw) for kw in batch))
            for record in records:
                if record is not None:
                    found[record.keyword_norm] = record
        logger.debug("volume_cache.get_many", requested=len(keywords), hits=len(found))
        return found

    def _write(self, entries: Sequence[VolumeEntry]) -> int:
        stamp = now_iso(self._clock)
        written = 0
        for start in range(0, len(entries), self._batch_limit):
            batch = self._store.batch()
            staged: list[tuple[str, dict[str, Any]]] = []
            for entry in entries[start : start + self._batch_limit]:
                key = self.key(entry.keyword)
                data = sanitize(
                    {
                        "keyword": entry.keyword,
                        "normalized_keyword": normalize_keyword(entry.keyword),
                        "countryCode": self._country,
                        "languageCode": self._language,
                        "locationCode": self._location,
                        "volume": entry.volume,
                        "cpc": entry.cpc,
                        "competition": entry.competition,
                        "source": entry.source,
                        "updatedAt": stamp,
                    }
                )
                batch.set(paths.volume_cache_doc(key), data)
                staged.append((key, data))
            batch.commit()
            for key, data in staged:
                self._memory.set(key, data)
            written += len(staged)
        return written

    async def set_many(self, entries: Iterable[VolumeEntry]) -> Result[int]:
        items = list(entries)
        result = await asyncio.to_thread(guard, lambda: self._write(items))
        if result.is_ok():
            logger.info("volume_cache.set_many", written=result.data)
        else:
            logger.error("volume_cache.set_many.failed", error=result.reason)
        return result


class CachedVolumeValidator:
    """Keyword validator that answers from the volume cache before asking the provider."""

    def __init__(self, cache: VolumeCache, provider: KeywordValidator, *, clock: Clock | None = None):
        self._cache = cache
        self._provider = provider
        self._clock = clock or utc_now

    def _settle(self, row: dict[str, Any], record: VolumeRecord) -> dict[str, Any]:
        status = RowStatus.VALID if record.volume > 0 else RowStatus.ZERO
        return {
            **row,
            "volume": record.volume,
            "cpc": record.cpc,
            "competition": record.competition,
            "status": status.value,
            "validated_at_iso": now_iso(self._clock),
        }

    async def validate(
        self, category_id: str, snapshot_id: str, rows: Sequence[Mapping[str, Any]]
    ) -> ServiceReply:
        merged = [dict(r) for r in rows]
        hits = await self._cache.get_many([r.get("keyword_text") or "" for r in merged])
        misses: list[int] = []
        for index, row in enumerate(merged):
            record = hits.get(normalize_keyword(row.get("keyword_text") or ""))
            if record is None:
                misses.append(index)
            else:
                merged[index] = self._settle(row, record)

        if misses:
            reply = await self._provider.validate(category_id, snapshot_id, [merged[i] for i in misses])
            if not reply.ok or reply.data is None:
                return reply
            fetched = {r.get("keyword_id"): dict(r) for r in reply.data.get("rows") or []}
            entries: list[VolumeEntry] = []
            for index in misses:
                updated = fetched.get(merged[index].get("keyword_id"))
                if updated is None:
                    continue
                merged[index] = updated
                if updated.get("volume") is not None and updated.get("status") in (RowStatus.VALID, RowStatus.ZERO):
                    entries.append(
                        VolumeEntry(
                            keyword=updated.get("keyword_text") or "",
                            volume=updated["volume"],
                            cpc=updated.get("cpc") or 0.0,
                            competition=updated.get("competition") or 0.0,
                        )
                    )
            if entries:
                await self._cache.set_many(entries)

        logger.info(
            "volume_cache.validate",
            snapshot_id=snapshot_id,
            hits=len(merged) - len(misses),
            misses=len(misses),
        )
        return ServiceReply.success({"rows": merged})


__all__ = ["CachedVolumeValidator", "VolumeCache", "VolumeEntry", "VolumeRecord"]
