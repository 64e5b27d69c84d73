"""
Signal corpus snapshots: a frozen, trusted, platform-balanced slice of
harvested market signals for one (category, month).

Manifesto:
    The harvester collection is large, noisy and indexed unevenly across
    deployments. Report synthesis needs a small, stable, trusted sample it
    can read twice and get the same answer. The corpus builder therefore:

    - **Steps down a query ladder:** CANONICAL (category + trusted +
      recency) -> CATEGORY_LIGHT (category + recency) -> GLOBAL_LIGHT
      (recency only); only missing-index errors step down
    - **Filters strictly in memory:** category match, ``trusted is True``,
      enrichment OK, ISO timestamp
    - **Widens sparse months:** fewer than 20 in-month signals switches to a
      rolling 90-day window
    - **Balances platforms:** at most ``floor(limit * cap_ratio)`` per platform
    - **Never writes an empty corpus**

Architecture:
    ::

        harvester ──query ladder──> raw docs ──normalize──> SignalDoc
            ──filter──> window ──dedupe by id──> newest first ──platform cap──>
            signal_corpus_snapshots/sigcorpus_{cat}_{month}
                └── chunks/chunk_000 .. (15 signals each)

Tags:
    signals, corpus, query-ladder, missing-index, platform-cap, snapshot-spine
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from snapshot_spine.core.errors import DocumentNotFoundError, QueryErrorKind, ValidationError, classify_query_error
from snapshot_spine.core.hashing import sha256_json
from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.result import Result, guard
from snapshot_spine.core.sanitize import sanitize
from snapshot_spine.core.timestamps import Clock, days_ago_iso, month_window, now_iso
from snapshot_spine.storage import paths
from snapshot_spine.storage.indexes import DEFAULT_SIGNALS_COLLECTION
from snapshot_spine.storage.protocols import Document, DocumentStore, FieldFilter, OrderBy, Query

logger = get_logger(__name__)

ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")

PLAN_CANONICAL = "CANONICAL"
PLAN_CATEGORY_LIGHT = "CATEGORY_LIGHT"
PLAN_GLOBAL_LIGHT = "GLOBAL_LIGHT"

WINDOW_EXACT_MONTH = "EXACT_MONTH"
WINDOW_GLOBAL_90D = "GLOBAL_90D"

NO_TRUSTED_SIGNALS = "NO_TRUSTED_SIGNALS_AVAILABLE"
NO_SIGNAL_CORPUS = "NO_SIGNAL_CORPUS"


class SignalDoc(BaseModel):
    """A harvested signal normalized for corpus use."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    url: str = ""
    title: str = ""
    snippet: str = ""
    platform: str = "web"
    source: str = "unknown"
    category_id: str = Field(alias="categoryId")
    trusted: bool = False
    trust_score: float = Field(0, alias="trustScore")
    last_seen_at: str = Field(alias="lastSeenAt")
    collected_at: str | None = Field(None, alias="collectedAt")
    first_seen_at: str | None = Field(None, alias="firstSeenAt")
    enrichment_status: str = Field("UNKNOWN", alias="enrichmentStatus")
    provenance: str = "UNKNOWN"

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def normalize_signal(raw: Mapping[str, Any], category_id: str, plan: str, now: str) -> SignalDoc:
    """Coerce a raw harvester document into a :class:`SignalDoc`."""
    meta = raw.get("_meta") if isinstance(raw.get("_meta"), Mapping) else {}
    last_seen = raw.get("lastSeenAt") or raw.get("collectedAt") or now
    score = raw.get("trustScore")
    return SignalDoc(
        id=str(raw.get("id")),
        url=raw.get("url") or "",
        title=raw.get("title") or "",
        snippet=raw.get("snippet") or "",
        platform=str(raw.get("platform") or "web").lower(),
        source=raw.get("source") or "unknown",
        category_id=raw.get("categoryId") or raw.get("category") or category_id,
        trusted=raw.get("trusted") is True,
        trust_score=score if isinstance(score, (int, float)) and not isinstance(score, bool) else 0,
        last_seen_at=str(last_seen),
        collected_at=raw.get("collectedAt") or str(last_seen),
        first_seen_at=raw.get("firstSeenAt") or raw.get("collectedAt"),
        enrichment_status=meta.get("enrichmentStatus") or raw.get("enrichmentStatus") or "UNKNOWN",
        provenance=plan,
    )


@dataclass(frozen=True, slots=True)
class CorpusBuildOptions:
    limit: int = 90
    platform_cap_ratio: float = 0.4
    chunk_size: int = 15
    sparse_window_threshold: int = 20
    fallback_window_days: int = 90
    min_trust_score: float | None = None


class SignalCorpusSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    category_id: str = Field(alias="categoryId")
    month_key: str = Field(alias="monthKey")
    version: str = "v1"
    signal_count: int = Field(0, alias="signalCount")
    platforms: list[str] = Field(default_factory=list)
    chunk_count: int = Field(0, alias="chunkCount")
    created_at_iso: str = Field("", alias="createdAtIso")
    stats: dict[str, Any] = Field(default_factory=dict)
    summary: dict[str, Any] = Field(default_factory=dict)
    source: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True, slots=True)
class SignalCorpusBuild:
    snapshot_id: str
    plan: str
    window: str
    fetched: int
    stats: dict[str, Any]


@dataclass(frozen=True, slots=True)
class SignalChunk:
    index: int
    signals: list[SignalDoc]
    dropped: int = 0


def signal_chunk_path(snapshot_id: str, index: int) -> str:
    return paths.join_path(
        paths.SIGNAL_CORPUS_SNAPSHOTS, snapshot_id, paths.SIGNAL_CORPUS_CHUNKS, f"chunk_{index:03d}"
    )


def cap_by_platform(signals: list[SignalDoc], limit: int, cap_ratio: float) -> tuple[list[SignalDoc], dict[str, int]]:
    """Take signals in order until ``limit``, at most ``floor(limit * cap_ratio)`` per platform."""
    per_platform = math.floor(limit * cap_ratio)
    counts: Counter[str] = Counter()
    selected: list[SignalDoc] = []
    for signal in signals:
        if len(selected) >= limit:
            break
        if counts[signal.platform] < per_platform:
            selected.append(signal)
            counts[signal.platform] += 1
    return selected, dict(counts)


class SignalCorpusService:
    """Builds signal corpus snapshots from the harvester collection."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        collection: str = DEFAULT_SIGNALS_COLLECTION,
        clock: Clock | None = None,
    ):
        self._store = store
        self._collection = collection
        self._clock = clock

    def _ladder(self, category_id: str) -> list[tuple[str, Query]]:
        recency = [OrderBy("lastSeenAt", descending=True)]
        by_category = FieldFilter("categoryId", "==", category_id)
        return [
            (
                PLAN_CANONICAL,
                Query(
                    self._collection,
                    filters=[by_category, FieldFilter("trusted", "==", True)],
                    order_by=recency,
                    limit=300,
                ),
            ),
            (PLAN_CATEGORY_LIGHT, Query(self._collection, filters=[by_category], order_by=recency, limit=500)),
            (PLAN_GLOBAL_LIGHT, Query(self._collection, order_by=recency, limit=2000)),
        ]

    def fetch_candidates(self, category_id: str) -> tuple[str, list[Document]]:
        """Run the query ladder; only missing-index failures step down a rung."""
        *rungs, (last_plan, last_query) = self._ladder(category_id)
        for plan, query in rungs:
            try:
                return plan, self._store.query(query)
            except Exception as e:
                info = classify_query_error(e)
                if info.kind != QueryErrorKind.INDEX_ERROR:
                    raise
                logger.warning("signal_corpus.query.step_down", plan=plan, collection=self._collection, error=info.message)
        return last_plan, self._store.query(last_query)

    def create_snapshot(
        self,
        category_id: str,
        month: str,
        options: CorpusBuildOptions | None = None,
    ) -> Result[SignalCorpusBuild]:
        opts = options or CorpusBuildOptions()
        snapshot_id = paths.signal_corpus_id(category_id, month)

        def _build() -> SignalCorpusBuild:
            now = now_iso(self._clock)
            plan, raw_docs = self.fetch_candidates(category_id)
            logger.info("signal_corpus.fetched", snapshot_id=snapshot_id, plan=plan, fetched=len(raw_docs))

            normalized = [normalize_signal({"id": d.id, **d.data}, category_id, plan, now) for d in raw_docs]
            valid = [
                s
                for s in normalized
                if s.category_id == category_id
                and s.trusted is True
                and s.enrichment_status == "OK"
                and ISO_PREFIX.match(s.last_seen_at)
                and (opts.min_trust_score is None or s.trust_score >= opts.min_trust_score)
            ]

            start, end = month_window(month)
            candidates = [s for s in valid if start <= s.last_seen_at < end]
            window = WINDOW_EXACT_MONTH
            if len(candidates) < opts.sparse_window_threshold:
                since = days_ago_iso(opts.fallback_window_days, self._clock)
                candidates = [s for s in valid if s.last_seen_at >= since]
                window = WINDOW_GLOBAL_90D

            unique = list({s.id: s for s in candidates}.values())
            unique.sort(key=lambda s: s.last_seen_at, reverse=True)
            selected, per_platform = cap_by_platform(unique, opts.limit, opts.platform_cap_ratio)

            if not selected:
                raise ValidationError(NO_TRUSTED_SIGNALS).with_context(category_id=category_id, month=month)

            chunk_count = math.ceil(len(selected) / opts.chunk_size)
            stats = {
                "requestedLimit": opts.limit,
                "producedCount": len(selected),
                "perPlatformCounts": per_platform,
                "windowUsed": window,
                "planUsed": plan,
            }
            snapshot = SignalCorpusSnapshot(
                id=snapshot_id,
                category_id=category_id,
                month_key=month,
                signal_count=len(selected),
                platforms=list(per_platform),
                chunk_count=chunk_count,
                created_at_iso=now,
                stats=stats,
                source={
                    "harvesterCollection": self._collection,
                    "fetchedCandidates": len(raw_docs),
                    "platformCapPct": opts.platform_cap_ratio * 100,
                    "monthStrategy": window,
                },
                summary={
                    "signals": len(selected),
                    "chunks": chunk_count,
                    "trustedUsed": len(selected),
                    "enrichedUsed": sum(1 for s in selected if s.enrichment_status == "OK"),
                    "schemaVersion": 1,
                    "timeFieldMode": "ISO",
                    "sample": [s.to_document() for s in selected[:5]],
                },
            )

            self._store.set(paths.signal_corpus_doc(category_id, month), sanitize(snapshot.to_document()))
            batch = self._store.batch()
            for index in range(chunk_count):
                part = [s.to_document() for s in selected[index * opts.chunk_size : (index + 1) * opts.chunk_size]]
                batch.set(
                    signal_chunk_path(snapshot_id, index),
                    sanitize({"index": index, "signals": part, "sha256": sha256_json(sanitize(part))}),
                )
            chunks_collection = paths.join_path(
                paths.SIGNAL_CORPUS_SNAPSHOTS, snapshot_id, paths.SIGNAL_CORPUS_CHUNKS
            )
            for chunk_id in self._store.list_ids(chunks_collection):
                number = chunk_id.removeprefix("chunk_")
                if number.isdigit() and int(number) >= chunk_count:
                    batch.delete(paths.join_path(chunks_collection, chunk_id))
            batch.commit()

            logger.info(
                "signal_corpus.created",
                snapshot_id=snapshot_id,
                plan=plan,
                window=window,
                signals=len(selected),
                chunks=chunk_count,
            )
            return SignalCorpusBuild(snapshot_id, plan, window, len(raw_docs), stats)

        result = guard(_build)
        if result.is_err():
            logger.warning("signal_corpus.create.failed", snapshot_id=snapshot_id, error=result.reason)
        return result


class SignalCorpusReader:
    """Reads corpus snapshots back, dropping any signal that fails the trust contract."""

    def __init__(self, store: DocumentStore):
        self._store = store

    def load_snapshot(self, category_id: str, month: str) -> Result[SignalCorpusSnapshot]:
        def _load() -> SignalCorpusSnapshot:
            doc = self._store.get(paths.signal_corpus_doc(category_id, month))
            if doc is None:
                raise DocumentNotFoundError(NO_SIGNAL_CORPUS).with_context(category_id=category_id, month=month)
            return SignalCorpusSnapshot.model_validate(doc.data)

        return guard(_load)

    def read_chunk(self, snapshot_id: str, index: int) -> Result[SignalChunk]:
        def _read() -> SignalChunk:
            doc = self._store.get(signal_chunk_path(snapshot_id, index))
            if doc is None:
                raise DocumentNotFoundError(f"Signal chunk {index} missing").with_context(snapshot_id=snapshot_id)
            safe: list[SignalDoc] = []
            dropped = 0
            for raw in doc.data.get("signals") or []:
                if not (raw.get("id") and raw.get("categoryId") and raw.get("trusted") is True and raw.get("lastSeenAt")):
                    dropped += 1
                    continue
                safe.append(SignalDoc.model_validate(raw))
            if dropped:
                logger.warning("signal_corpus.chunk.dropped", snapshot_id=snapshot_id, index=index, dropped=dropped)
            return SignalChunk(index=doc.data.get("index", index), signals=safe, dropped=dropped)

        return guard(_read)

    def read_signals(self, snapshot: SignalCorpusSnapshot) -> Result[list[SignalDoc]]:
        """Every valid signal across all chunks, in chunk order."""

        def _read() -> list[SignalDoc]:
            signals: list[SignalDoc] = []
            for index in range(snapshot.chunk_count):
                signals.extend(self.read_chunk(snapshot.id, index).unwrap().signals)
            return signals

        return guard(_read)


__all__ = [
    "CorpusBuildOptions",
    "ISO_PREFIX",
    "NO_SIGNAL_CORPUS",
    "NO_TRUSTED_SIGNALS",
    "SignalChunk",
    "SignalCorpusBuild",
    "SignalCorpusReader",
    "SignalCorpusService",
    "SignalCorpusSnapshot",
    "SignalDoc",
    "cap_by_platform",
    "normalize_signal",
    "signal_chunk_path",
]
