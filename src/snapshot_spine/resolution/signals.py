"""Signal corpus resolution: exact month, then the current month, then an optional on-demand build."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.timestamps import Clock, month_key, utc_now
from snapshot_spine.resolution.context import ResolutionContext
from snapshot_spine.snapshots.signal_corpus import (
    SignalCorpusReader,
    SignalCorpusService,
    SignalCorpusSnapshot,
    SignalDoc,
)
from snapshot_spine.storage.protocols import DocumentStore

logger = get_logger(__name__)

SignalMode = Literal["EXACT", "FALLBACK_LATEST", "BUILT", "NONE"]


@dataclass
class ResolvedSignals:
    ok: bool
    category_id: str
    month: str
    mode: SignalMode = "NONE"
    snapshot_id: str | None = None
    resolved_month_key: str | None = None
    reason: str = ""
    snapshot: SignalCorpusSnapshot | None = None
    signals: list[SignalDoc] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "categoryId": self.category_id,
            "month": self.month,
            "mode": self.mode,
            "snapshotId": self.snapshot_id,
            "resolvedMonthKey": self.resolved_month_key,
            "reason": self.reason,
            "signalCount": len(self.signals),
        }


class SignalSnapshotResolver:
    def __init__(self, store: DocumentStore, *, clock: Clock | None = None):
        self._store = store
        self._reader = SignalCorpusReader(store)
        self._clock = clock or utc_now

    def _load(self, category_id: str, month: str) -> tuple[SignalCorpusSnapshot, list[SignalDoc]] | None:
        loaded = self._reader.load_snapshot(category_id, month)
        if loaded.is_err():
            return None
        signals = self._reader.read_signals(loaded.data)
        if signals.is_err():
            logger.warning("signals.corpus.unreadable", snapshot_id=loaded.data.id, error=signals.reason)
            return None
        return loaded.data, signals.data

    def _found(
        self, category_id: str, month: str, resolved: str, mode: SignalMode, reason: str, found: tuple
    ) -> ResolvedSignals:
        snapshot, signals = found
        logger.info("signals.resolve.hit", category_id=category_id, month=month, mode=mode, signals=len(signals))
        return ResolvedSignals(
            ok=True,
            category_id=category_id,
            month=month,
            mode=mode,
            snapshot_id=snapshot.id,
            resolved_month_key=resolved,
            reason=reason,
            snapshot=snapshot,
            signals=signals,
        )

    def resolve(
        self,
        category_id: str,
        month: str,
        ctx: ResolutionContext | None = None,
        *,
        build_if_missing: bool = False,
    ) -> ResolvedSignals:
        ctx = ctx or ResolutionContext()

        exact = self._load(category_id, month)
        if exact is not None:
            return self._found(category_id, month, month, "EXACT", "Found exact match", exact)

        current = month_key(self._clock())
        if current != month:
            latest = self._load(category_id, current)
            if latest is not None:
                reason = f"Target {month} missing. Using current ({current})."
                return self._found(category_id, month, current, "FALLBACK_LATEST", reason, latest)

        if build_if_missing:
            service = SignalCorpusService(self._store, collection=ctx.signals_collection, clock=self._clock)
            built = service.create_snapshot(category_id, month, ctx.corpus_options)
            if built.is_ok():
                loaded = self._load(category_id, month)
                if loaded is not None:
                    return self._found(category_id, month, month, "BUILT", f"Built corpus ({built.data.plan})", loaded)
            else:
                logger.warning("signals.resolve.build_failed", category_id=category_id, month=month, error=built.reason)

        return ResolvedSignals(ok=False, category_id=category_id, month=month, reason="NO_SIGNAL_SNAPSHOT")


__all__ = ["ResolvedSignals", "SignalMode", "SignalSnapshotResolver"]
