"""
Integrity auditor: independent re-probe of every domain behind a report.

Each probe runs on its own and its failure is recorded in the report, so
a missing signals index never hides the state of demand or keywords. The
auditor never raises; even a store that fails every call yields a report
with a verdict and structured blockers.

Probes::

    demand     DemandSnapshotResolver         DEMAND_MISSING
    keywords   KeywordSnapshotResolver        KEYWORDS_MISSING
    signals    corpus snapshot, else canonical harvester query,
               else diagnostic query          SIGNALS_*
    report     latest report pointer          warnings only
    telemetry  TelemetryBus history           notes only
    store      round-trip write/read/delete   POINTER_WRITE_FAILED

Verdict: ``GO`` iff demand resolved with a positive headline, the keyword
snapshot holds rows, and no ``SIGNALS_*`` blocker was raised.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from snapshot_spine.audit.contract import (
    AuditEnvironment,
    AuditTarget,
    BlockerCode,
    IntegrityAuditReport,
    SignalsProbe,
)
from snapshot_spine.core.errors import (
    DocumentNotFoundError,
    MissingIndexError,
    QueryErrorKind,
    classify_query_error,
)
from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.settings import SnapshotSpineSettings
from snapshot_spine.core.timestamps import Clock, month_window, now_iso, utc_now
from snapshot_spine.orchestration.telemetry import TelemetryBus, report_run_key
from snapshot_spine.resolution.context import ResolutionContext
from snapshot_spine.resolution.demand import DemandSnapshotResolver
from snapshot_spine.resolution.keywords import KeywordSnapshotResolver
from snapshot_spine.snapshots.demand_output import is_positive_finite
from snapshot_spine.snapshots.report_store import ReportStore, missing_sections
from snapshot_spine.snapshots.signal_corpus import SignalCorpusReader
from snapshot_spine.storage import paths
from snapshot_spine.storage.protocols import DocumentStore, FieldFilter, OrderBy, Query

logger = get_logger(__name__)

CANONICAL_REMEDIATION = "Create Composite Index (categoryId ASC, trusted ASC, lastSeenAt DESC)"
DIAGNOSTIC_LIMIT = 50
_ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")


def _enrichment(doc: Mapping[str, Any]) -> str | None:
    meta = doc.get("_meta")
    if isinstance(meta, Mapping) and meta.get("enrichmentStatus"):
        return meta.get("enrichmentStatus")
    return doc.get("enrichmentStatus")


def validate_signal_docs(
    docs: Iterable[Mapping[str, Any]],
    probe: SignalsProbe,
    window: tuple[str, str],
    category_id: str,
) -> None:
    """
    Schema and trust checks over sampled harvester documents.

    ``trusted`` must be the boolean ``True`` (a truthy string fails) and
    ``lastSeenAt`` must start with a full ISO date-time.
    """
    docs = list(docs)
    start, end = window
    category_ok = trusted_ok = seen_ok = enriched = with_platform = 0
    failures = probe.schema_check.failures

    for d in docs:
        doc_id = d.get("id") or "?"
        if d.get("categoryId") == category_id:
            category_ok += 1
        else:
            failures.append(f"Doc {doc_id} category mismatch: {d.get('categoryId')} != {category_id}")

        if d.get("trusted") is True:
            trusted_ok += 1
        else:
            failures.append(f"Doc {doc_id} not trusted")

        last_seen = d.get("lastSeenAt")
        if isinstance(last_seen, str) and _ISO_DATETIME.match(last_seen):
            seen_ok += 1
        else:
            failures.append(f"Doc {doc_id} invalid lastSeenAt: {last_seen}")

        if _enrichment(d) == "OK":
            enriched += 1
            probe.enriched_used += 1
        if d.get("platform"):
            with_platform += 1

        score = d.get("trustScore")
        if d.get("trusted") is True and isinstance(score, (int, float)) and score >= probe.min_trust_score:
            probe.trusted_used += 1

        platform = str(d.get("platform") or "unknown").lower()
        probe.platforms[platform] = probe.platforms.get(platform, 0) + 1

        ts = last_seen or d.get("collectedAt")
        if isinstance(ts, str) and ts:
            fresh = probe.freshness
            if fresh.oldest_used_iso is None or ts < fresh.oldest_used_iso:
                fresh.oldest_used_iso = ts
            if fresh.newest_used_iso is None or ts > fresh.newest_used_iso:
                fresh.newest_used_iso = ts
            if start <= ts < end:
                probe.month_window.in_window += 1

    total = len(docs)
    check = probe.schema_check
    check.category_id_ok = category_ok == total
    check.trusted_ok = trusted_ok == total
    check.last_seen_at_ok = seen_ok == total
    check.enrichment_ok = enriched > 0
    check.platform_ok = with_platform == total
    probe.freshness.uses_last_seen_at = seen_ok > 0
    probe.used = total


class IntegrityAuditor:
    """Builds an :class:`IntegrityAuditReport` for one (category, month)."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        ctx: ResolutionContext | None = None,
        telemetry: TelemetryBus | None = None,
        min_trusted_signals: int = 20,
        min_enriched_signals: int = 5,
        stale_signal_threshold: int = 10,
        min_trust_score: float = 70,
        signal_limit: int = 90,
        demand_only: bool = False,
        clock: Clock | None = None,
    ):
        self._store = store
        self._ctx = ctx or ResolutionContext()
        self._telemetry = telemetry
        self._min_trusted = min_trusted_signals
        self._min_enriched = min_enriched_signals
        self._stale_threshold = stale_signal_threshold
        self._min_trust_score = min_trust_score
        self._signal_limit = signal_limit
        self._demand_only = demand_only
        self._clock = clock or utc_now

    @classmethod
    def from_settings(
        cls, store: DocumentStore, settings: SnapshotSpineSettings, **kwargs: Any
    ) -> IntegrityAuditor:
        kwargs.setdefault("ctx", ResolutionContext.from_settings(settings))
        return cls(
            store,
            min_trusted_signals=settings.min_trusted_signals,
            min_enriched_signals=settings.min_enriched_signals,
            stale_signal_threshold=settings.stale_signal_threshold,
            min_trust_score=settings.min_trust_score,
            signal_limit=settings.signal_limit,
            demand_only=settings.demand_only,
            **kwargs,
        )

    # ------------------------------------------------------------------ #
    # Probes
    # ------------------------------------------------------------------ #

    def _probe_demand(self, report: IntegrityAuditReport, category_id: str, month: str) -> None:
        probe = report.probes.demand
        try:
            resolved = DemandSnapshotResolver(self._store).resolve(category_id, month, self._ctx)
        except Exception as e:
            probe.notes.append(f"Error: {e}")
            return
        if resolved.ok and resolved.snapshot_id:
            probe.ok = True
            probe.snapshot_id = resolved.snapshot_id
            probe.mode = resolved.mode
            value = resolved.demand_index_mn
            probe.metrics_present = is_positive_finite(value)
            probe.demand_index_mn = value if isinstance(value, (int, float)) else None
            probe.notes.append(f"Resolved via {resolved.mode}")
            if resolved.reason:
                probe.notes.append(resolved.reason)
            if not probe.metrics_present:
                report.block(
                    BlockerCode.DEMAND_MISSING,
                    "Demand Snapshot exists but metrics missing",
                    ["Re-run Demand Sweep"],
                    {"snapshotId": resolved.snapshot_id, "demand_index_mn": value},
                )
        else:
            report.block(
                BlockerCode.DEMAND_MISSING,
                resolved.reason or "Demand Resolution Failed",
                ["Run Demand Sweep"],
            )

    def _probe_keywords(self, report: IntegrityAuditReport, category_id: str) -> None:
        probe = report.probes.keywords
        try:
            resolved = KeywordSnapshotResolver(self._store, heal=False).resolve(category_id, self._ctx)
        except Exception as e:
            probe.notes.append(f"Error: {e}")
            return
        if resolved.ok and resolved.snapshot is not None:
            probe.ok = True
            probe.snapshot_id = resolved.snapshot_id
            probe.source = resolved.source
            probe.rows = resolved.snapshot.stats.keywords_total
            probe.anchors = len(resolved.snapshot.anchors)
            if probe.rows == 0:
                report.block(BlockerCode.KEYWORDS_MISSING, "Keyword Snapshot Empty", ["Hydrate & Validate"])
        else:
            report.block(
                BlockerCode.KEYWORDS_MISSING,
                "No Active Keyword Snapshot",
                ["Check Integrity Console > Corpus"],
            )

    def _query_harvester(self, report: IntegrityAuditReport, category_id: str, window: tuple[str, str]) -> None:
        probe = report.probes.signals
        collection = self._ctx.signals_collection
        probe.query_plan.append(
            f"Corpus Missing. Trying Harvester Canonical: categoryId={category_id}, trusted=true, sort=lastSeenAt"
        )
        canonical = Query(
            collection,
            filters=[FieldFilter("categoryId", "==", category_id), FieldFilter("trusted", "==", True)],
            order_by=[OrderBy("lastSeenAt", descending=True)],
            limit=self._signal_limit,
        )
        try:
            docs = self._store.query(canonical)
        except Exception as e:
            info = classify_query_error(e)
            probe.required_index_ok = False
            probe.index_error = info.url or info.message if info.kind == QueryErrorKind.INDEX_ERROR else str(e)
            if info.kind == QueryErrorKind.INDEX_ERROR:
                remediation = e.remediation if isinstance(e, MissingIndexError) and e.fields else CANONICAL_REMEDIATION
                report.block(
                    BlockerCode.SIGNALS_INDEX_MISSING,
                    "Canonical Index Missing",
                    [remediation],
                    {"collection": collection, "url": info.url},
                )
            logger.warning("audit.signals.canonical_failed", kind=info.kind.value, error=info.message)
            self._query_diagnostic(report, category_id, window)
            return

        probe.required_index_ok = True
        probe.ok = True
        probe.sampled = len(docs)
        probe.query_plan.append(f"Canonical Query OK. Returned {len(docs)} docs.")
        validate_signal_docs(({"id": d.id, **d.data} for d in docs), probe, window, category_id)

    def _query_diagnostic(self, report: IntegrityAuditReport, category_id: str, window: tuple[str, str]) -> None:
        probe = report.probes.signals
        probe.query_plan.append("Canonical Failed. Trying Diagnostic Fallback: categoryId only")
        try:
            docs = self._store.query(
                Query(
                    self._ctx.signals_collection,
                    filters=[FieldFilter("categoryId", "==", category_id)],
                    limit=DIAGNOSTIC_LIMIT,
                )
            )
        except Exception as e:
            logger.warning("audit.signals.diagnostic_failed", error=str(e))
            report.block(
                BlockerCode.SIGNALS_MISSING,
                "All Signal Queries Failed",
                ["Check store permissions", "Check categoryId string match"],
                {"error": str(e)},
            )
            return
        probe.sampled = len(docs)
        probe.query_plan.append(f"Fallback OK. Returned {len(docs)} raw docs.")
        validate_signal_docs(({"id": d.id, **d.data} for d in docs), probe, window, category_id)

    def _probe_signals(self, report: IntegrityAuditReport, category_id: str, month: str) -> None:
        probe = report.probes.signals
        try:
            window = month_window(month)
            probe.month_window.start, probe.month_window.end = window

            corpus = SignalCorpusReader(self._store).load_snapshot(category_id, month)
            if corpus.is_ok():
                snapshot = corpus.data
                probe.mode = "CORPUS_SNAPSHOT"
                probe.ok = True
                probe.required_index_ok = True
                probe.used = snapshot.signal_count
                probe.query_plan.append("Loaded from Signal Corpus Snapshot")
                probe.notes.append(f"Corpus Snapshot {snapshot.id} found with {snapshot.signal_count} signals.")
                sample = snapshot.summary.get("sample") or []
                if sample:
                    validate_signal_docs(sample, probe, window, category_id)
                    probe.used = snapshot.signal_count
                    probe.trusted_used = snapshot.summary.get("trustedUsed") or snapshot.signal_count
                    probe.enriched_used = snapshot.summary.get("enrichedUsed") or snapshot.signal_count
                else:
                    probe.trusted_used = snapshot.signal_count
                    probe.enriched_used = snapshot.signal_count
                    probe.notes.append("WARNING: Snapshot summary missing, skipping sample validation")
            else:
                self._query_harvester(report, category_id, window)

            if self._demand_only:
                probe.notes.append("Demand-only mode: signal thresholds not enforced")
            else:
                if probe.trusted_used < self._min_trusted:
                    report.block(
                        BlockerCode.SIGNALS_NOT_TRUSTED,
                        f"Insufficient Trusted Signals ({probe.trusted_used} < {self._min_trusted})",
                        ["Run Signal Harvester", "Verify 'trusted' field in DB"],
                    )
                if probe.enriched_used < self._min_enriched:
                    report.block(
                        BlockerCode.SIGNALS_NOT_ENRICHED,
                        f"Insufficient Enriched Signals ({probe.enriched_used} < {self._min_enriched})",
                        ["Run Enrichment Pipeline"],
                    )
                if probe.schema_check.failures:
                    report.block(
                        BlockerCode.SIGNALS_SCHEMA_MISMATCH,
                        f"Signal Schema Mismatches Found: {len(probe.schema_check.failures)}",
                        ["Check categoryId", "Check lastSeenAt ISO format", "Check trusted boolean"],
                        {"failures": probe.schema_check.failures[:10]},
                    )

            if probe.month_window.in_window < self._stale_threshold and probe.mode != "CORPUS_SNAPSHOT":
                message = f"SIGNALS_STALE: Only {probe.month_window.in_window} signals in requested month window."
                probe.warnings.append(message)
                report.warnings.append(message)
        except Exception as e:
            logger.error("audit.signals.crashed", error=str(e))
            probe.notes.append(f"Critical Error: {e}")

    def _probe_report(self, report: IntegrityAuditReport, category_id: str, month: str) -> None:
        probe = report.probes.report
        probe.last_run_pointer.doc_path = paths.report_latest_doc(category_id, month)
        try:
            latest = ReportStore(self._store).get_latest(category_id, month)
            if latest.is_err():
                if isinstance(latest.error, DocumentNotFoundError):
                    probe.notes.append("No previous run found.")
                else:
                    probe.notes.append(f"Error checking report store: {latest.reason}")
                return

            lookup = latest.data
            probe.last_run_pointer.ok = True
            probe.last_run_pointer.run_id = lookup.report.run_id or "unknown"
            probe.last_run_pointer.source = lookup.source
            missing = missing_sections(lookup.report)
            probe.missing_sections = missing
            probe.output_shape_ok = not missing
            if missing:
                report.warnings.append(f"{BlockerCode.DEEPDIVE_OUTPUT_INCOMPLETE.value}: Missing {', '.join(missing)}")
            if not lookup.report.verdict:
                probe.notes.append("Legacy Output Detected (No Verdict)")
                report.warnings.append(f"{BlockerCode.DEEPDIVE_PROMPT_NOT_CONTRACT.value}: Output is legacy format.")
        except Exception as e:
            probe.notes.append(f"Error checking report store: {e}")

    def _probe_telemetry(self, report: IntegrityAuditReport, category_id: str, month: str) -> None:
        probe = report.probes.telemetry
        if self._telemetry is None:
            probe.notes.append("Telemetry bus not attached")
            return
        run_key = report_run_key(category_id, month)
        events = self._telemetry.history(run_key)
        probe.phase = self._telemetry.latest_phase(run_key).value
        probe.last_events = [f"{e.phase.value}: {e.message}" for e in events[:10]]
        if not events:
            probe.notes.append(f"No telemetry recorded for {run_key}")

    def _probe_store(self, report: IntegrityAuditReport, category_id: str) -> None:
        probe = report.probes.store
        path = paths.integrity_probe_doc(uuid.uuid4().hex)
        probe.path = path
        marker = {"categoryId": category_id, "ts": now_iso(self._clock)}
        written = False
        try:
            self._store.set(path, marker)
            written = True
            doc = self._store.get(path)
            if doc is None or doc.data.get("ts") != marker["ts"]:
                raise RuntimeError("Probe document did not read back")
            probe.ok = True
        except Exception as e:
            probe.notes.append(f"Round trip failed: {e}")
            report.block(
                BlockerCode.POINTER_WRITE_FAILED,
                f"Store round trip failed: {e}",
                ["Check store write permissions", "Check store connectivity"],
                {"path": path},
            )
        finally:
            if written:
                try:
                    self._store.delete(path)
                except Exception as e:
                    probe.ok = False
                    probe.notes.append(f"Cleanup failed: {e}")
                    logger.error("audit.store_cleanup_failed", path=path, error=str(e))
                    report.block(
                        BlockerCode.POINTER_WRITE_FAILED,
                        f"Store cleanup failed: {e}",
                        ["Delete the leftover probe document", "Check store delete permissions"],
                        {"path": path},
                    )

    # ------------------------------------------------------------------ #
    # Run
    # ------------------------------------------------------------------ #

    def run(self, category_id: str, month: str) -> IntegrityAuditReport:
        report = IntegrityAuditReport(
            ts=now_iso(self._clock),
            target=AuditTarget(category_id=category_id, month_key=month),
            env=AuditEnvironment(
                signals_collection=self._ctx.signals_collection,
                demand_only=self._demand_only,
                store=type(self._store).__name__,
            ),
        )
        report.probes.signals.collection = self._ctx.signals_collection
        report.probes.signals.min_trust_score = self._min_trust_score

        probes = (
            lambda: self._probe_demand(report, category_id, month),
            lambda: self._probe_keywords(report, category_id),
            lambda: self._probe_signals(report, category_id, month),
            lambda: self._probe_report(report, category_id, month),
            lambda: self._probe_telemetry(report, category_id, month),
            lambda: self._probe_store(report, category_id),
        )
        for probe in probes:
            try:
                probe()
            except Exception as e:
                logger.error("audit.probe.crashed", error=str(e))

        demand = report.probes.demand
        keywords = report.probes.keywords
        demand_ok = demand.ok and demand.metrics_present
        keywords_ok = keywords.ok and (keywords.rows or 0) > 0
        report.verdict = "GO" if demand_ok and keywords_ok and not report.signal_blockers else "NO_GO"

        logger.info(
            "audit.complete",
            category_id=category_id,
            month=month,
            verdict=report.verdict,
            blockers=[b.code.value for b in report.blockers],
        )
        return report


__all__ = ["CANONICAL_REMEDIATION", "IntegrityAuditor", "validate_signal_docs"]
