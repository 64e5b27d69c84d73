"""
Integrity audit report contract.

Serialized with camelCase aliases so the document matches what dashboards
and automation already read (``probes.signals.requiredIndexOk``,
``blockers[].remediation``).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AuditModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class BlockerCode(str, Enum):
    DEMAND_MISSING = "DEMAND_MISSING"
    KEYWORDS_MISSING = "KEYWORDS_MISSING"
    SIGNALS_MISSING = "SIGNALS_MISSING"
    SIGNALS_INDEX_MISSING = "SIGNALS_INDEX_MISSING"
    SIGNALS_SCHEMA_MISMATCH = "SIGNALS_SCHEMA_MISMATCH"
    SIGNALS_STALE = "SIGNALS_STALE"
    SIGNALS_NOT_TRUSTED = "SIGNALS_NOT_TRUSTED"
    SIGNALS_NOT_ENRICHED = "SIGNALS_NOT_ENRICHED"
    DEEPDIVE_PROMPT_NOT_CONTRACT = "DEEPDIVE_PROMPT_NOT_CONTRACT"
    DEEPDIVE_OUTPUT_INCOMPLETE = "DEEPDIVE_OUTPUT_INCOMPLETE"
    POINTER_WRITE_FAILED = "POINTER_WRITE_FAILED"
    MODEL_TIMEOUT_RISK = "MODEL_TIMEOUT_RISK"

    @property
    def is_signal(self) -> bool:
        return self.value.startswith("SIGNALS_")


class IntegrityBlocker(AuditModel):
    """A machine-readable failure with the steps that clear it."""

    code: BlockerCode
    message: str
    remediation: list[str] = Field(default_factory=list)
    evidence: dict[str, Any] | None = None


class DemandProbe(AuditModel):
    ok: bool = False
    snapshot_id: str | None = None
    mode: str | None = None
    metrics_present: bool = False
    demand_index_mn: float | None = None
    notes: list[str] = Field(default_factory=list)


class KeywordsProbe(AuditModel):
    ok: bool = False
    snapshot_id: str | None = None
    source: str | None = None
    rows: int | None = None
    anchors: int | None = None
    notes: list[str] = Field(default_factory=list)


class MonthWindow(AuditModel):
    start: str | None = Field(None, alias="from")
    end: str | None = Field(None, alias="to")
    in_window: int = 0


class Freshness(AuditModel):
    uses_last_seen_at: bool = False
    oldest_used_iso: str | None = None
    newest_used_iso: str | None = None


class SchemaCheck(AuditModel):
    category_id_ok: bool = False
    trusted_ok: bool = False
    last_seen_at_ok: bool = False
    enrichment_ok: bool = False
    platform_ok: bool = False
    failures: list[str] = Field(default_factory=list)


class SignalsProbe(AuditModel):
    ok: bool = False
    mode: Literal["CORPUS_SNAPSHOT", "HARVESTER", "DEMAND_ONLY"] = "HARVESTER"
    collection: str = ""
    required_index_ok: bool = False
    index_error: str | None = None
    query_plan: list[str] = Field(default_factory=list)
    sampled: int = 0
    used: int = 0
    trusted_used: int = 0
    enriched_used: int = 0
    platforms: dict[str, int] = Field(default_factory=dict)
    min_trust_score: float = 70
    month_window: MonthWindow = Field(default_factory=MonthWindow)
    freshness: Freshness = Field(default_factory=Freshness)
    schema_check: SchemaCheck = Field(default_factory=SchemaCheck)
    notes: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class PointerProbe(AuditModel):
    ok: bool = False
    doc_path: str = ""
    run_id: str | None = None
    source: str | None = None


class ReportProbe(AuditModel):
    last_run_pointer: PointerProbe = Field(default_factory=PointerProbe)
    output_shape_ok: bool = False
    missing_sections: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)


class TelemetryProbe(AuditModel):
    phase: str = "IDLE"
    last_events: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)


class StoreProbe(AuditModel):
    ok: bool = False
    path: str | None = None
    notes: list[str] = Field(default_factory=list)


class AuditProbes(AuditModel):
    demand: DemandProbe = Field(default_factory=DemandProbe)
    keywords: KeywordsProbe = Field(default_factory=KeywordsProbe)
    signals: SignalsProbe = Field(default_factory=SignalsProbe)
    report: ReportProbe = Field(default_factory=ReportProbe)
    telemetry: TelemetryProbe = Field(default_factory=TelemetryProbe)
    store: StoreProbe = Field(default_factory=StoreProbe)


class AuditTarget(AuditModel):
    category_id: str
    month_key: str


class AuditEnvironment(AuditModel):
    signals_collection: str
    demand_only: bool = False
    store: str = "unknown"


class IntegrityAuditReport(AuditModel):
    ts: str
    target: AuditTarget
    env: AuditEnvironment
    probes: AuditProbes = Field(default_factory=AuditProbes)
    verdict: Literal["GO", "NO_GO"] = "NO_GO"
    blockers: list[IntegrityBlocker] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    def block(
        self,
        code: BlockerCode,
        message: str,
        remediation: list[str],
        evidence: dict[str, Any] | None = None,
    ) -> IntegrityBlocker:
        blocker = IntegrityBlocker(code=code, message=message, remediation=remediation, evidence=evidence)
        self.blockers.append(blocker)
        return blocker

    def has_blocker(self, code: BlockerCode) -> bool:
        return any(b.code == code for b in self.blockers)

    @property
    def signal_blockers(self) -> list[IntegrityBlocker]:
        return [b for b in self.blockers if b.code.is_signal]


__all__ = [
    "AuditEnvironment",
    "AuditProbes",
    "AuditTarget",
    "BlockerCode",
    "DemandProbe",
    "Freshness",
    "IntegrityAuditReport",
    "IntegrityBlocker",
    "KeywordsProbe",
    "MonthWindow",
    "PointerProbe",
    "ReportProbe",
    "SchemaCheck",
    "SignalsProbe",
    "StoreProbe",
    "TelemetryProbe",
]
