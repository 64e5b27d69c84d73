"""
Pydantic models for documents parsed at the storage boundary.

Raw store payloads are validated into these models exactly once, when a
store method reads them; everything above the stores works with typed
objects. Unknown fields are kept (``extra="allow"``) so a read-modify-write
never drops data written by a newer producer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from snapshot_spine.core.lifecycle import Lifecycle, RowStatus


@dataclass(frozen=True, slots=True)
class SnapshotKey:
    """Identity of a keyword snapshot series."""

    category_id: str
    country: str = "IN"
    language: str = "en"


class SnapshotAnchor(BaseModel):
    model_config = ConfigDict(extra="allow")

    anchor_id: str
    order: int = 0
    source: str = "registry"


class SnapshotTargets(BaseModel):
    model_config = ConfigDict(extra="allow")

    per_anchor: int = 0
    validation_min_vol: int = 0


class SnapshotStats(BaseModel):
    """Row counts; ``valid + zero + error <= keywords_total`` always holds."""

    model_config = ConfigDict(extra="allow")

    anchors_total: int = 0
    keywords_total: int = 0
    validated_total: int = 0
    valid_total: int = 0
    zero_total: int = 0
    low_total: int = 0
    error_total: int = 0
    per_anchor_valid_counts: dict[str, int] = Field(default_factory=dict)
    per_anchor_total_counts: dict[str, int] = Field(default_factory=dict)

    @property
    def yield_rate(self) -> float:
        return self.valid_total / self.keywords_total if self.keywords_total else 0.0


class SnapshotIntegrity(BaseModel):
    model_config = ConfigDict(extra="allow")

    sha256: str = ""
    chunk_count: int = 0
    chunk_size: int = 400
    last_published_iso: str | None = None


class KeywordRow(BaseModel):
    """One keyword line item inside a snapshot."""

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    keyword_id: str
    keyword_text: str
    anchor_id: str
    intent_bucket: str = "Discovery"
    status: RowStatus = RowStatus.UNVERIFIED
    active: bool = True
    volume: float | None = None
    cpc: float | None = None
    competition: float | None = None
    validation_tier: str | None = None
    language_code: str = "en"
    country_code: str = "IN"
    category_id: str = ""
    created_at_iso: str = ""
    validated_at_iso: str | None = None


class CategorySnapshot(BaseModel):
    """Metadata document for one keyword snapshot."""

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    snapshot_id: str
    category_id: str
    country_code: str = "IN"
    language_code: str = "en"
    lifecycle: Lifecycle = Lifecycle.DRAFT
    created_at_iso: str
    updated_at_iso: str
    anchors: list[SnapshotAnchor] = Field(default_factory=list)
    targets: SnapshotTargets = Field(default_factory=SnapshotTargets)
    stats: SnapshotStats = Field(default_factory=SnapshotStats)
    integrity: SnapshotIntegrity = Field(default_factory=SnapshotIntegrity)
    demand_index_mn: float | None = None
    poisoned: bool = False

    @property
    def key(self) -> SnapshotKey:
        return SnapshotKey(self.category_id, self.country_code, self.language_code)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ChunkRecord(BaseModel):
    """One persisted chunk of rows."""

    model_config = ConfigDict(extra="allow")

    index: int = Field(..., ge=0)
    row_count: int = Field(..., ge=0)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    sha256: str
    created_at_iso: str = ""


__all__ = [
    "SnapshotKey",
    "SnapshotAnchor",
    "SnapshotTargets",
    "SnapshotStats",
    "SnapshotIntegrity",
    "KeywordRow",
    "CategorySnapshot",
    "ChunkRecord",
]
