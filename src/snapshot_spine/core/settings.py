"""Environment-driven settings for snapshot-spine.

Every tunable the snapshot subsystem relies on (chunk size, batch ceiling,
metric format version, heartbeat cadence, signal thresholds, retry policy)
lives on one pydantic-settings model. Values come from ``SNAPSPINE_*``
environment variables or a ``.env`` file and are validated at startup.

Manifesto:
    Thresholds that gate a GO/NO_GO verdict must be visible and adjustable
    in one place, not scattered as literals across resolvers and auditors.

    - **Pydantic validation:** Type-checked at startup, not at first use
    - **Environment-driven:** ``SNAPSPINE_CHUNK_SIZE=200`` just works
    - **Sensible defaults:** Runs out of the box against an in-memory store

Examples:
    >>> settings = SnapshotSpineSettings(chunk_size=100, store_backend="memory")
    >>> settings.batch_limit
    450

Tags:
    settings, configuration, pydantic, environment, snapshot-spine
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from snapshot_spine.core.retry import ExponentialBackoff, RetryPolicy

DEMAND_OUTPUT_VERSION = "ABS_V3_ELIG_V1"


class SnapshotSpineSettings(BaseSettings):
    """Runtime configuration.

    Fields
    ──────
    store_backend        : ``memory`` or ``sqlite``
    sqlite_path          : Database file for the sqlite backend
    chunk_size           : Rows per chunk record
    batch_limit          : Writes per committed batch (below the 500 ceiling)
    heartbeat_interval   : Seconds between background run-doc refreshes
    stage_timeout        : Seconds a synthesis stage may run before TIMEOUT
    min_trusted_signals  : Audit blocker threshold (SIGNALS_NOT_TRUSTED)
    demand_only          : Skip signal threshold blockers in the auditor
    """

    model_config = SettingsConfigDict(
        env_prefix="SNAPSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Storage ──────────────────────────────────────────────────
    store_backend: Literal["memory", "sqlite"] = "sqlite"
    sqlite_path: Path = Field(
        default_factory=lambda: Path.home() / ".snapshot-spine" / "documents.db",
        description="Document database file for the sqlite backend",
    )
    enforce_indexes: bool = True
    country: str = "IN"
    language: str = "en"
    chunk_size: int = Field(default=400, ge=1)
    batch_limit: int = Field(default=450, ge=1, le=500)
    signals_collection: str = "signal_harvester_v2"

    # ── Retry ────────────────────────────────────────────────────
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=0.2, ge=0)
    retry_max_delay: float = Field(default=5.0, ge=0)

    # ── Demand ───────────────────────────────────────────────────
    demand_output_version: str = DEMAND_OUTPUT_VERSION
    demand_scan_limit: int = 30
    keyword_scan_limit: int = 50

    # ── Volume cache ─────────────────────────────────────────────
    volume_ttl_days: int = 30
    volume_location_code: int = 2356
    fanout_batch_size: int = Field(default=20, ge=1)

    # ── Pipeline ─────────────────────────────────────────────────
    heartbeat_interval: float = Field(default=3.0, gt=0)
    stage_timeout: float = Field(default=180.0, gt=0)
    report_repair_attempts: int = Field(default=1, ge=0)

    # ── Signals ──────────────────────────────────────────────────
    min_trusted_signals: int = 20
    min_enriched_signals: int = 5
    stale_signal_threshold: int = 10
    min_trust_score: int = 70
    signal_limit: int = 90
    platform_cap_ratio: float = Field(default=0.4, gt=0, le=1)
    signal_chunk_size: int = 15
    sparse_window_threshold: int = 20
    fallback_window_days: int = 90
    demand_only: bool = False

    @model_validator(mode="after")
    def _check_retry_bounds(self) -> SnapshotSpineSettings:
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            ExponentialBackoff(
                max_retries=self.retry_max_attempts,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
            )
        )


@lru_cache(maxsize=1)
def get_settings() -> SnapshotSpineSettings:
    """Process-wide settings instance."""
    return SnapshotSpineSettings()


__all__ = ["DEMAND_OUTPUT_VERSION", "SnapshotSpineSettings", "get_settings"]
