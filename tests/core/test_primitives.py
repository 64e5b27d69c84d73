"""
Tests for lifecycle, sanitize, timestamps and settings.

Tests cover:
- Lifecycle trust sets and pointer priority
- Recursive None stripping and JSON-safe conversion
- Fixed-width ISO rendering, month windows, monotonic ids
- Settings defaults, env overrides and validation
"""

from datetime import UTC, datetime, timedelta
from enum import Enum

import pytest
from pydantic import ValidationError

from snapshot_spine.core.lifecycle import (
    CERTIFIED_SET,
    TRUSTED_SCAN_SET,
    VALIDATED_SET,
    Lifecycle,
    is_certified,
    is_poisoned,
    is_validated,
    priority,
)
from snapshot_spine.core.sanitize import sanitize
from snapshot_spine.core.settings import SnapshotSpineSettings
from snapshot_spine.core.timestamps import (
    MonotonicMillis,
    days_ago_iso,
    epoch_ms,
    from_iso,
    iso_from_epoch_ms,
    month_key,
    month_window,
    to_iso,
)


class TestLifecycle:
    """Tests for lifecycle sets and priority."""

    def test_sets(self):
        """Test membership of the trust sets."""
        assert CERTIFIED_SET == {"CERTIFIED", "CERTIFIED_LITE", "CERTIFIED_FULL"}
        assert "HYDRATED" in VALIDATED_SET
        assert "HYDRATED" not in TRUSTED_SCAN_SET
        assert "VALIDATED_LITE" in TRUSTED_SCAN_SET

    def test_predicates_accept_enum_and_string(self):
        """Test predicates work on enum members and raw strings."""
        assert is_certified(Lifecycle.CERTIFIED_FULL)
        assert is_certified("CERTIFIED_LITE")
        assert is_validated("VALIDATED")
        assert is_poisoned(Lifecycle.POISONED)
        assert not is_certified(None)

    def test_priority_order(self):
        """Test certified outranks validated outranks draft; poisoned is zero."""
        ordered = ["CERTIFIED_FULL", "CERTIFIED_LITE", "CERTIFIED", "VALIDATED", "VALIDATED_LITE", "HYDRATED", "DRAFT"]
        scores = [priority(v) for v in ordered]
        assert scores == sorted(scores, reverse=True)
        assert priority(Lifecycle.POISONED) == 0
        assert priority("SOMETHING_ELSE") == 0


class Color(Enum):
    RED = "red"


class TestSanitize:
    """Tests for sanitize."""

    def test_drops_nones_recursively(self):
        """Test None values are removed from maps and lists at any depth."""
        payload = {"a": None, "b": {"c": None, "d": 1}, "e": [1, None, {"f": None}]}
        assert sanitize(payload) == {"b": {"d": 1}, "e": [1, {}]}

    def test_converts_types(self):
        """Test sets, tuples, datetimes and enums become JSON-safe."""
        payload = {
            "tags": {"b", "a"},
            "pair": (1, 2),
            "at": datetime(2025, 12, 1, 8, 30, tzinfo=UTC),
            "color": Color.RED,
        }
        assert sanitize(payload) == {
            "tags": ["a", "b"],
            "pair": [1, 2],
            "at": "2025-12-01T08:30:00.000Z",
            "color": "red",
        }

    def test_input_not_mutated(self):
        """Test the original structure is left intact."""
        payload = {"a": None, "b": [None]}
        sanitize(payload)
        assert payload == {"a": None, "b": [None]}


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_to_iso_fixed_width(self):
        """Test ISO rendering always includes milliseconds and Z."""
        assert to_iso(datetime(2025, 1, 2, 3, 4, 5, 678900, tzinfo=UTC)) == "2025-01-02T03:04:05.678Z"

    def test_naive_treated_as_utc(self):
        """Test naive datetimes are assumed to be UTC."""
        assert to_iso(datetime(2025, 1, 2)) == "2025-01-02T00:00:00.000Z"

    def test_from_iso(self):
        """Test parsing Z-suffixed strings and rejecting junk."""
        assert from_iso("2025-12-01T00:00:00.000Z") == datetime(2025, 12, 1, tzinfo=UTC)
        assert from_iso("not a date") is None
        assert from_iso(None) is None

    def test_epoch_round_trip(self):
        """Test epoch milliseconds map back to the same ISO string."""
        dt = datetime(2025, 12, 15, 12, tzinfo=UTC)
        assert iso_from_epoch_ms(epoch_ms(dt)) == "2025-12-15T12:00:00.000Z"

    def test_month_window_rolls_year(self):
        """Test December's window ends on January 1st of the next year."""
        assert month_window("2025-12") == ("2025-12-01T00:00:00.000Z", "2026-01-01T00:00:00.000Z")
        assert month_key(datetime(2025, 3, 31, tzinfo=UTC)) == "2025-03"

    def test_days_ago(self):
        """Test days_ago_iso subtracts from the injected clock."""
        now = datetime(2025, 12, 15, tzinfo=UTC)
        assert days_ago_iso(90, lambda: now) == to_iso(now - timedelta(days=90))

    def test_monotonic_millis_strictly_increases(self):
        """Test a frozen clock still yields increasing stamps."""
        stamps = MonotonicMillis(lambda: datetime(2025, 12, 15, tzinfo=UTC))
        first, second, third = stamps.next(), stamps.next(), stamps.next()
        assert first < second < third
        assert second == first + 1


class TestSettings:
    """Tests for SnapshotSpineSettings."""

    def test_defaults(self):
        """Test defaults match the deployed configuration."""
        settings = SnapshotSpineSettings()
        assert settings.chunk_size == 400
        assert settings.batch_limit == 450
        assert settings.signals_collection == "signal_harvester_v2"
        assert settings.demand_output_version == "ABS_V3_ELIG_V1"

    def test_env_override(self, monkeypatch):
        """Test SNAPSPINE_ prefixed env vars override defaults."""
        monkeypatch.setenv("SNAPSPINE_CHUNK_SIZE", "200")
        monkeypatch.setenv("SNAPSPINE_STORE_BACKEND", "memory")
        settings = SnapshotSpineSettings()
        assert settings.chunk_size == 200
        assert settings.store_backend == "memory"

    def test_batch_limit_bounded(self):
        """Test batch_limit cannot exceed the backend ceiling."""
        with pytest.raises(ValidationError):
            SnapshotSpineSettings(batch_limit=501)

    def test_retry_bounds(self):
        """Test max delay must not be below base delay."""
        with pytest.raises(ValidationError):
            SnapshotSpineSettings(retry_base_delay=2.0, retry_max_delay=1.0)

    def test_retry_policy(self):
        """Test the retry policy reflects configured attempts."""
        policy = SnapshotSpineSettings(retry_max_attempts=5).retry_policy()
        assert policy.strategy.max_retries == 5
