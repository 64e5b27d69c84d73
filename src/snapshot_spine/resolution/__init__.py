"""Resolution engine: one deterministic, explainable answer per (category, month, domain)."""

from snapshot_spine.resolution.context import ResolutionContext
from snapshot_spine.resolution.demand import DemandSnapshotResolver, ResolvedDemand, is_poisoned_snapshot
from snapshot_spine.resolution.keywords import KeywordSnapshotResolver, ResolvedKeywordSnapshot, is_real_snapshot
from snapshot_spine.resolution.signals import ResolvedSignals, SignalSnapshotResolver
from snapshot_spine.snapshots.demand_output import is_valid_certified_snapshot

__all__ = [
    "DemandSnapshotResolver",
    "KeywordSnapshotResolver",
    "ResolutionContext",
    "ResolvedDemand",
    "ResolvedKeywordSnapshot",
    "ResolvedSignals",
    "SignalSnapshotResolver",
    "is_poisoned_snapshot",
    "is_real_snapshot",
    "is_valid_certified_snapshot",
]
