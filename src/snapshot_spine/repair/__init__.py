"""Repair services for poisoned demand outputs and stale keyword snapshots."""

from snapshot_spine.repair.demand import (
    DemandSnapshotRepairService,
    RepairAction,
    RepairOutcome,
    is_poisoned_output,
)
from snapshot_spine.repair.snapshot import SnapshotRepairReport, SnapshotRepairService

__all__ = [
    "DemandSnapshotRepairService",
    "RepairAction",
    "RepairOutcome",
    "SnapshotRepairReport",
    "SnapshotRepairService",
    "is_poisoned_output",
]
