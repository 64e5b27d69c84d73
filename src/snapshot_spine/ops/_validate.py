"""Shared input checks for operation requests."""

from __future__ import annotations

import re

from snapshot_spine.ops.result import OperationResult, _Timer

_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def check_target(category_id: str, month: str | None, timer: _Timer, *, month_required: bool = True) -> OperationResult | None:
    """A ``VALIDATION_FAILED`` result for a bad category or month, else ``None``."""
    if not category_id:
        return OperationResult.fail("VALIDATION_FAILED", "category_id is required", elapsed_ms=timer.elapsed_ms)
    if month is None or month == "":
        if month_required:
            return OperationResult.fail("VALIDATION_FAILED", "month is required", elapsed_ms=timer.elapsed_ms)
        return None
    if not _MONTH_RE.match(month):
        return OperationResult.fail(
            "VALIDATION_FAILED",
            f"month must be YYYY-MM, got {month!r}",
            details={"month": month},
            elapsed_ms=timer.elapsed_ms,
        )
    return None
