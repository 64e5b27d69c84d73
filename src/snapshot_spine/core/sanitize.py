"""Recursive payload sanitization applied before any document write or hash."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any

from snapshot_spine.core.timestamps import to_iso


def sanitize(value: Any) -> Any:
    """
    Return a JSON-safe copy of ``value`` with every ``None`` removed.

    Mapping entries whose value is ``None`` are dropped, ``None`` list items
    are dropped, tuples and sets become lists, datetimes become fixed-width
    ISO strings and enums collapse to their values. Pydantic models are
    dumped first. The input is never mutated.
    """
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="python", by_alias=True)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): sanitize(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
        return [sanitize(v) for v in items if v is not None]
    return value


__all__ = ["sanitize"]
