"""
Snapshot lifecycle states and the trust sets derived from them.

The certified and validated allow-lists are defined here exactly once.
Resolution, repair, the corpus pointer guard and the integrity auditor all
import these sets instead of re-listing lifecycle strings.

State machine::

    DRAFT ──> HYDRATED ──> VALIDATED[_LITE] ──> CERTIFIED[_LITE|_FULL]
                                                        │
                                                        ▼
                                                    POISONED   (terminal, retained)

STDLIB ONLY - NO PYDANTIC.
"""

from enum import Enum


class Lifecycle(str, Enum):
    """Trust state of a snapshot."""

    DRAFT = "DRAFT"
    HYDRATED = "HYDRATED"
    VALIDATED = "VALIDATED"
    VALIDATED_LITE = "VALIDATED_LITE"
    CERTIFIED = "CERTIFIED"
    CERTIFIED_LITE = "CERTIFIED_LITE"
    CERTIFIED_FULL = "CERTIFIED_FULL"
    POISONED = "POISONED"


class RowStatus(str, Enum):
    """Validation status of one row inside a snapshot."""

    UNVERIFIED = "UNVERIFIED"
    VALID = "VALID"
    LOW = "LOW"
    ZERO = "ZERO"
    ERROR = "ERROR"


CERTIFIED_SET: frozenset[str] = frozenset(
    {Lifecycle.CERTIFIED.value, Lifecycle.CERTIFIED_LITE.value, Lifecycle.CERTIFIED_FULL.value}
)

VALIDATED_SET: frozenset[str] = frozenset(
    {Lifecycle.VALIDATED.value, Lifecycle.VALIDATED_LITE.value, Lifecycle.HYDRATED.value}
)

# Lifecycles the keyword resolver accepts in its first scan pass.
TRUSTED_SCAN_SET: frozenset[str] = CERTIFIED_SET | {
    Lifecycle.VALIDATED.value,
    Lifecycle.VALIDATED_LITE.value,
}

LIFECYCLE_PRIORITY: dict[str, int] = {
    Lifecycle.CERTIFIED_FULL.value: 100,
    Lifecycle.CERTIFIED_LITE.value: 90,
    Lifecycle.CERTIFIED.value: 80,
    Lifecycle.VALIDATED.value: 70,
    Lifecycle.VALIDATED_LITE.value: 60,
    Lifecycle.HYDRATED.value: 50,
    Lifecycle.DRAFT.value: 40,
}


def lifecycle_value(lifecycle: "Lifecycle | str | None") -> str:
    if lifecycle is None:
        return ""
    return lifecycle.value if isinstance(lifecycle, Lifecycle) else str(lifecycle)


def is_certified(lifecycle: "Lifecycle | str | None") -> bool:
    return lifecycle_value(lifecycle) in CERTIFIED_SET


def is_validated(lifecycle: "Lifecycle | str | None") -> bool:
    return lifecycle_value(lifecycle) in VALIDATED_SET


def is_poisoned(lifecycle: "Lifecycle | str | None") -> bool:
    return lifecycle_value(lifecycle) == Lifecycle.POISONED.value


def priority(lifecycle: "Lifecycle | str | None") -> int:
    """Pointer priority; unknown and POISONED lifecycles rank 0."""
    return LIFECYCLE_PRIORITY.get(lifecycle_value(lifecycle), 0)


__all__ = [
    "Lifecycle",
    "RowStatus",
    "CERTIFIED_SET",
    "VALIDATED_SET",
    "TRUSTED_SCAN_SET",
    "LIFECYCLE_PRIORITY",
    "is_certified",
    "is_validated",
    "is_poisoned",
    "priority",
    "lifecycle_value",
]
