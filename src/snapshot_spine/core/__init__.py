"""Snapshot Spine Core -- primitives shared by every snapshot domain.

Architecture::

    Layer 1 -- Type System & Errors
        errors.py          Structured error hierarchy (SpineError, MissingIndexError)
        result.py          Ok / Err envelope and guard() for store boundaries
        lifecycle.py       Lifecycle enum + CERTIFIED_SET / VALIDATED_SET (defined once)
        timestamps.py      UTC helpers, month windows, monotonic id stamps

    Layer 2 -- Determinism
        hashing.py         Keyword normalization + fingerprints + drift check
        sanitize.py        Null-dropping payload sanitizer used before writes

    Layer 3 -- Cross-Cutting Concerns
        logging.py         Structured logging (structlog)
        settings.py        SnapshotSpineSettings (pydantic-settings)
        retry.py           RetryPolicy injected into every store client
        cache.py           InMemoryCache read-through layer
        protocols.py       Collaborator protocols (demand runner, report synthesizer, ...)
"""

from snapshot_spine.core.errors import (
    BatchLimitError,
    ChunkIntegrityError,
    DocumentNotFoundError,
    ErrorCategory,
    ErrorContext,
    MissingIndexError,
    PipelineError,
    PoisonedSnapshotError,
    SpineError,
    StageTimeoutError,
    StorageError,
    TransientError,
    ValidationError,
    classify_query_error,
)
from snapshot_spine.core.lifecycle import CERTIFIED_SET, VALIDATED_SET, Lifecycle, RowStatus
from snapshot_spine.core.result import Err, Ok, Result, guard

__all__ = [
    "BatchLimitError",
    "ChunkIntegrityError",
    "DocumentNotFoundError",
    "ErrorCategory",
    "ErrorContext",
    "MissingIndexError",
    "PipelineError",
    "PoisonedSnapshotError",
    "SpineError",
    "StageTimeoutError",
    "StorageError",
    "TransientError",
    "ValidationError",
    "classify_query_error",
    "CERTIFIED_SET",
    "VALIDATED_SET",
    "Lifecycle",
    "RowStatus",
    "Err",
    "Ok",
    "Result",
    "guard",
]
