"""
Structured error types for snapshot-spine.

Every failure the snapshot subsystem can produce maps onto one of a small
number of classes. Callers never have to parse message strings to tell a
"not found" apart from a "missing index" or a "poisoned" artifact: the type
and the ``category`` say it, and ``to_dict()`` serializes it for the run
document, the audit report, or a structured log line.

Manifesto:
    - **Distinct failure classes:** Not-found, missing-index, poisoned-data,
      transient store failure, and stage failure are separate types
    - **Explicit retry semantics:** Each error knows if it can be retried
    - **Rich context:** Category, month, snapshot id, stage and path travel
      with the error
    - **Error chaining:** The original backend exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       SpineError                                 │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError        StorageError          ValidationError     │
        │  (retryable=True)      (STORAGE)             (VALIDATION)        │
        │       │                     │                      │             │
        │  StoreUnavailable      DocumentNotFound      PoisonedSnapshot    │
        │                        MissingIndexError                         │
        │                        PermissionDenied                          │
        │                        BatchLimitError                           │
        │                        ChunkIntegrityError                       │
        │                                                                  │
        │  ConfigError           PipelineError                             │
        │  (CONFIG)              (PIPELINE)                                │
        │                             │                                    │
        │                        StageTimeoutError                         │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> err = MissingIndexError.for_fields(
    ...     "signal_harvester_v2",
    ...     [("categoryId", "ASC"), ("trusted", "ASC"), ("lastSeenAt", "DESC")],
    ... )
    >>> "requires an index" in err.message
    True
    >>> classify_query_error(err).kind
    <QueryErrorKind.INDEX_ERROR: 'INDEX_ERROR'>

Guardrails:
    ❌ DON'T: Return an empty success when an artifact is absent
    ✅ DO: Raise (or return Err with) DocumentNotFoundError

    ❌ DON'T: Collapse index failures into a generic query error
    ✅ DO: Raise MissingIndexError so callers can remediate it

Tags:
    errors, exceptions, retry, missing-index, poisoned, snapshot-spine
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    High-level error categories used for routing and retry heuristics.

    Infrastructure categories (NETWORK, DATABASE, STORAGE) are usually
    transient; INDEX and INTEGRITY are structural and need an operator.
    """

    NETWORK = "NETWORK"
    DATABASE = "DATABASE"
    STORAGE = "STORAGE"
    INDEX = "INDEX"
    PERMISSION = "PERMISSION"
    NOT_FOUND = "NOT_FOUND"
    INTEGRITY = "INTEGRITY"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    PIPELINE = "PIPELINE"
    TIMEOUT = "TIMEOUT"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Typed fields cover the keys the snapshot subsystem always knows about;
    anything else goes into ``metadata``. ``to_dict()`` only emits fields
    that are set.

    Attributes:
        category_id: Category the failing operation targeted
        month: Month key (``YYYY-MM``) if applicable
        snapshot_id: Snapshot or document id involved
        stage: Pipeline stage name (``S1`` .. ``S11``)
        run_id: Pipeline run id
        collection: Collection or collection group queried
        path: Full document path
        metadata: Additional key-value pairs
    """

    category_id: str | None = None
    month: str | None = None
    snapshot_id: str | None = None
    stage: str | None = None
    run_id: str | None = None
    collection: str | None = None
    path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ("category_id", "month", "snapshot_id", "stage", "run_id", "collection", "path"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SpineError(Exception):
    """
    Base exception for all snapshot-spine errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override either per instance.

    Examples:
        >>> err = SpineError("boom").with_context(category_id="shampoo", month="2025-12")
        >>> err.context.month
        '2025-12'
        >>> err.to_dict()["category"]
        'INTERNAL'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SpineError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key == "metadata":
                self.context.metadata.update(value)
            elif hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS
# =============================================================================


class TransientError(SpineError):
    """Temporary failure; safe to retry with backoff."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class StoreUnavailableError(TransientError):
    """The document store could not be reached or timed out."""

    default_category = ErrorCategory.DATABASE


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StorageError(SpineError):
    """Non-transient document store failure."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


class DocumentNotFoundError(StorageError):
    """The requested artifact genuinely does not exist."""

    default_category = ErrorCategory.NOT_FOUND


class MissingIndexError(StorageError):
    """
    A query needs a composite index that was never provisioned.

    The message always contains ``"requires an index"`` and a console-style
    link naming the required fields, mirroring what managed document stores
    report, so :func:`classify_query_error` works on both native and
    re-raised errors.
    """

    default_category = ErrorCategory.INDEX

    def __init__(
        self,
        message: str,
        *,
        collection: str | None = None,
        fields: list[tuple[str, str]] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.collection = collection
        self.fields = list(fields or [])
        if collection:
            self.context.collection = collection

    @classmethod
    def for_fields(cls, collection: str, fields: list[tuple[str, str]]) -> MissingIndexError:
        spec = ",".join(f"{name}:{direction}" for name, direction in fields)
        link = f"https://console.snapshot-spine.local/indexes?create_composite={collection}({spec})"
        message = f"The query requires an index. You can create it here: {link}"
        return cls(message, collection=collection, fields=fields)

    @property
    def remediation(self) -> str:
        described = ", ".join(f"{name} {direction}" for name, direction in self.fields)
        return f"Create Composite Index ({described})"


class PermissionDeniedError(StorageError):
    """Missing or insufficient permissions."""

    default_category = ErrorCategory.PERMISSION


class BatchLimitError(StorageError):
    """A write batch exceeded the backend operation ceiling."""


class ChunkIntegrityError(StorageError):
    """Chunk records are missing, non-contiguous, or fail hash verification."""

    default_category = ErrorCategory.INTEGRITY


# =============================================================================
# VALIDATION / TRUST ERRORS
# =============================================================================


class ValidationError(SpineError):
    """A document or payload does not satisfy its contract."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class PoisonedSnapshotError(ValidationError):
    """A certified artifact holds a degenerate headline measure."""

    default_category = ErrorCategory.INTEGRITY


class ConfigError(SpineError):
    """Invalid or missing configuration."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# PIPELINE ERRORS
# =============================================================================


class PipelineError(SpineError):
    """A pipeline stage failed; the run halts."""

    default_category = ErrorCategory.PIPELINE
    default_retryable = False


class StageTimeoutError(PipelineError):
    """A long-running stage lost its race against the stage timeout."""

    default_category = ErrorCategory.TIMEOUT


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, SpineError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, SpineError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.VALIDATION
    if isinstance(error, KeyError):
        return ErrorCategory.NOT_FOUND
    return ErrorCategory.UNKNOWN


class QueryErrorKind(str, Enum):
    """Classification of a failed query."""

    INDEX_ERROR = "INDEX_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True, slots=True)
class QueryErrorInfo:
    """Result of :func:`classify_query_error`."""

    kind: QueryErrorKind
    message: str
    url: str = ""


_LINK_RE = re.compile(r"https://\S+")


def classify_query_error(error: BaseException) -> QueryErrorInfo:
    """Classify a query failure by type first, then by message text."""
    message = getattr(error, "message", None) or str(error)
    if isinstance(error, MissingIndexError) or "requires an index" in message:
        match = _LINK_RE.search(message)
        return QueryErrorInfo(QueryErrorKind.INDEX_ERROR, message, match.group(0) if match else "")
    if (
        isinstance(error, PermissionDeniedError)
        or "permission-denied" in message
        or "Missing or insufficient permissions" in message
    ):
        return QueryErrorInfo(QueryErrorKind.PERMISSION_DENIED, message)
    return QueryErrorInfo(QueryErrorKind.UNKNOWN, message)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SpineError",
    "TransientError",
    "StoreUnavailableError",
    "StorageError",
    "DocumentNotFoundError",
    "MissingIndexError",
    "PermissionDeniedError",
    "BatchLimitError",
    "ChunkIntegrityError",
    "ValidationError",
    "PoisonedSnapshotError",
    "ConfigError",
    "PipelineError",
    "StageTimeoutError",
    "is_retryable",
    "categorize_error",
    "QueryErrorKind",
    "QueryErrorInfo",
    "classify_query_error",
]
