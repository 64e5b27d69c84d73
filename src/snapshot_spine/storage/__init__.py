"""Document store contract, backends and path layout."""

from __future__ import annotations

from snapshot_spine.core.settings import SnapshotSpineSettings
from snapshot_spine.storage.base import BaseDocumentStore
from snapshot_spine.storage.indexes import default_indexes
from snapshot_spine.storage.memory import MemoryDocumentStore
from snapshot_spine.storage.protocols import (
    MAX_BATCH_OPERATIONS,
    CompositeIndex,
    Document,
    DocumentStore,
    FieldFilter,
    OrderBy,
    Query,
    WriteBatch,
)
from snapshot_spine.storage.sqlite import SqliteDocumentStore


def create_store(settings: SnapshotSpineSettings) -> BaseDocumentStore:
    """Build the configured backend with the default indexes and retry policy."""
    indexes = default_indexes(settings.signals_collection)
    retry = settings.retry_policy()
    if settings.store_backend == "memory":
        return MemoryDocumentStore(indexes=indexes, enforce_indexes=settings.enforce_indexes, retry=retry)
    return SqliteDocumentStore(
        settings.sqlite_path,
        indexes=indexes,
        enforce_indexes=settings.enforce_indexes,
        retry=retry,
    )


__all__ = [
    "MAX_BATCH_OPERATIONS",
    "BaseDocumentStore",
    "CompositeIndex",
    "Document",
    "DocumentStore",
    "FieldFilter",
    "MemoryDocumentStore",
    "OrderBy",
    "Query",
    "SqliteDocumentStore",
    "WriteBatch",
    "create_store",
    "default_indexes",
]
