"""
Document store contract (SYNC-ONLY).

The snapshot subsystem talks to its bulk document store through the narrow
protocol defined here: get/set by path, ordered and filtered queries with a
limit, collection-group queries, and bounded write batches. Backends
implement it; nothing above ``snapshot_spine.storage`` imports a backend
directly.

Manifesto:
    The store is an external collaborator with weaker guarantees than a
    relational database. The contract says so explicitly:

    - **No multi-batch atomicity:** A ``WriteBatch`` commits atomically, but
      nothing spans two batches
    - **Bounded batches:** At most ``MAX_BATCH_OPERATIONS`` writes per batch
    - **Distinguishable index failures:** A composite query without a
      provisioned index raises ``MissingIndexError``, never returns nothing
    - **Idempotent upserts:** ``set`` with a deterministic path converges

Architecture:
    ::

        Path model (alternating collection / document segments):

            mci_category_snapshots/IN/en/shampoo/snapshots/snap_1700000000000_draft
            └────────── collection path ──────────┘         └────── doc id ──────┘
                                             └ group ┘

        DocumentStore (Protocol)
        ├── get(path)            → Document | None
        ├── set(path, data, merge=False)
        ├── update(path, data)   → DocumentNotFoundError if absent
        ├── delete(path)
        ├── query(Query)         → list[Document]
        ├── list_ids(collection) → list[str]
        └── batch()              → WriteBatch (set / delete / commit)

Examples:
    >>> q = Query(
    ...     "signal_harvester_v2",
    ...     filters=[FieldFilter("categoryId", "==", "shampoo"), FieldFilter("trusted", "==", True)],
    ...     order_by=[OrderBy("lastSeenAt", descending=True)],
    ...     limit=90,
    ... )
    >>> [name for name, _ in q.index_fields()]
    ['categoryId', 'trusted', 'lastSeenAt']

Tags:
    storage, protocol, document-store, query, composite-index, snapshot-spine
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

MAX_BATCH_OPERATIONS = 500

FilterOp = Literal["==", "!=", "<", "<=", ">", ">=", "in"]
_FILTER_OPS = frozenset({"==", "!=", "<", "<=", ">", ">=", "in"})


@dataclass(frozen=True, slots=True)
class Document:
    """One stored document. ``data`` is a detached copy."""

    id: str
    path: str
    data: dict[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


@dataclass(frozen=True, slots=True)
class FieldFilter:
    field: str
    op: FilterOp
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _FILTER_OPS:
            raise ValueError(f"Unsupported filter operator: {self.op!r}")


@dataclass(frozen=True, slots=True)
class OrderBy:
    field: str
    descending: bool = False

    @property
    def direction(self) -> str:
        return "DESC" if self.descending else "ASC"


@dataclass(frozen=True, slots=True)
class Query:
    """
    A filtered, ordered, limited read over one collection or collection group.

    ``collection`` is a full collection path, or a bare collection name when
    ``collection_group`` is True.
    """

    collection: str
    filters: list[FieldFilter] = field(default_factory=list)
    order_by: list[OrderBy] = field(default_factory=list)
    limit: int | None = None
    collection_group: bool = False

    def index_fields(self) -> list[tuple[str, str]]:
        """
        Fields a composite index would need for this query, in order.

        Filter fields come first (ascending), then order fields with their
        direction. A field that is both filtered and ordered appears once,
        with the order direction.
        """
        order_fields = {o.field: o.direction for o in self.order_by}
        fields: list[tuple[str, str]] = []
        seen: set[str] = set()
        for f in self.filters:
            if f.field in seen or f.field in order_fields:
                continue
            seen.add(f.field)
            fields.append((f.field, "ASC"))
        for o in self.order_by:
            if o.field in seen:
                continue
            seen.add(o.field)
            fields.append((o.field, o.direction))
        return fields

    def needs_composite_index(self) -> bool:
        return len(self.index_fields()) >= 2


@dataclass(frozen=True, slots=True)
class CompositeIndex:
    """A provisioned composite index over ``collection`` (path or group name)."""

    collection: str
    fields: tuple[tuple[str, str], ...]
    collection_group: bool = False

    def serves(self, query: Query) -> bool:
        if self.collection_group != query.collection_group:
            return False
        if self.collection != _index_scope(query):
            return False
        return set(self.fields) == set(query.index_fields())


def _index_scope(query: Query) -> str:
    """Indexes are declared per collection name, not per full path."""
    if query.collection_group:
        return query.collection
    return query.collection.rsplit("/", 1)[-1]


# =============================================================================
# PATHS
# =============================================================================


def split_path(path: str) -> tuple[str, str]:
    """Split a document path into ``(collection_path, doc_id)``."""
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"Not a document path (needs an even number of segments): {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def collection_name(collection_path: str) -> str:
    return collection_path.rstrip("/").rsplit("/", 1)[-1]


def join_path(*segments: str) -> str:
    return "/".join(s.strip("/") for s in segments if s)


# =============================================================================
# PROTOCOLS
# =============================================================================


@runtime_checkable
class WriteBatch(Protocol):
    """Up to ``MAX_BATCH_OPERATIONS`` writes committed together."""

    def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None: ...

    def delete(self, path: str) -> None: ...

    def commit(self) -> None: ...

    def __len__(self) -> int: ...


@runtime_checkable
class DocumentStore(Protocol):
    """Abstract SYNCHRONOUS document store."""

    def get(self, path: str) -> Document | None: ...

    def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None: ...

    def update(self, path: str, data: Mapping[str, Any]) -> None: ...

    def delete(self, path: str) -> None: ...

    def query(self, query: Query) -> list[Document]: ...

    def list_ids(self, collection: str) -> list[str]: ...

    def batch(self) -> WriteBatch: ...


__all__ = [
    "MAX_BATCH_OPERATIONS",
    "Document",
    "FieldFilter",
    "OrderBy",
    "Query",
    "CompositeIndex",
    "split_path",
    "collection_name",
    "join_path",
    "WriteBatch",
    "DocumentStore",
]
