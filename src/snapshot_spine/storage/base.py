"""
Shared behaviour for document store backends.

Backends only implement three raw primitives: ``_read``, ``_scan`` and
``_apply`` (which also carries single writes). Everything the
contract promises on top of that lives here once: retry through the
injected :class:`RetryPolicy`, composite-index enforcement, filter and
order evaluation, merge semantics and the batch ceiling.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from snapshot_spine.core.errors import BatchLimitError, DocumentNotFoundError, MissingIndexError, ValidationError
from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.retry import RetryPolicy
from snapshot_spine.storage.protocols import (
    MAX_BATCH_OPERATIONS,
    CompositeIndex,
    Document,
    FieldFilter,
    Query,
    collection_name,
    split_path,
)

logger = get_logger(__name__)

_MISSING = object()


def deep_merge(base: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``patch`` into a copy of ``base``; nested mappings merge recursively."""
    merged = copy.deepcopy(dict(base))
    for key, value in patch.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _lookup(data: Mapping[str, Any], dotted: str) -> Any:
    current: Any = data
    for part in dotted.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _rank(value: Any) -> tuple[int, Any]:
    # Cross-type ordering: null < bool < number < string < everything else.
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    return (4, str(value))


def _matches(data: Mapping[str, Any], f: FieldFilter) -> bool:
    actual = _lookup(data, f.field)
    if actual is _MISSING:
        return False
    left, right = _rank(actual), _rank(f.value)
    # ``trusted == True`` must not match ``trusted == 1``.
    if f.op == "==":
        return left == right
    if f.op == "!=":
        return left != right
    if f.op == "in":
        return any(left == _rank(v) for v in f.value)
    if left[0] != right[0]:
        return False
    if f.op == "<":
        return left < right
    if f.op == "<=":
        return left <= right
    if f.op == ">":
        return left > right
    return left >= right


def evaluate(query: Query, docs: Iterable[Document]) -> list[Document]:
    """Apply filters, ordering and limit to candidate documents."""
    selected = [d for d in docs if all(_matches(d.data, f) for f in query.filters)]
    # Documents lacking an ordered field are excluded, as managed stores do.
    for order in query.order_by:
        selected = [d for d in selected if _lookup(d.data, order.field) is not _MISSING]
    for order in reversed(query.order_by):
        selected.sort(key=lambda d, o=order: _rank(_lookup(d.data, o.field)), reverse=order.descending)
    if query.limit is not None:
        selected = selected[: query.limit]
    return selected


@dataclass(frozen=True, slots=True)
class BatchOp:
    kind: str  # "set" | "delete"
    path: str
    data: dict[str, Any] | None = None
    merge: bool = False


class Batch:
    """Collects writes for one atomic commit on the owning store."""

    def __init__(self, store: BaseDocumentStore, limit: int = MAX_BATCH_OPERATIONS):
        self._store = store
        self._limit = limit
        self._ops: list[BatchOp] = []
        self._committed = False

    def _add(self, op: BatchOp) -> None:
        if self._committed:
            raise BatchLimitError("Batch already committed")
        if len(self._ops) >= self._limit:
            raise BatchLimitError(
                f"Write batch exceeds {self._limit} operations",
            ).with_context(path=op.path)
        split_path(op.path)
        self._ops.append(op)

    def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        self._add(BatchOp("set", path, copy.deepcopy(dict(data)), merge))

    def delete(self, path: str) -> None:
        self._add(BatchOp("delete", path))

    def commit(self) -> None:
        if self._committed:
            raise BatchLimitError("Batch already committed")
        if self._ops:
            self._store._retry.run(self._store._apply, list(self._ops))
        self._committed = True

    def __len__(self) -> int:
        return len(self._ops)


class BaseDocumentStore(ABC):
    """
    Template for backends.

    Args:
        indexes: Provisioned composite indexes.
        enforce_indexes: When True, a query that needs a composite index
            with no matching entry in ``indexes`` raises MissingIndexError.
        retry: Retry policy applied to every primitive.
    """

    def __init__(
        self,
        *,
        indexes: Iterable[CompositeIndex] = (),
        enforce_indexes: bool = False,
        retry: RetryPolicy | None = None,
    ):
        self._indexes: list[CompositeIndex] = list(indexes)
        self._enforce_indexes = enforce_indexes
        self._retry = retry or RetryPolicy.none()

    # ------------------------------------------------------------------ #
    # Raw primitives
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _read(self, path: str) -> dict[str, Any] | None: ...

    @abstractmethod
    def _scan(self, collection: str, *, group: bool) -> list[Document]: ...

    @abstractmethod
    def _apply(self, ops: list[BatchOp]) -> None: ...

    # ------------------------------------------------------------------ #
    # Index management
    # ------------------------------------------------------------------ #

    @property
    def indexes(self) -> list[CompositeIndex]:
        return list(self._indexes)

    def add_index(self, index: CompositeIndex) -> None:
        self._indexes.append(index)

    def check_index(self, query: Query) -> None:
        if not self._enforce_indexes or not query.needs_composite_index():
            return
        if any(index.serves(query) for index in self._indexes):
            return
        name = query.collection if query.collection_group else collection_name(query.collection)
        err = MissingIndexError.for_fields(name, query.index_fields())
        logger.warning("store.query.missing_index", collection=name, fields=query.index_fields())
        raise err

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def get(self, path: str) -> Document | None:
        _, doc_id = split_path(path)
        data = self._retry.run(self._read, path)
        if data is None:
            return None
        return Document(id=doc_id, path=path, data=data)

    def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        split_path(path)
        self._retry.run(self._apply, [BatchOp("set", path, copy.deepcopy(dict(data)), merge)])

    def update(self, path: str, data: Mapping[str, Any]) -> None:
        if self._retry.run(self._read, path) is None:
            raise DocumentNotFoundError(f"No document to update at {path}").with_context(path=path)
        self.set(path, data, merge=True)

    def delete(self, path: str) -> None:
        split_path(path)
        self._retry.run(self._apply, [BatchOp("delete", path)])

    def query(self, query: Query) -> list[Document]:
        self.check_index(query)
        candidates = self._retry.run(self._scan, query.collection, group=query.collection_group)
        return evaluate(query, candidates)

    def list_ids(self, collection: str) -> list[str]:
        return sorted(d.id for d in self._retry.run(self._scan, collection, group=False))

    def batch(self) -> Batch:
        return Batch(self)

    # Helper for _apply implementations.
    def _resolve_set(self, current: dict[str, Any] | None, op: BatchOp) -> dict[str, Any]:
        if op.data is None:
            raise ValidationError(f"set without data: {op.path}")
        if op.merge and current is not None:
            return deep_merge(current, op.data)
        return op.data


__all__ = ["BaseDocumentStore", "Batch", "BatchOp", "deep_merge", "evaluate"]
