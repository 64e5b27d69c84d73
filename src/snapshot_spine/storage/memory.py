"""In-process document store for tests, dry runs and the CLI ``--backend memory`` mode."""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterable
from typing import Any

from snapshot_spine.core.retry import RetryPolicy
from snapshot_spine.storage.base import BaseDocumentStore, BatchOp
from snapshot_spine.storage.protocols import CompositeIndex, Document, collection_name, split_path


class MemoryDocumentStore(BaseDocumentStore):
    """
    Dict-backed store keyed by full document path.

    Reads and writes copy data in and out so callers never share mutable
    state with the store. A batch is applied under one lock acquisition and
    is therefore atomic with respect to other callers.

    Example:
        store = MemoryDocumentStore()
        store.set("pipeline_runs/PIPE_shampoo_1", {"status": "RUNNING"})
        store.get("pipeline_runs/PIPE_shampoo_1").data["status"]
    """

    def __init__(
        self,
        *,
        indexes: Iterable[CompositeIndex] = (),
        enforce_indexes: bool = False,
        retry: RetryPolicy | None = None,
    ):
        super().__init__(indexes=indexes, enforce_indexes=enforce_indexes, retry=retry)
        self._docs: dict[str, dict[str, Any]] = {}
        self._lock = threading.RLock()

    def _read(self, path: str) -> dict[str, Any] | None:
        with self._lock:
            data = self._docs.get(path.strip("/"))
            return copy.deepcopy(data) if data is not None else None

    def _scan(self, collection: str, *, group: bool) -> list[Document]:
        wanted = collection.strip("/")
        found: list[Document] = []
        with self._lock:
            for path, data in self._docs.items():
                coll, doc_id = split_path(path)
                hit = collection_name(coll) == wanted if group else coll == wanted
                if hit:
                    found.append(Document(id=doc_id, path=path, data=copy.deepcopy(data)))
        return found

    def _apply(self, ops: list[BatchOp]) -> None:
        with self._lock:
            for op in ops:
                key = op.path.strip("/")
                if op.kind == "delete":
                    self._docs.pop(key, None)
                else:
                    self._docs[key] = copy.deepcopy(self._resolve_set(self._docs.get(key), op))

    def __len__(self) -> int:
        return len(self._docs)


__all__ = ["MemoryDocumentStore"]
