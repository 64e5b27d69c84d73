"""
SQLite-backed document store built on SQLAlchemy Core.

Every document is one row of the ``documents`` table holding the full path,
the collection path, the collection name (for collection-group queries)
and the JSON payload. Filtering and ordering run through the shared
evaluator in :mod:`snapshot_spine.storage.base` so both backends answer
identically; SQL narrows candidates to one collection first.

Examples:
    >>> store = SqliteDocumentStore("sqlite:///:memory:")
    >>> store.set("corpus_index/shampoo__IN__en", {"activeSnapshotId": "snap_1"})
    >>> store.get("corpus_index/shampoo__IN__en").data
    {'activeSnapshotId': 'snap_1'}

Tags:
    storage, sqlite, sqlalchemy, json, document-store, snapshot-spine
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from sqlalchemy import JSON, Column, MetaData, String, Table, create_engine, delete, event, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from snapshot_spine.core.errors import StorageError, StoreUnavailableError
from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.retry import RetryPolicy
from snapshot_spine.storage.base import BaseDocumentStore, BatchOp
from snapshot_spine.storage.protocols import CompositeIndex, Document, collection_name, split_path

logger = get_logger(__name__)

metadata = MetaData()

documents = Table(
    "documents",
    metadata,
    Column("path", String, primary_key=True),
    Column("collection", String, nullable=False, index=True),
    Column("collection_name", String, nullable=False, index=True),
    Column("doc_id", String, nullable=False),
    Column("data", JSON, nullable=False),
)


def create_store_engine(url: str, *, echo: bool = False) -> Engine:
    """Create a SQLite engine with WAL enabled; ``:memory:`` shares one connection."""
    kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


class SqliteDocumentStore(BaseDocumentStore):
    """
    Durable document store for local and single-host deployments.

    ``target`` is a SQLAlchemy URL, a filesystem path, or an existing
    :class:`Engine`. Busy/locked errors surface as the retryable
    :class:`StoreUnavailableError`, so the injected retry policy handles
    them; anything else is a :class:`StorageError`.
    """

    def __init__(
        self,
        target: str | Path | Engine = "sqlite:///:memory:",
        *,
        indexes: Iterable[CompositeIndex] = (),
        enforce_indexes: bool = False,
        retry: RetryPolicy | None = None,
    ):
        super().__init__(indexes=indexes, enforce_indexes=enforce_indexes, retry=retry)
        if isinstance(target, Engine):
            self._engine = target
        else:
            url = str(target)
            if not url.startswith("sqlite"):
                Path(url).parent.mkdir(parents=True, exist_ok=True)
                url = f"sqlite:///{url}"
            self._engine = create_store_engine(url)
        self._lock = threading.Lock()
        metadata.create_all(self._engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    def _translate(self, error: SQLAlchemyError, action: str) -> Exception:
        if isinstance(error, OperationalError):
            return StoreUnavailableError(f"sqlite {action} failed: {error.orig}", cause=error)
        return StorageError(f"sqlite {action} failed: {error}", cause=error)

    def _read(self, path: str) -> dict[str, Any] | None:
        stmt = select(documents.c.data).where(documents.c.path == path.strip("/"))
        try:
            with self._lock, self._engine.connect() as conn:
                row = conn.execute(stmt).first()
        except SQLAlchemyError as e:
            raise self._translate(e, "read") from e
        return dict(row.data) if row is not None else None

    def _scan(self, collection: str, *, group: bool) -> list[Document]:
        column = documents.c.collection_name if group else documents.c.collection
        stmt = select(documents.c.path, documents.c.doc_id, documents.c.data).where(
            column == collection.strip("/")
        )
        try:
            with self._lock, self._engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as e:
            raise self._translate(e, "scan") from e
        return [Document(id=r.doc_id, path=r.path, data=dict(r.data)) for r in rows]

    def _apply(self, ops: list[BatchOp]) -> None:
        try:
            with self._lock, self._engine.begin() as conn:
                for op in ops:
                    key = op.path.strip("/")
                    if op.kind == "delete":
                        conn.execute(delete(documents).where(documents.c.path == key))
                        continue
                    current = None
                    if op.merge:
                        row = conn.execute(select(documents.c.data).where(documents.c.path == key)).first()
                        current = dict(row.data) if row is not None else None
                    data = self._resolve_set(current, op)
                    coll, doc_id = split_path(key)
                    stmt = sqlite_insert(documents).values(
                        path=key,
                        collection=coll,
                        collection_name=collection_name(coll),
                        doc_id=doc_id,
                        data=data,
                    )
                    conn.execute(
                        stmt.on_conflict_do_update(index_elements=[documents.c.path], set_={"data": stmt.excluded.data})
                    )
        except SQLAlchemyError as e:
            logger.warning("store.sqlite.batch_failed", operations=len(ops), error=str(e))
            raise self._translate(e, "write") from e

    def close(self) -> None:
        self._engine.dispose()


__all__ = ["SqliteDocumentStore", "create_store_engine", "documents"]
