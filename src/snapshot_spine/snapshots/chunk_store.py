"""
Chunked row storage under a parent document.

Large row collections are split into fixed-size, hash-verified chunk
documents at ``{parent}/chunks/chunk_{index:04d}``.

Manifesto:
    A snapshot's bulk payload is far larger than one document may be, and
    the store offers no atomicity across write batches. The chunk layout is
    therefore designed so that a *retry* is always safe:

    - **Deterministic ids:** ``chunk_0000`` .. ``chunk_{N-1}`` depend only on
      the index, so rewriting converges instead of duplicating
    - **Sequential batches:** At most ``batch_limit`` writes in flight, and
      failure attribution is always one batch
    - **Contiguity on read:** A gap in ``0..N-1`` is an integrity error,
      never silently skipped
    - **Stale tail cleanup:** Shrinking a snapshot deletes chunks past the
      new end, so contiguity also holds after a rewrite

Architecture:
    ::

        write_chunks(parent, rows, chunk_size)
            rows ──> slices of chunk_size ──> sanitize ──> sha256(compact JSON)
                 ──> set ops (+ delete ops for stale tail)
                 ──> batches of ≤ batch_limit ──> commit one after another

        read_chunks(parent)
            query chunks ORDER BY index ──> check 0..N-1 ──> verify sha256
                 ──> concatenate rows

Examples:
    >>> chunks = ChunkStore(MemoryDocumentStore())
    >>> chunks.write_chunks("mci_category_snapshots/IN/en/shampoo/snapshots/snap_1", []).unwrap().chunk_count
    0

Tags:
    chunks, integrity, sha256, batching, idempotent, snapshot-spine
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from snapshot_spine.core.errors import ChunkIntegrityError, DocumentNotFoundError, ValidationError
from snapshot_spine.core.hashing import EMPTY_FINGERPRINT, sha256_hex, sha256_json
from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.result import Result, guard
from snapshot_spine.core.sanitize import sanitize
from snapshot_spine.core.timestamps import Clock, now_iso
from snapshot_spine.snapshots.models import ChunkRecord
from snapshot_spine.storage import paths
from snapshot_spine.storage.base import BatchOp
from snapshot_spine.storage.protocols import MAX_BATCH_OPERATIONS, DocumentStore, FieldFilter, OrderBy, Query

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 400
DEFAULT_BATCH_LIMIT = 450


@dataclass(frozen=True, slots=True)
class ChunkWriteSummary:
    chunk_count: int
    chunk_hashes: list[str]
    combined_sha256: str
    batches: int = 0
    deleted_stale: int = 0


@dataclass(frozen=True, slots=True)
class ChunkReadResult:
    rows: list[dict[str, Any]]
    chunk_count: int
    chunk_hashes: list[str] = field(default_factory=list)

    @property
    def combined_sha256(self) -> str:
        return combined_hash(self.chunk_hashes)


def combined_hash(chunk_hashes: Sequence[str]) -> str:
    """Integrity hash of a whole snapshot: SHA-256 over the ordered chunk hashes."""
    if not chunk_hashes:
        return EMPTY_FINGERPRINT
    return sha256_hex("".join(chunk_hashes))


def _parse_index(chunk_id: str) -> int | None:
    prefix, _, number = chunk_id.partition("_")
    if prefix != "chunk" or not number.isdigit():
        return None
    return int(number)


class ChunkStore:
    """
    Chunk reads and writes for any parent document path.

    Every public method returns ``Ok | Err``; nothing raises across it.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        clock: Clock | None = None,
    ):
        if not 0 < batch_limit <= MAX_BATCH_OPERATIONS:
            raise ValueError(f"batch_limit must be in 1..{MAX_BATCH_OPERATIONS}")
        self._store = store
        self._batch_limit = batch_limit
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def _chunk_payload(self, rows: Sequence[Any], index: int) -> dict[str, Any]:
        clean = sanitize(list(rows))
        return {
            "index": index,
            "row_count": len(clean),
            "rows": clean,
            "sha256": sha256_json(clean),
            "created_at_iso": now_iso(self._clock),
        }

    def _commit(self, ops: list[BatchOp]) -> int:
        batches = 0
        for start in range(0, len(ops), self._batch_limit):
            batch = self._store.batch()
            for op in ops[start : start + self._batch_limit]:
                if op.kind == "delete":
                    batch.delete(op.path)
                else:
                    batch.set(op.path, op.data or {})
            batch.commit()
            batches += 1
        return batches

    def write_chunks(
        self,
        parent: str,
        rows: Sequence[Mapping[str, Any] | Any],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> Result[ChunkWriteSummary]:
        """Partition ``rows`` into ``ceil(len/chunk_size)`` chunks and persist them."""

        def _write() -> ChunkWriteSummary:
            if chunk_size <= 0:
                raise ValidationError(f"chunk_size must be positive, got {chunk_size}")
            chunk_count = math.ceil(len(rows) / chunk_size)
            ops: list[BatchOp] = []
            hashes: list[str] = []
            for index in range(chunk_count):
                payload = self._chunk_payload(rows[index * chunk_size : (index + 1) * chunk_size], index)
                hashes.append(payload["sha256"])
                ops.append(BatchOp("set", paths.chunk_doc(parent, paths.chunk_id(index)), payload))

            stale = [
                cid
                for cid in self._store.list_ids(paths.chunks_collection(parent))
                if (idx := _parse_index(cid)) is not None and idx >= chunk_count
            ]
            ops.extend(BatchOp("delete", paths.chunk_doc(parent, cid)) for cid in stale)

            batches = self._commit(ops)
            summary = ChunkWriteSummary(
                chunk_count=chunk_count,
                chunk_hashes=hashes,
                combined_sha256=combined_hash(hashes),
                batches=batches,
                deleted_stale=len(stale),
            )
            logger.info(
                "chunks.write.done",
                parent=parent,
                rows=len(rows),
                chunk_count=chunk_count,
                batches=batches,
                deleted_stale=len(stale),
            )
            return summary

        result = guard(_write)
        if result.is_err():
            logger.error("chunks.write.failed", parent=parent, error=result.reason)
        return result

    def write_single_chunk(self, parent: str, chunk_id: str, rows: Sequence[Any], index: int) -> Result[str]:
        """Rewrite one chunk in place and return its new hash."""

        def _write() -> str:
            payload = self._chunk_payload(rows, index)
            self._store.set(paths.chunk_doc(parent, chunk_id), payload)
            return payload["sha256"]

        return guard(_write)

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def _ordered_records(self, parent: str, *, below: int | None = None) -> list[ChunkRecord]:
        filters = [FieldFilter("index", "<", below)] if below is not None else []
        docs = self._store.query(
            Query(paths.chunks_collection(parent), filters=filters, order_by=[OrderBy("index")])
        )
        try:
            return [ChunkRecord.model_validate(d.data) for d in docs]
        except PydanticValidationError as e:
            raise ChunkIntegrityError(f"Malformed chunk under {parent}: {e}", cause=e).with_context(path=parent) from e

    def read_chunks(
        self,
        parent: str,
        *,
        expected_count: int | None = None,
        verify_hashes: bool = True,
    ) -> Result[ChunkReadResult]:
        """Read and concatenate every chunk, verifying contiguity and hashes."""

        def _read() -> ChunkReadResult:
            records = self._ordered_records(parent)
            indexes = [r.index for r in records]
            if indexes != list(range(len(records))):
                missing = sorted(set(range(max(indexes, default=-1) + 1)) - set(indexes))
                raise ChunkIntegrityError(
                    f"Chunk indexes under {parent} are not contiguous; missing {missing}"
                ).with_context(path=parent)
            if expected_count is not None and len(records) != expected_count:
                raise ChunkIntegrityError(
                    f"Chunk count mismatch under {parent}: metadata says {expected_count}, found {len(records)}"
                ).with_context(path=parent)
            if verify_hashes:
                for record in records:
                    if sha256_json(record.rows) != record.sha256:
                        raise ChunkIntegrityError(
                            f"Hash mismatch for chunk {record.index} under {parent}"
                        ).with_context(path=parent)

            rows: list[dict[str, Any]] = []
            for record in records:
                rows.extend(record.rows)
            return ChunkReadResult(rows=rows, chunk_count=len(records), chunk_hashes=[r.sha256 for r in records])

        return guard(_read)

    def read_first_chunks(self, parent: str, count: int) -> Result[list[dict[str, Any]]]:
        """Rows of chunks ``0..count-1`` only, for bounded top-N reads."""

        def _read() -> list[dict[str, Any]]:
            rows: list[dict[str, Any]] = []
            for record in self._ordered_records(parent, below=count):
                rows.extend(record.rows)
            return rows

        return guard(_read)

    def get_chunk_ids(self, parent: str) -> Result[list[str]]:
        def _ids() -> list[str]:
            docs = self._store.query(Query(paths.chunks_collection(parent), order_by=[OrderBy("index")]))
            return [d.id for d in docs]

        return guard(_ids)

    def read_chunk(self, parent: str, chunk_id: str) -> Result[ChunkRecord]:
        def _read() -> ChunkRecord:
            doc = self._store.get(paths.chunk_doc(parent, chunk_id))
            if doc is None:
                raise DocumentNotFoundError(f"Chunk {chunk_id} not found under {parent}").with_context(path=parent)
            return ChunkRecord.model_validate(doc.data)

        return guard(_read)


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_BATCH_LIMIT",
    "ChunkWriteSummary",
    "ChunkReadResult",
    "ChunkStore",
    "combined_hash",
]
