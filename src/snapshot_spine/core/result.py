"""
Result envelope for store operations that must never raise.

Every public store method in snapshot-spine returns ``Ok(data)`` or
``Err(error)``. Exceptions raised inside the store (backend failures,
missing chunks, validation errors) are caught at the boundary by
:func:`guard` and mapped onto the error variant, so a consumer always gets
an explicit ``ok: false`` with a reason instead of a crash or an empty
success.

Manifesto:
    - **Explicit failure:** Not-found is ``Err(DocumentNotFoundError)``,
      never ``Ok(None)``
    - **Typed errors:** ``Err.error`` is always an exception instance, a
      :class:`~snapshot_spine.core.errors.SpineError` wherever possible
    - **Composable:** ``map`` / ``flat_map`` chain store calls without
      nested ``if`` ladders

Architecture:
    ::

        store method body raises ───> guard() ───> Err(SpineError)
        store method body returns ──> guard() ───> Ok(value)

        Ok(data).to_dict()   -> {"ok": True,  "data": data}
        Err(error).to_dict() -> {"ok": False, "error": error.to_dict()}

Examples:
    >>> result = guard(lambda: 41 + 1)
    >>> result.map(lambda v: v * 2).unwrap()
    84
    >>> guard(lambda: {}["missing"]).is_err()
    True

Tags:
    result, ok, err, error-handling, store-boundary, snapshot-spine
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from snapshot_spine.core.errors import SpineError, StorageError, categorize_error

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result carrying ``data``."""

    data: T

    @property
    def ok(self) -> bool:
        return True

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.data

    def unwrap_or(self, default: T) -> T:
        return self.data

    def map(self, f: Callable[[T], U]) -> Result[U]:
        return Ok(f(self.data))

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        return f(self.data)

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "data": self.data}

    def __repr__(self) -> str:
        return f"Ok({self.data!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """Failed result carrying the exception that caused it."""

    error: Exception

    @property
    def ok(self) -> bool:
        return False

    @property
    def reason(self) -> str:
        """Human-readable failure reason."""
        return getattr(self.error, "message", None) or str(self.error)

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the error. Use only when you're sure it's Ok."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:
        return Err(self.error)

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        return Err(self.error)

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.error, SpineError):
            return {"ok": False, "error": self.error.to_dict()}
        return {
            "ok": False,
            "error": {
                "error_type": type(self.error).__name__,
                "message": str(self.error),
                "category": categorize_error(self.error).value,
            },
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


def guard(f: Callable[[], T]) -> Result[T]:
    """
    Run ``f`` and wrap its outcome.

    Spine errors pass through unchanged; any other exception is wrapped in
    :class:`StorageError` with the original kept as ``cause`` so store
    boundaries only ever emit typed errors.
    """
    try:
        return Ok(f())
    except SpineError as e:
        return Err(e)
    except Exception as e:
        return Err(StorageError(str(e) or type(e).__name__, cause=e))


__all__ = ["Ok", "Err", "Result", "guard"]
