"""
UTC timestamp, month-key and id-ordering helpers.

Snapshot ids embed their creation time in epoch milliseconds and the
``created_at_iso`` field is derived from the same instant, so ordering by
either gives the same "latest" answer. ISO strings are always rendered in
the fixed ``YYYY-MM-DDTHH:MM:SS.mmmZ`` form so that lexical order equals
chronological order.

STDLIB ONLY - NO PYDANTIC.
"""

import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_iso(dt: datetime) -> str:
    """Render a datetime as a fixed-width UTC ISO string with milliseconds."""
    dt = dt.astimezone(UTC) if dt.tzinfo else dt.replace(tzinfo=UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def now_iso(clock: Clock | None = None) -> str:
    return to_iso((clock or utc_now)())


def from_iso(value: str | None) -> datetime | None:
    """Parse an ISO string (``Z`` suffix allowed). Returns None on bad input."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def iso_from_epoch_ms(ms: int) -> str:
    return to_iso(datetime.fromtimestamp(ms / 1000, tz=UTC))


def month_key(dt: datetime | None = None) -> str:
    """``YYYY-MM`` for ``dt`` (default: now)."""
    return (dt or utc_now()).strftime("%Y-%m")


def month_window(key: str) -> tuple[str, str]:
    """Return ``(start_iso, end_iso)`` for a ``YYYY-MM`` month, end exclusive."""
    year, month = (int(part) for part in key.split("-"))
    start = datetime(year, month, 1, tzinfo=UTC)
    end = datetime(year + (month // 12), month % 12 + 1, 1, tzinfo=UTC)
    return to_iso(start), to_iso(end)


def days_ago_iso(days: int, clock: Clock | None = None) -> str:
    return to_iso((clock or utc_now)() - timedelta(days=days))


class MonotonicMillis:
    """
    Hands out strictly increasing epoch-millisecond stamps.

    Two drafts created in the same millisecond would otherwise share an id;
    the second one is bumped by one millisecond instead.
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or utc_now
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            value = max(epoch_ms(self._clock()), self._last + 1)
            self._last = value
            return value
