"""
In-process telemetry bus for report synthesis runs.

Each run key keeps a ring of its newest 200 events (newest first) and its
latest phase. Subscribers are plain callables invoked synchronously on
``emit``; a failing subscriber is logged and never interrupts delivery.

Phases::

    IDLE → QUEUED → INPUTS_RESOLVED → MODEL_CALLING → MODEL_STREAMING →
    WRITING_RESULTS → POINTER_UPDATED → COMPLETE
                                      ↘ ERROR | TIMEOUT
"""

from __future__ import annotations

import threading
import uuid
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from snapshot_spine.core.logging import get_logger
from snapshot_spine.core.timestamps import Clock, epoch_ms, utc_now

logger = get_logger(__name__)

HISTORY_LIMIT = 200


class TelemetryPhase(str, Enum):
    IDLE = "IDLE"
    QUEUED = "QUEUED"
    INPUTS_RESOLVED = "INPUTS_RESOLVED"
    MODEL_CALLING = "MODEL_CALLING"
    MODEL_STREAMING = "MODEL_STREAMING"
    WRITING_RESULTS = "WRITING_RESULTS"
    POINTER_UPDATED = "POINTER_UPDATED"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"


@dataclass(frozen=True, slots=True)
class TelemetryEvent:
    ts: int
    phase: TelemetryPhase
    message: str
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"ts": self.ts, "phase": self.phase.value, "message": self.message, "meta": dict(self.meta)}


Listener = Callable[[TelemetryEvent], None]


class TelemetryBus:
    """Per-run event history with synchronous fan-out.

    Example::

        bus = TelemetryBus()
        unsubscribe = bus.subscribe("shampoo_2025-12", lambda e: print(e.phase))
        bus.emit("shampoo_2025-12", TelemetryPhase.MODEL_CALLING, "Calling model")
        bus.latest_phase("shampoo_2025-12")   # TelemetryPhase.MODEL_CALLING
        unsubscribe()
    """

    def __init__(self, *, history_limit: int = HISTORY_LIMIT, clock: Clock | None = None) -> None:
        self._history: dict[str, deque[TelemetryEvent]] = defaultdict(lambda: deque(maxlen=history_limit))
        self._phase: dict[str, TelemetryPhase] = {}
        self._listeners: dict[str, dict[str, Listener]] = defaultdict(dict)
        self._clock = clock or utc_now
        self._lock = threading.Lock()

    def emit(
        self,
        run_key: str,
        phase: TelemetryPhase | str,
        message: str,
        meta: dict[str, Any] | None = None,
    ) -> TelemetryEvent:
        event = TelemetryEvent(
            ts=epoch_ms(self._clock()),
            phase=TelemetryPhase(phase),
            message=message,
            meta=dict(meta or {}),
        )
        with self._lock:
            self._history[run_key].appendleft(event)
            self._phase[run_key] = event.phase
            listeners = list(self._listeners.get(run_key, {}).items())

        logger.debug("telemetry.emit", run_key=run_key, phase=event.phase.value, message=message)
        for sub_id, listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning("telemetry.listener_error", run_key=run_key, subscription_id=sub_id, error=str(e))
        return event

    def subscribe(self, run_key: str, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for ``run_key``; returns the unsubscribe callable."""
        sub_id = f"sub_{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._listeners[run_key][sub_id] = listener

        def _unsubscribe() -> None:
            with self._lock:
                subs = self._listeners.get(run_key)
                if subs is None:
                    return
                subs.pop(sub_id, None)
                if not subs:
                    del self._listeners[run_key]

        return _unsubscribe

    def history(self, run_key: str) -> list[TelemetryEvent]:
        """Events for ``run_key``, newest first."""
        with self._lock:
            return list(self._history.get(run_key, ()))

    def latest_phase(self, run_key: str) -> TelemetryPhase:
        with self._lock:
            return self._phase.get(run_key, TelemetryPhase.IDLE)

    def snapshot(self, run_key: str) -> dict[str, Any]:
        return {
            "phase": self.latest_phase(run_key).value,
            "logs": [e.to_dict() for e in self.history(run_key)],
        }


def report_run_key(category_id: str, month: str) -> str:
    return f"{category_id}_{month}"


__all__ = ["HISTORY_LIMIT", "TelemetryBus", "TelemetryEvent", "TelemetryPhase", "report_run_key"]
