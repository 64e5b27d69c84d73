"""Background heartbeat task that keeps a run document fresh while stages execute."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

from snapshot_spine.core.logging import get_logger

logger = get_logger(__name__)


class Heartbeat:
    """
    Calls ``beat`` every ``interval`` seconds until stopped.

    A failing beat is logged and the loop continues. Use as an async
    context manager so the task is cancelled on every exit path::

        async with Heartbeat(3.0, lambda: update_run_doc("HEARTBEAT", 0)):
            await run_stages()
    """

    def __init__(self, interval: float, beat: Callable[[], Awaitable[None]], *, name: str = "heartbeat"):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = interval
        self._beat = beat
        self._name = name
        self._task: asyncio.Task[None] | None = None
        self.beats = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._beat()
                self.beats += 1
            except Exception as e:
                logger.warning("heartbeat.beat_failed", name=self._name, error=str(e))

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self._name)
        logger.debug("heartbeat.start", name=self._name, interval=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.debug("heartbeat.stop", name=self._name, beats=self.beats)

    async def __aenter__(self) -> Heartbeat:
        self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()


__all__ = ["Heartbeat"]
