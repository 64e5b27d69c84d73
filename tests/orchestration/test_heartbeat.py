"""
Tests for snapshot_spine.orchestration.heartbeat.

Tests cover:
- Beats while running, stops cleanly
- Failing beats do not stop the loop
- Invalid interval
"""

import asyncio

import pytest

from snapshot_spine.orchestration.heartbeat import Heartbeat


class TestHeartbeat:
    """Tests for Heartbeat."""

    def test_rejects_non_positive_interval(self):
        """Test a zero interval is rejected."""
        with pytest.raises(ValueError):
            Heartbeat(0, lambda: None)

    @pytest.mark.asyncio
    async def test_beats_until_stopped(self):
        """Test the beat runs repeatedly and the task is gone after stop."""
        calls = []

        async def beat():
            calls.append(1)

        heartbeat = Heartbeat(0.01, beat, name="test")
        heartbeat.start()
        assert heartbeat.running
        await asyncio.sleep(0.08)
        await heartbeat.stop()

        assert not heartbeat.running
        assert heartbeat.beats == len(calls)
        assert heartbeat.beats >= 2

        count = len(calls)
        await asyncio.sleep(0.03)
        assert len(calls) == count

    @pytest.mark.asyncio
    async def test_failing_beat_keeps_looping(self):
        """Test a raising beat is logged and later beats still run."""
        attempts = []

        async def beat():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("store down")

        async with Heartbeat(0.01, beat) as heartbeat:
            await asyncio.sleep(0.08)

        assert len(attempts) >= 2
        assert heartbeat.beats == len(attempts) - 1

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        """Test stopping an idle heartbeat is a no-op."""
        heartbeat = Heartbeat(1.0, lambda: None)
        await heartbeat.stop()
        assert heartbeat.beats == 0
