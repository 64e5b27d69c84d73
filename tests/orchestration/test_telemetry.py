"""
Tests for snapshot_spine.orchestration.telemetry.

Tests cover:
- Emit, history order and latest phase
- History ring limit
- Subscribe / unsubscribe
- Failing listeners never break delivery
"""

from snapshot_spine.orchestration.telemetry import TelemetryBus, TelemetryPhase, report_run_key

RUN_KEY = report_run_key("shampoo", "2025-12")


class TestTelemetryBus:
    """Tests for TelemetryBus."""

    def test_run_key(self):
        """Test the run key joins category and month."""
        assert RUN_KEY == "shampoo_2025-12"

    def test_default_phase_is_idle(self):
        """Test an unknown run reports IDLE with no logs."""
        bus = TelemetryBus()
        assert bus.latest_phase(RUN_KEY) == TelemetryPhase.IDLE
        assert bus.snapshot(RUN_KEY) == {"phase": "IDLE", "logs": []}

    def test_history_newest_first(self, clock, fixed_now):
        """Test events are returned newest first and update the phase."""
        bus = TelemetryBus(clock=clock)
        bus.emit(RUN_KEY, TelemetryPhase.INPUTS_RESOLVED, "bound")
        bus.emit(RUN_KEY, "MODEL_CALLING", "calling", {"runId": "r1"})

        history = bus.history(RUN_KEY)
        assert [e.phase for e in history] == [TelemetryPhase.MODEL_CALLING, TelemetryPhase.INPUTS_RESOLVED]
        assert bus.latest_phase(RUN_KEY) == TelemetryPhase.MODEL_CALLING
        assert history[0].to_dict()["meta"] == {"runId": "r1"}
        assert history[0].ts == int(fixed_now.timestamp() * 1000)

    def test_history_limit(self):
        """Test only the newest events are kept."""
        bus = TelemetryBus(history_limit=3)
        for i in range(5):
            bus.emit(RUN_KEY, TelemetryPhase.MODEL_STREAMING, f"chunk {i}")
        assert [e.message for e in bus.history(RUN_KEY)] == ["chunk 4", "chunk 3", "chunk 2"]

    def test_runs_are_isolated(self):
        """Test events for one run key never appear under another."""
        bus = TelemetryBus()
        bus.emit(RUN_KEY, TelemetryPhase.COMPLETE, "done")
        assert bus.history(report_run_key("hair_oil", "2025-12")) == []

    def test_subscribe_and_unsubscribe(self):
        """Test listeners receive events until unsubscribed."""
        bus = TelemetryBus()
        received = []
        unsubscribe = bus.subscribe(RUN_KEY, received.append)

        bus.emit(RUN_KEY, TelemetryPhase.QUEUED, "queued")
        unsubscribe()
        bus.emit(RUN_KEY, TelemetryPhase.COMPLETE, "done")

        assert [e.phase for e in received] == [TelemetryPhase.QUEUED]
        unsubscribe()

    def test_failing_listener_does_not_block_others(self):
        """Test one raising listener does not stop delivery to the rest."""
        bus = TelemetryBus()
        received = []

        def broken(event):
            raise RuntimeError("listener down")

        bus.subscribe(RUN_KEY, broken)
        bus.subscribe(RUN_KEY, received.append)
        event = bus.emit(RUN_KEY, TelemetryPhase.ERROR, "failed")

        assert received == [event]
