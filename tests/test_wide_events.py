"""
Tests for wide events (canonical log lines).

Tests:
- WideEvent context management
- Tail sampling
- track_operation() and log_trip_event()
"""

from unittest.mock import patch

import pytest

from range_receiver.utils.wide_events import WideEvent, log_trip_event, track_operation


class TestWideEvent:
    """Tests for WideEvent class."""

    def test_creates_event_with_defaults(self):
        event = WideEvent(operation="sample_ingest")

        assert event.context["operation"] == "sample_ingest"
        assert "timestamp" in event.context
        assert "start_time" in event.context
        assert "request_id" in event.context
        assert "trace_id" not in event.context

    def test_trace_id(self):
        assert WideEvent("sample_ingest", trace_id="1700000000000").context["trace_id"] == "1700000000000"

    def test_metrics_grouped(self):
        event = WideEvent("sample_ingest")
        event.add_business_metric("samples", 12).add_technical_metric("payload_bytes", 2048)

        assert event.context["business_metrics"] == {"samples": 12}
        assert event.context["technical_metrics"] == {"payload_bytes": 2048}

    def test_add_error_marks_failure(self):
        event = WideEvent("trip_persist")
        event.add_error(ValueError("bad snapshot"), trip_start=1)

        assert event.context["success"] is False
        assert event.context["error"]["type"] == "ValueError"
        assert event.context["error"]["details"] == {"trip_start": 1}

    def test_timer(self):
        event = WideEvent("sample_ingest")
        with event.timer("estimate"):
            pass
        assert "estimate_ms" in event.context["performance_breakdown"]

    def test_set_duration_replaces_start_time(self):
        event = WideEvent("sample_ingest").set_duration()
        assert "start_time" not in event.context
        assert event.context["duration_ms"] >= 0


class TestTailSampling:
    """Tests for WideEvent.should_emit()"""

    def test_failures_always_emitted(self):
        event = WideEvent("trip_persist").mark_failure("disk full")
        assert event.should_emit(sample_rate=0.0)

    def test_slow_operations_always_emitted(self):
        event = WideEvent("trip_persist").add_context(duration_ms=2500)
        assert event.should_emit(sample_rate=0.0)

    def test_critical_trip_events_always_emitted(self):
        event = WideEvent("charging_started").add_business_metric("charging_started", True)
        assert event.should_emit(sample_rate=0.0)

    def test_routine_success_sampled(self):
        event = WideEvent("sample_ingest").mark_success()
        assert not event.should_emit(sample_rate=0.0)
        assert event.should_emit(sample_rate=1.0)

    def test_emit_respects_sampling(self):
        event = WideEvent("sample_ingest").mark_success()
        with patch.object(event, "logger") as logger:
            with patch("range_receiver.utils.wide_events.random.random", return_value=0.99):
                event.emit()
        logger.info.assert_not_called()

    def test_forced_emit(self):
        event = WideEvent("sample_ingest").mark_success()
        with patch.object(event, "logger") as logger:
            event.emit(force=True)
        logger.info.assert_called_once()
        assert logger.info.call_args[0][0] == "sample_ingest_complete"


class TestTrackOperation:
    """Tests for track_operation()"""

    def test_success(self):
        with track_operation("trip_persist", force=True, trip_start=1) as event:
            event.add_business_metric("samples", 3)

        assert event.context["success"] is True
        assert event.context["trip_start"] == 1
        assert "duration_ms" in event.context

    def test_failure_reraised_and_recorded(self):
        with pytest.raises(RuntimeError):
            with track_operation("trip_persist") as event:
                raise RuntimeError("database gone")

        assert event.context["success"] is False
        assert event.context["failure_reason"] == "database gone"

    def test_failure_emitted_at_error_level(self):
        with patch("range_receiver.utils.wide_events.WideEvent.emit") as emit:
            with pytest.raises(RuntimeError):
                with track_operation("trip_persist"):
                    raise RuntimeError("database gone")

        emit.assert_called_once_with(level="error", force=True)


class TestLogTripEvent:
    """Tests for log_trip_event()"""

    def test_always_emitted_with_metrics(self):
        with patch("range_receiver.utils.wide_events.structlog.get_logger") as get_logger:
            log_trip_event(1700000000000, "connection_gap", gap_ms=30000, interpolated_samples=5)

        log = get_logger.return_value.info
        log.assert_called_once()
        kwargs = log.call_args[1]
        assert kwargs["trace_id"] == "1700000000000"
        assert kwargs["business_metrics"] == {
            "connection_gap": True,
            "gap_ms": 30000,
            "interpolated_samples": 5,
        }
