"""
Wide Events (Canonical Log Lines)

One comprehensive JSON event per operation (sample batch, estimate refresh,
trip save, charging transition) instead of a trail of small log lines:
- high-cardinality context (trip start time, wheel model, algorithm)
- business metrics (samples ingested, range, confidence)
- tail sampling: failures, slow operations and critical trip events are
  always kept, routine successes are sampled
"""

import random
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Business metrics that force emission when truthy
CRITICAL_EVENTS = (
    "charging_started",
    "charging_completed",
    "connection_gap",
    "trip_reset",
)

DEFAULT_SAMPLE_RATE = 0.05
SLOW_THRESHOLD_MS = 1000


class WideEvent:
    """
    Accumulates context throughout an operation, then emits one log event.

    Usage:
        event = WideEvent("sample_ingest", trace_id=str(trip.start_time))
        event.add_context(algorithm="weighted_window")
        event.add_business_metric("samples", 12)

        with event.timer("estimate"):
            manager.estimate_now()

        event.emit()
    """

    def __init__(self, operation: str, request_id: Optional[str] = None, trace_id: Optional[str] = None):
        """
        Args:
            operation: Name of the operation (e.g., "sample_ingest")
            request_id: Unique ID for this request (generated if not provided)
            trace_id: Connects related operations, typically the trip start time
        """
        self.operation = operation
        self.context: Dict[str, Any] = {
            "operation": operation,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "start_time": time.time(),
            "request_id": request_id or str(uuid.uuid4()),
        }
        if trace_id:
            self.context["trace_id"] = trace_id

        self.logger = structlog.get_logger()

    def add_context(self, **kwargs) -> "WideEvent":
        self.context.update(kwargs)
        return self

    def _add_to(self, section: str, key: str, value: Any) -> "WideEvent":
        self.context.setdefault(section, {})[key] = value
        return self

    def add_business_metric(self, key: str, value: Any) -> "WideEvent":
        """Samples processed, range, confidence, energy added, etc."""
        return self._add_to("business_metrics", key, value)

    def add_technical_metric(self, key: str, value: Any) -> "WideEvent":
        """Lock wait, db writes, payload size, etc."""
        return self._add_to("technical_metrics", key, value)

    def add_error(self, error: Exception, **kwargs) -> "WideEvent":
        self.context["error"] = {
            "type": type(error).__name__,
            "message": str(error),
            "details": kwargs,
        }
        self.context["success"] = False
        return self

    def mark_success(self) -> "WideEvent":
        self.context["success"] = True
        return self

    def mark_failure(self, reason: str) -> "WideEvent":
        self.context["success"] = False
        self.context["failure_reason"] = reason
        return self

    @contextmanager
    def timer(self, name: str):
        """
        Time a step of the operation.

        Outputs: {"performance_breakdown": {"estimate_ms": 3.1}}
        """
        start = time.time()
        try:
            yield
        finally:
            duration_ms = (time.time() - start) * 1000
            self._add_to("performance_breakdown", f"{name}_ms", round(duration_ms, 2))

    def set_duration(self) -> "WideEvent":
        if "start_time" in self.context:
            duration_ms = (time.time() - self.context.pop("start_time")) * 1000
            self.context["duration_ms"] = round(duration_ms, 2)
        return self

    def should_emit(self, sample_rate: float = DEFAULT_SAMPLE_RATE, slow_threshold_ms: float = SLOW_THRESHOLD_MS) -> bool:
        """
        Tail sampling:
        - always emit failures
        - always emit slow operations
        - always emit critical trip events (charging, gaps, resets)
        - sample the rest at sample_rate
        """
        if not self.context.get("success", True):
            return True

        if self.context.get("duration_ms", 0) > slow_threshold_ms:
            return True

        business_metrics = self.context.get("business_metrics", {})
        if any(business_metrics.get(name) for name in CRITICAL_EVENTS):
            return True

        return random.random() < sample_rate

    def emit(self, level: str = "info", force: bool = False) -> None:
        """
        Emit the event as a single log line.

        Args:
            level: Log level (info, warning, error)
            force: Emit even if sampling says no
        """
        self.set_duration()

        if not force and not self.should_emit():
            return

        log_method = getattr(self.logger, level, self.logger.info)
        log_method(f"{self.operation}_complete", **self.context)


@contextmanager
def track_operation(operation: str, force: bool = False, **initial_context):
    """
    Track an operation with a wide event that emits on exit.

    Failures are always emitted at error level and re-raised; successes go
    through tail sampling unless force is set.

    Usage:
        with track_operation("trip_persist", trip_start=trip.start_time) as event:
            store.save(trip)
            event.add_business_metric("samples", len(trip.samples))
    """
    event = WideEvent(operation)
    event.add_context(**initial_context)

    try:
        yield event
        event.mark_success()
    except Exception as e:
        event.add_error(e)
        event.mark_failure(str(e))
        raise
    finally:
        failed = not event.context.get("success", True)
        event.emit(level="error" if failed else "info", force=force or failed)


def log_trip_event(trip_start: int, operation: str, **metrics) -> None:
    """Log a trip lifecycle event (charging_started, connection_gap, trip_reset, ...)."""
    event = WideEvent(operation, trace_id=str(trip_start))
    event.add_context(trip_start=trip_start)
    event.add_business_metric(operation, True)
    for key, value in metrics.items():
        event.add_business_metric(key, value)
    event.mark_success()
    event.emit(force=True)
