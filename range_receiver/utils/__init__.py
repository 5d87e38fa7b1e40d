"""
Utility helpers for the range receiver.
"""

from range_receiver.utils.error_codes import ErrorCode, StructuredError
from range_receiver.utils.sample_parser import SampleParser
from range_receiver.utils.time_utils import (
    ms_to_datetime,
    ms_to_iso,
    normalize_timestamp_ms,
    now_ms,
    parse_timestamp_ms,
    utc_now,
)
from range_receiver.utils.wide_events import WideEvent, log_trip_event, track_operation

__all__ = [
    "ErrorCode",
    "StructuredError",
    "SampleParser",
    "ms_to_datetime",
    "ms_to_iso",
    "normalize_timestamp_ms",
    "now_ms",
    "parse_timestamp_ms",
    "utc_now",
    "WideEvent",
    "log_trip_event",
    "track_operation",
]
