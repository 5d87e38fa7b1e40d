"""
Custom exceptions for the range receiver.

The estimation engine itself never raises: it reports "cannot answer" through
None results and estimate statuses. These exceptions cover the edges around
it (inbound payloads, configuration, persisted trip state and the database).
"""


class RangeTrackerError(Exception):
    """Base exception for all range receiver errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class DatabaseError(RangeTrackerError):
    """Database operation failed."""

    pass


class SampleParsingError(RangeTrackerError):
    """Failed to parse an inbound telemetry sample."""

    def __init__(self, message: str, field: str = None, value: str = None):
        details = {}
        if field:
            details['field'] = field
        if value is not None:
            details['value'] = value
        super().__init__(message, details)
        self.field = field
        self.value = value


class TripStateError(RangeTrackerError):
    """Persisted trip state could not be restored."""

    def __init__(self, message: str, trip_id: int = None, key: str = None):
        details = {}
        if trip_id:
            details['trip_id'] = trip_id
        if key:
            details['key'] = key
        super().__init__(message, details)
        self.trip_id = trip_id
        self.key = key


class ConfigurationError(RangeTrackerError):
    """Invalid or missing configuration."""

    def __init__(self, message: str, config_key: str = None):
        details = {}
        if config_key:
            details['config_key'] = config_key
        super().__init__(message, details)
        self.config_key = config_key
