"""
Error Code Taxonomy for the range receiver

Structured error codes for API responses, alerting and log filtering.

Error Code Format:
- E001-E099: Validation errors (bad request data)
- E200-E299: Database errors
- E300-E399: Parsing errors (telemetry payloads, persisted trip state)
- E400-E499: Business logic errors (trip state, configuration)
- E500-E599: System errors
"""

from enum import Enum
from typing import Optional

from sqlalchemy.exc import OperationalError

from range_receiver.exceptions import (
    ConfigurationError,
    DatabaseError,
    SampleParsingError,
    TripStateError,
)


class ErrorCategory(str, Enum):
    """High-level error categories for grouping and alerting."""

    VALIDATION = "validation"
    DATABASE = "database"
    PARSING = "parsing"
    BUSINESS_LOGIC = "business_logic"
    SYSTEM = "system"


class ErrorCode(str, Enum):
    """Structured error codes with consistent format."""

    # Validation Errors (E001-E099)
    E001_EMPTY_PAYLOAD = "E001"  # Request body missing or empty
    E002_MISSING_REQUIRED_FIELD = "E002"  # Required telemetry field missing
    E003_INVALID_DATA_TYPE = "E003"  # Field has wrong data type
    E004_BATCH_TOO_LARGE = "E004"  # Too many samples in one request

    # Database Errors (E200-E299)
    E200_DB_CONNECTION_FAILED = "E200"  # Database unreachable or connection dropped
    E201_DB_WRITE_FAILED = "E201"

    # Parsing Errors (E300-E399)
    E300_SAMPLE_PARSE_FAILED = "E300"  # Telemetry sample could not be parsed
    E303_JSON_DECODE_ERROR = "E303"
    E310_TRIP_STATE_CORRUPT = "E310"  # Persisted trip snapshot could not be restored

    # Business Logic Errors (E400-E499)
    E402_NO_TELEMETRY_DATA = "E402"  # No sample received yet
    E410_INVALID_CONFIGURATION = "E410"  # Bad battery config or algorithm name

    # System Errors (E500-E599)
    E500_INTERNAL_SERVER_ERROR = "E500"


ERROR_METADATA = {
    ErrorCode.E001_EMPTY_PAYLOAD: {
        "category": ErrorCategory.VALIDATION,
        "description": "Request body missing or empty",
        "severity": "warning",
        "alert": False,
        "http_status": 400,
    },
    ErrorCode.E002_MISSING_REQUIRED_FIELD: {
        "category": ErrorCategory.VALIDATION,
        "description": "Required telemetry field missing",
        "severity": "warning",
        "alert": False,
        "http_status": 400,
    },
    ErrorCode.E003_INVALID_DATA_TYPE: {
        "category": ErrorCategory.VALIDATION,
        "description": "Field has wrong data type",
        "severity": "warning",
        "alert": False,
        "http_status": 400,
    },
    ErrorCode.E004_BATCH_TOO_LARGE: {
        "category": ErrorCategory.VALIDATION,
        "description": "Too many samples in one request",
        "severity": "warning",
        "alert": False,
        "http_status": 413,
    },
    ErrorCode.E200_DB_CONNECTION_FAILED: {
        "category": ErrorCategory.DATABASE,
        "description": "Database connection failed",
        "severity": "critical",
        "alert": True,
        "http_status": 503,
    },
    ErrorCode.E201_DB_WRITE_FAILED: {
        "category": ErrorCategory.DATABASE,
        "description": "Database write failed",
        "severity": "error",
        "alert": True,
        "http_status": 500,
    },
    ErrorCode.E300_SAMPLE_PARSE_FAILED: {
        "category": ErrorCategory.PARSING,
        "description": "Failed to parse telemetry sample",
        "severity": "warning",
        "alert": False,  # Common with flaky bridges
        "http_status": 400,
    },
    ErrorCode.E303_JSON_DECODE_ERROR: {
        "category": ErrorCategory.PARSING,
        "description": "JSON decoding failed",
        "severity": "warning",
        "alert": False,
        "http_status": 400,
    },
    ErrorCode.E310_TRIP_STATE_CORRUPT: {
        "category": ErrorCategory.PARSING,
        "description": "Persisted trip snapshot could not be restored",
        "severity": "error",
        "alert": True,
        "http_status": 500,
    },
    ErrorCode.E402_NO_TELEMETRY_DATA: {
        "category": ErrorCategory.BUSINESS_LOGIC,
        "description": "No telemetry received yet",
        "severity": "info",
        "alert": False,
        "http_status": 404,
    },
    ErrorCode.E410_INVALID_CONFIGURATION: {
        "category": ErrorCategory.BUSINESS_LOGIC,
        "description": "Invalid battery or estimator configuration",
        "severity": "critical",
        "alert": True,
        "http_status": 500,
    },
    ErrorCode.E500_INTERNAL_SERVER_ERROR: {
        "category": ErrorCategory.SYSTEM,
        "description": "Unhandled internal error",
        "severity": "critical",
        "alert": True,
        "http_status": 500,
    },
}


def get_error_metadata(error_code: ErrorCode) -> dict:
    """Get metadata for an error code."""
    return ERROR_METADATA.get(
        error_code,
        {
            "category": ErrorCategory.SYSTEM,
            "description": "Unknown error",
            "severity": "error",
            "alert": True,
            "http_status": 500,
        },
    )


def code_for_exception(error: Exception) -> ErrorCode:
    """Map a receiver exception to its error code."""
    if isinstance(error, SampleParsingError):
        if error.field and error.message.startswith("Missing required field"):
            return ErrorCode.E002_MISSING_REQUIRED_FIELD
        if error.field:
            return ErrorCode.E003_INVALID_DATA_TYPE
        return ErrorCode.E300_SAMPLE_PARSE_FAILED
    if isinstance(error, TripStateError):
        return ErrorCode.E310_TRIP_STATE_CORRUPT
    if isinstance(error, ConfigurationError):
        return ErrorCode.E410_INVALID_CONFIGURATION
    if isinstance(error, DatabaseError):
        if isinstance(error.__cause__, OperationalError):
            return ErrorCode.E200_DB_CONNECTION_FAILED
        return ErrorCode.E201_DB_WRITE_FAILED
    return ErrorCode.E500_INTERNAL_SERVER_ERROR


class StructuredError:
    """Structured error with code, category, and metadata."""

    def __init__(self, code: ErrorCode, message: str, exception: Optional[Exception] = None, **context):
        """
        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            exception: Original exception (if applicable)
            **context: Additional context fields (field, trip_start, etc.)
        """
        self.code = code
        self.message = message
        self.exception = exception
        self.context = context
        self.metadata = get_error_metadata(code)

    @classmethod
    def from_exception(cls, error: Exception, **context) -> "StructuredError":
        merged = dict(getattr(error, "details", None) or {})
        merged.update(context)
        message = getattr(error, "message", None) or str(error)
        return cls(code_for_exception(error), message, exception=error, **merged)

    @property
    def http_status(self) -> int:
        return self.metadata["http_status"]

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        error_dict = {
            "code": self.code.value,
            "category": self.metadata["category"].value,
            "message": self.message,
            "severity": self.metadata["severity"],
            "alert": self.metadata["alert"],
        }

        if self.exception:
            error_dict["exception_type"] = type(self.exception).__name__
            error_dict["exception_message"] = str(self.exception)

        if self.context:
            error_dict["context"] = self.context

        return error_dict

    def to_response(self) -> dict:
        """Body for an API error response."""
        body = {"error": self.message, "code": self.code.value}
        if self.context:
            body["details"] = self.context
        return body

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"
