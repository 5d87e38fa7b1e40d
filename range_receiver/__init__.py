"""Range receiver: live battery range estimation for electric unicycle telemetry."""

__version__ = "0.1.0"
