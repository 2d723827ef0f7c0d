"""Exceptions raised by the telemetry library."""

from typing import Optional


class TelemetryError(Exception):
    """Base exception for all telemetry errors."""
    pass


class ConfigError(TelemetryError):
    """Raised when the telemetry config file cannot be read or written."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class BuildError(TelemetryError):
    """Raised when a property value cannot be converted or is not object-shaped."""
    pass


class SendError(TelemetryError):
    """Raised when a collector rejected or failed to transmit a payload."""

    def __init__(self, collector: str, message: str):
        self.collector = collector
        self.message = message
        super().__init__(f"{collector}: {message}")


class AlreadyInitializedError(TelemetryError):
    """Raised when the process-wide telemetry instance is set a second time."""
    pass
