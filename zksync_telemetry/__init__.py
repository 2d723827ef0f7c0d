"""This module provides anonymous, opt-in telemetry for zkSync tooling.

It resolves user consent once per run, persists an anonymous instance ID and
forwards events to PostHog and errors to Sentry.
"""

__version__ = "0.1.0"

from zksync_telemetry.collectors import ErrorDescribable, ErrorDescription
from zksync_telemetry.config import (
    TelemetryConfig,
    get_telemetry_status,
    is_ci_environment,
    is_test_environment,
    resolve_config,
    set_telemetry_enabled,
)
from zksync_telemetry.errors import (
    AlreadyInitializedError,
    BuildError,
    ConfigError,
    SendError,
    TelemetryError,
)
from zksync_telemetry.keys import TelemetryKeys
from zksync_telemetry.properties import TelemetryProps
from zksync_telemetry.telemetry import (
    Telemetry,
    flush,
    get_telemetry,
    init_telemetry,
    is_telemetry_enabled,
    set_telemetry,
    set_telemetry_log_level,
    track_error,
    track_event,
)


__all__ = [
    "__version__",
    "Telemetry",
    "TelemetryConfig",
    "TelemetryKeys",
    "TelemetryProps",
    "ErrorDescribable",
    "ErrorDescription",
    "TelemetryError",
    "ConfigError",
    "BuildError",
    "SendError",
    "AlreadyInitializedError",
    "init_telemetry",
    "set_telemetry",
    "get_telemetry",
    "track_event",
    "track_error",
    "flush",
    "is_telemetry_enabled",
    "resolve_config",
    "set_telemetry_enabled",
    "get_telemetry_status",
    "is_ci_environment",
    "is_test_environment",
    "set_telemetry_log_level",
]
