"""Telemetry facade for collecting anonymous usage data and error reports.

This module provides a unified interface over the PostHog (analytics) and
Sentry (crash reporting) collectors, plus the process-wide telemetry slot.
"""

from __future__ import annotations

import logging
import os
import platform
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from zksync_telemetry import __version__
from zksync_telemetry.collectors import (
    AnalyticsCollector,
    CrashCollector,
    ErrorDescription,
    PostHogCollector,
    SentryCollector,
)
from zksync_telemetry.config import TelemetryConfig
from zksync_telemetry.errors import AlreadyInitializedError, BuildError, SendError
from zksync_telemetry.keys import TelemetryKeys
from zksync_telemetry.properties import TelemetryProps

TELEMETRY_LOGGERS = [
    "zksync.telemetry",
    "posthog",
    "sentry_sdk.errors",
]

EXCEPTION_EVENT = "$exception"


def set_telemetry_log_level(level: Optional[int] = None) -> None:
    """Set the logging level for telemetry loggers to reduce console output.

    By default, checks the ZKSYNC_TELEMETRY_LOG_LEVEL environment variable
    (DEBUG, INFO, WARNING or ERROR) and falls back to WARNING, so telemetry
    logs only show up when explicitly requested.

    Args:
        level: The logging level to set (overrides environment variable if provided)
    """
    if level is None:
        env_level = os.environ.get("ZKSYNC_TELEMETRY_LOG_LEVEL", "WARNING").upper()
        level = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
        }.get(env_level, logging.WARNING)

    for logger_name in TELEMETRY_LOGGERS:
        logging.getLogger(logger_name).setLevel(level)


# Configure logging at import time, before any telemetry logging happens
set_telemetry_log_level()

logger = logging.getLogger("zksync.telemetry")

Properties = Union[TelemetryProps, Mapping, None]


def get_platform() -> str:
    """Host operating system identifier, e.g. "linux", "darwin" or "windows"."""
    return platform.system().lower() or "unknown"


def build_default_properties(app_name: str, app_version: str) -> Dict[str, Any]:
    return {
        "app": app_name,
        "app_version": app_version,
        "platform": get_platform(),
        "zksync_telemetry_version": __version__,
    }


class Telemetry:
    """Sends events and errors to the configured collectors.

    When the resolved config is disabled no collector is ever created and
    every tracking call returns immediately.
    """

    def __init__(
        self,
        app_name: str,
        app_version: str,
        config: TelemetryConfig,
        analytics: Optional[List[AnalyticsCollector]] = None,
        crash: Optional[CrashCollector] = None,
    ):
        """Initialize the facade from a resolved config and collector handles.

        Args:
            app_name: Name of the embedding application
            app_version: Version of the embedding application
            config: Resolved telemetry configuration
            analytics: Analytics collectors receiving events
            crash: Crash collector receiving errors
        """
        self.app_name = app_name
        self.app_version = app_version
        self.config = config

        if config.enabled:
            self._analytics: List[AnalyticsCollector] = list(analytics or [])
            self._crash = crash
        else:
            self._analytics = []
            self._crash = None

    @classmethod
    def create(
        cls,
        app_name: str,
        app_version: str,
        config_name: str,
        posthog_key: Optional[str] = None,
        sentry_dsn: Optional[str] = None,
        custom_config_path: Optional[Union[str, Path]] = None,
        keys: Optional[TelemetryKeys] = None,
    ) -> Telemetry:
        """Resolve the config and build the collectors for the given credentials.

        Args:
            app_name: Name of the embedding application
            app_version: Version of the embedding application
            config_name: Directory name of the config file
            posthog_key: PostHog project API key, enables the analytics collector
            sentry_dsn: Sentry DSN, enables the crash collector
            custom_config_path: Explicit config file location
            keys: Credentials used where posthog_key or sentry_dsn is not given

        Returns:
            A ready Telemetry instance
        """
        if keys is not None:
            posthog_key = posthog_key or keys.posthog_key
            sentry_dsn = sentry_dsn or keys.sentry_dsn

        config = TelemetryConfig.resolve(config_name, custom_config_path)
        if not config.enabled:
            return cls(app_name, app_version, config)

        defaults = build_default_properties(app_name, app_version)

        analytics: List[AnalyticsCollector] = []
        if posthog_key:
            try:
                analytics.append(
                    PostHogCollector(
                        api_key=posthog_key,
                        instance_id=config.instance_id,
                        panic_capture_enabled=not sentry_dsn,
                        super_properties=defaults,
                    )
                )
            except Exception as e:
                logger.warning(f"Failed to initialize PostHog: {e}")

        crash: Optional[CrashCollector] = None
        if sentry_dsn:
            try:
                crash = SentryCollector(
                    dsn=sentry_dsn,
                    release=__version__,
                    tags={key: str(value) for key, value in defaults.items()},
                )
            except Exception as e:
                logger.warning(f"Failed to initialize Sentry: {e}")

        return cls(app_name, app_version, config, analytics=analytics, crash=crash)

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled

    @property
    def instance_id(self) -> str:
        return self.config.instance_id

    def default_properties(self) -> Dict[str, Any]:
        """Properties attached to every event and error report."""
        return build_default_properties(self.app_name, self.app_version)

    def _with_default_properties(self, properties: Dict[str, Any]) -> Dict[str, Any]:
        # Defaults are applied last so callers cannot override them
        payload = dict(properties)
        payload.update(self.default_properties())
        return payload

    def _to_payload(self, properties: Properties) -> Dict[str, Any]:
        if properties is None:
            return {}
        if not isinstance(properties, TelemetryProps):
            properties = TelemetryProps.from_value(properties)
        try:
            return properties.finalize_as_object()
        except BuildError as e:
            logger.warning(f"Dropping event properties: {e}")
            return {}

    def _send(self, event_name: str, payload: Dict[str, Any]) -> None:
        """Deliver to every analytics collector, then raise the first failure."""
        first_error: Optional[SendError] = None
        for collector in self._analytics:
            try:
                collector.send_event(event_name, payload)
            except Exception as e:
                logger.debug(f"Failed to send {event_name} to {collector.name}: {e}")
                if first_error is None:
                    first_error = SendError(collector.name, str(e))

        if first_error is not None:
            raise first_error

    def track_event(self, event_name: str, properties: Properties = None) -> None:
        """Send an event with properties to every analytics collector.

        Args:
            event_name: Name of the event
            properties: Event properties (must not contain sensitive data)

        Raises:
            SendError: If a collector failed, after all collectors were attempted
            BuildError: If a mapping holds values that cannot be converted
        """
        if not self.config.enabled:
            return

        payload = self._with_default_properties(self._to_payload(properties))
        logger.debug(f"Tracking event: {event_name}")
        self._send(event_name, payload)

    def track_error(self, error: Any) -> None:
        """Report an error.

        Sentry, when configured, is the only destination. Otherwise the error
        is sent to the analytics collectors as an $exception event.

        Args:
            error: An exception, an ErrorDescribable or a message

        Raises:
            SendError: If an analytics collector failed to send the exception event
        """
        if not self.config.enabled:
            return

        description = ErrorDescription.from_error(error)

        if self._crash is not None:
            try:
                self._crash.send_error(description)
            except Exception as e:
                raise SendError(self._crash.name, str(e)) from e
            return

        if self._analytics:
            payload = self._with_default_properties(description.to_exception_properties())
            self._send(EXCEPTION_EVENT, payload)

    def flush(self) -> bool:
        """Flush pending data in every collector.

        Returns:
            bool: True if all collectors flushed, False otherwise
        """
        if not self.config.enabled:
            return False

        success = True
        collectors: List[Any] = list(self._analytics)
        if self._crash is not None:
            collectors.append(self._crash)
        for collector in collectors:
            try:
                collector.flush()
            except Exception as e:
                logger.debug(f"Failed to flush {collector.name}: {e}")
                success = False
        return success


# Process-wide telemetry instance, written once
_telemetry: Optional[Telemetry] = None
_telemetry_lock = threading.Lock()


def set_telemetry(telemetry: Telemetry) -> None:
    """Store the process-wide telemetry instance.

    Raises:
        AlreadyInitializedError: If an instance was already stored
    """
    global _telemetry

    with _telemetry_lock:
        if _telemetry is not None:
            raise AlreadyInitializedError("Telemetry is already set")
        _telemetry = telemetry


def init_telemetry(
    app_name: str,
    app_version: str,
    config_name: str,
    posthog_key: Optional[str] = None,
    sentry_dsn: Optional[str] = None,
    custom_config_path: Optional[Union[str, Path]] = None,
    keys: Optional[TelemetryKeys] = None,
) -> Telemetry:
    """Create the process-wide telemetry instance. See Telemetry.create.

    Raises:
        AlreadyInitializedError: If telemetry was already initialized
    """
    telemetry = Telemetry.create(
        app_name,
        app_version,
        config_name,
        posthog_key=posthog_key,
        sentry_dsn=sentry_dsn,
        custom_config_path=custom_config_path,
        keys=keys,
    )
    set_telemetry(telemetry)
    return telemetry


def get_telemetry() -> Optional[Telemetry]:
    """Get the process-wide telemetry instance, or None before initialization."""
    return _telemetry


def track_event(event_name: str, properties: Properties = None) -> None:
    """Track an event with the process-wide instance, if any.

    Failures are logged, never raised.
    """
    telemetry = get_telemetry()
    if telemetry is None:
        return
    try:
        telemetry.track_event(event_name, properties)
    except Exception as e:
        logger.debug(f"Error in track_event: {e}")


def track_error(error: Any) -> None:
    """Report an error with the process-wide instance, if any.

    Failures are logged, never raised.
    """
    telemetry = get_telemetry()
    if telemetry is None:
        return
    try:
        telemetry.track_error(error)
    except Exception as e:
        logger.debug(f"Error in track_error: {e}")


def flush() -> bool:
    """Flush the process-wide instance.

    Returns:
        bool: True if successful, False otherwise
    """
    telemetry = get_telemetry()
    if telemetry is None:
        return False
    return telemetry.flush()


def is_telemetry_enabled() -> bool:
    """Check if the process-wide instance exists and is enabled."""
    telemetry = get_telemetry()
    return telemetry is not None and telemetry.is_enabled
