"""Collector handles wrapping the upstream telemetry SDKs.

Two kinds of collectors exist:
- analytics collectors receive named events with an object payload (PostHog)
- crash collectors receive error reports (Sentry)

Transport, batching and retries belong to the SDKs. The handles here only
adapt the SDK calls to the interfaces the Telemetry facade expects.
"""

from __future__ import annotations

import atexit
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import sentry_sdk
from posthog import Posthog

logger = logging.getLogger("zksync.telemetry.collectors")

DEFAULT_POSTHOG_HOST = "https://us.i.posthog.com"


def get_posthog_host() -> str:
    return os.environ.get("ZKSYNC_POSTHOG_HOST") or DEFAULT_POSTHOG_HOST


@runtime_checkable
class ErrorDescribable(Protocol):
    """Anything that can describe an error for reporting."""

    def message(self) -> str: ...

    def source_chain(self) -> List[str]: ...


@dataclass(frozen=True)
class ErrorDescription:
    """Error report handed to collectors."""

    error_type: str
    error_message: str
    sources: Tuple[str, ...] = ()
    exception: Optional[BaseException] = field(default=None, compare=False, repr=False)

    def message(self) -> str:
        return self.error_message

    def source_chain(self) -> List[str]:
        return list(self.sources)

    @classmethod
    def from_exception(cls, exc: BaseException) -> ErrorDescription:
        """Describe an exception and the chain of causes behind it.

        Follows __cause__ first, then __context__ unless suppressed.
        """
        sources = []
        seen = {id(exc)}
        current = exc.__cause__ or (None if exc.__suppress_context__ else exc.__context__)
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            sources.append(f"{type(current).__name__}: {current}")
            current = current.__cause__ or (
                None if current.__suppress_context__ else current.__context__
            )

        return cls(
            error_type=type(exc).__name__,
            error_message=str(exc),
            sources=tuple(sources),
            exception=exc,
        )

    @classmethod
    def from_error(cls, error: Any) -> ErrorDescription:
        """Build a description from an exception, an ErrorDescribable or a plain string."""
        if isinstance(error, ErrorDescription):
            return error
        if isinstance(error, BaseException):
            return cls.from_exception(error)
        if isinstance(error, ErrorDescribable):
            return cls(
                error_type=type(error).__name__,
                error_message=str(error.message()),
                sources=tuple(str(s) for s in error.source_chain()),
            )
        return cls(error_type="Error", error_message=str(error))

    def to_exception_properties(self) -> Dict[str, Any]:
        """PostHog properties for an $exception event."""
        exception_list = [
            {
                "type": self.error_type,
                "value": self.error_message,
                "mechanism": {"handled": True, "synthetic": self.exception is None},
            }
        ]
        for source in self.sources:
            exception_list.append({"type": "cause", "value": source})

        return {
            "$exception_type": self.error_type,
            "$exception_message": self.error_message,
            "$exception_list": exception_list,
        }


class AnalyticsCollector(Protocol):
    """Receives named events. send_event raises on failure."""

    name: str

    def send_event(self, event_name: str, properties: Dict[str, Any]) -> None: ...

    def flush(self) -> None: ...


class CrashCollector(Protocol):
    """Receives error reports. Capture is fire-and-forget."""

    name: str

    def send_error(self, description: ErrorDescription) -> None: ...

    def flush(self) -> None: ...


class PostHogCollector:
    """Analytics collector sending events to PostHog."""

    name = "posthog"

    def __init__(
        self,
        api_key: str,
        instance_id: str,
        host: Optional[str] = None,
        panic_capture_enabled: bool = False,
        super_properties: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the PostHog client.

        Args:
            api_key: PostHog project API key
            instance_id: Anonymous ID used as distinct_id for every event
            host: PostHog host, defaults to ZKSYNC_POSTHOG_HOST or the US cloud
            panic_capture_enabled: Let PostHog capture uncaught exceptions
            super_properties: Properties PostHog adds to everything it sends,
                autocaptured exceptions included
        """
        self.instance_id = instance_id
        self._client = Posthog(
            project_api_key=api_key,
            host=host or get_posthog_host(),
            debug=os.environ.get("ZKSYNC_TELEMETRY_DEBUG", "").lower() == "on",
            sync_mode=False,
            enable_exception_autocapture=panic_capture_enabled,
            super_properties=super_properties,
        )
        atexit.register(self._shutdown)
        logger.debug(
            f"PostHog collector initialized (exception autocapture: {panic_capture_enabled})"
        )

    def send_event(self, event_name: str, properties: Dict[str, Any]) -> None:
        # The SDK logs and swallows its own errors, returning None instead of a uuid
        message_id = self._client.capture(
            distinct_id=self.instance_id,
            event=event_name,
            properties=properties,
        )
        if message_id is None:
            raise RuntimeError(f"PostHog did not accept event {event_name}")

    def flush(self) -> None:
        self._client.flush()

    def _shutdown(self) -> None:
        try:
            self._client.shutdown()
        except Exception as e:
            logger.debug(f"Error in PostHog shutdown: {e}")


class SentryCollector:
    """Crash collector reporting errors to Sentry."""

    name = "sentry"

    def __init__(self, dsn: str, release: str, tags: Optional[Dict[str, str]] = None):
        """Initialize the Sentry SDK and tag the scope.

        Args:
            dsn: Sentry DSN
            release: Release reported with every error
            tags: Tags set on the global scope
        """
        self._guard = sentry_sdk.init(dsn=dsn, release=release)
        for key, value in (tags or {}).items():
            sentry_sdk.set_tag(key, value)
        logger.debug("Sentry collector initialized")

    def send_error(self, description: ErrorDescription) -> None:
        if description.exception is not None:
            sentry_sdk.capture_exception(description.exception)
            return

        with sentry_sdk.new_scope() as scope:
            if description.sources:
                scope.set_extra("source_chain", description.source_chain())
            sentry_sdk.capture_message(
                f"{description.error_type}: {description.error_message}", level="error"
            )

    def flush(self) -> None:
        sentry_sdk.flush()
