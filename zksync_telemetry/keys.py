"""Collector credentials supplied by the embedding application."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

POSTHOG_KEY_ENV_VAR = "ZKSYNC_POSTHOG_KEY"
SENTRY_DSN_ENV_VAR = "ZKSYNC_SENTRY_DSN"


@dataclass(frozen=True)
class TelemetryKeys:
    """API key for PostHog and DSN for Sentry. Either may be absent."""

    posthog_key: Optional[str] = None
    sentry_dsn: Optional[str] = None

    @classmethod
    def from_env(cls) -> TelemetryKeys:
        """Load keys from environment variables. Empty values count as absent."""
        return cls(
            posthog_key=os.environ.get(POSTHOG_KEY_ENV_VAR) or None,
            sentry_dsn=os.environ.get(SENTRY_DSN_ENV_VAR) or None,
        )
