"""Shared fixtures for telemetry tests."""

from unittest.mock import MagicMock

import pytest

from zksync_telemetry import config as config_module
from zksync_telemetry import telemetry as telemetry_module
from zksync_telemetry.config import CI_ENV_VARS, OPT_IN_ENV_VAR, OPT_OUT_ENV_VARS, TelemetryConfig


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Remove consent-related environment variables and isolate the config dir."""
    for var in CI_ENV_VARS + OPT_OUT_ENV_VARS + [OPT_IN_ENV_VAR, "ZKSYNC_TELEMETRY_TEST"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))


@pytest.fixture(autouse=True)
def reset_global_telemetry(monkeypatch):
    """Start every test with an empty process-wide telemetry slot."""
    monkeypatch.setattr(telemetry_module, "_telemetry", None)


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "telemetry.json"


@pytest.fixture
def outside_tests(monkeypatch):
    """Pretend we are not running under a test runner so consent is honored."""
    monkeypatch.setattr(config_module, "is_test_environment", lambda: False)


@pytest.fixture
def enabled_config(config_path):
    return TelemetryConfig(
        enabled=True,
        instance_id="0b7e1c3a-58f4-4a52-9f2b-8a7d6f0e4c11",
        config_path=config_path,
        persisted=True,
    )


@pytest.fixture
def disabled_config(config_path):
    return TelemetryConfig(
        enabled=False,
        instance_id="0b7e1c3a-58f4-4a52-9f2b-8a7d6f0e4c11",
        config_path=config_path,
        persisted=True,
    )


@pytest.fixture
def make_collector():
    """Factory for mock analytics collectors, optionally failing on send."""

    def _make(name: str = "posthog", fail_with: Exception = None) -> MagicMock:
        collector = MagicMock()
        collector.name = name
        if fail_with is not None:
            collector.send_event.side_effect = fail_with
        return collector

    return _make


@pytest.fixture
def analytics_collector(make_collector):
    return make_collector()


@pytest.fixture
def crash_collector():
    collector = MagicMock()
    collector.name = "sentry"
    return collector
