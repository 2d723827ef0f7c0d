"""Telemetry configuration and consent resolution.

The config file is a small JSON document holding the user's persisted choice
and the anonymous instance identifier:

    {"enabled": false, "instance_id": "1f0c..."}

Telemetry is opt-in. It is only enabled by an explicit environment opt-in or a
persisted opt-in record, and it is always disabled under tests and CI.
"""

from __future__ import annotations

import logging
import os
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from zksync_telemetry.errors import ConfigError

logger = logging.getLogger("zksync.telemetry.config")

CONFIG_FILE_NAME = "telemetry.json"

# Any of these being set means we are running under CI
CI_ENV_VARS = [
    "CI",
    "CONTINUOUS_INTEGRATION",
    "BUILD_NUMBER",
    "GITHUB_ACTIONS",
    "GITLAB_CI",
    "CIRCLECI",
    "TRAVIS",
    "JENKINS_HOME",
]

# Set by pytest for the duration of each test, or explicitly by other runners
TEST_ENV_VARS = [
    "PYTEST_CURRENT_TEST",
    "ZKSYNC_TELEMETRY_TEST",
]

OPT_OUT_ENV_VARS = [
    "DO_NOT_TRACK",
    "ZKSYNC_TELEMETRY_DISABLED",
]

OPT_IN_ENV_VAR = "ZKSYNC_TELEMETRY_ENABLED"

PathLike = Union[str, Path]


def _env_is_set(name: str) -> bool:
    """Check whether an environment variable is set to anything but an explicit false."""
    value = os.environ.get(name, "").strip().lower()
    return value not in ("", "0", "false", "no", "off")


def _env_is_truthy(name: str) -> bool:
    """Check whether an environment variable is set to an explicit true."""
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def is_ci_environment() -> bool:
    """Check if running in a CI/CD environment.

    Returns:
        True if running in CI
    """
    return any(_env_is_set(var) for var in CI_ENV_VARS)


def is_test_environment() -> bool:
    """Check if running under a test runner or in CI.

    Returns:
        True if telemetry must be forced off
    """
    return is_ci_environment() or any(_env_is_set(var) for var in TEST_ENV_VARS)


def is_opted_out() -> bool:
    """Check if the user opted out through the environment."""
    return any(_env_is_set(var) for var in OPT_OUT_ENV_VARS)


def is_opted_in() -> bool:
    """Check if the user opted in through the environment."""
    return _env_is_truthy(OPT_IN_ENV_VAR)


def default_config_path(config_name: str) -> Path:
    """Get the default path of the config file for an application.

    Args:
        config_name: Directory name identifying the application

    Returns:
        Path to <config dir>/<config_name>/telemetry.json
    """
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    config_home = Path(xdg_config_home) if xdg_config_home else Path.home() / ".config"
    return config_home / config_name / CONFIG_FILE_NAME


def resolve_config_path(config_name: str, custom_path: Optional[PathLike] = None) -> Path:
    """Pick the caller's path when given, otherwise the default one."""
    if custom_path is not None:
        return Path(custom_path)
    return default_config_path(config_name)


def is_valid_instance_id(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(value)
    except (ValueError, TypeError, AttributeError):
        return False
    return True


class TelemetryConfigFile(BaseModel):
    """On-disk telemetry config. Unknown fields are kept on save."""

    model_config = ConfigDict(extra="allow")

    enabled: bool = False
    instance_id: Optional[str] = None

    @field_validator("enabled", mode="before")
    @classmethod
    def _only_explicit_opt_in(cls, value: Any) -> bool:
        # Anything but a JSON boolean counts as no recorded choice
        return value if isinstance(value, bool) else False

    @field_validator("instance_id", mode="before")
    @classmethod
    def _drop_non_string_id(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None


def load_config_file(path: Path) -> Optional[TelemetryConfigFile]:
    """Load the config file, treating a missing or corrupt file as absent.

    Args:
        path: Location of the config file

    Returns:
        The parsed file, or None if it does not exist or cannot be parsed
    """
    if not path.exists():
        return None

    try:
        return TelemetryConfigFile.model_validate_json(path.read_bytes())
    except OSError as e:
        logger.warning(f"Could not read telemetry config {path}: {e}")
    except ValidationError as e:
        logger.warning(f"Ignoring malformed telemetry config {path}: {e.error_count()} error(s)")
    except ValueError as e:
        logger.warning(f"Ignoring undecodable telemetry config {path}: {e}")
    return None


def save_config_file(path: Path, config_file: TelemetryConfigFile) -> None:
    """Write the config file, creating parent directories as needed.

    Raises:
        ConfigError: If the file cannot be written
    """
    tmp_name: Optional[str] = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", dir=path.parent, prefix=path.name + ".", suffix=".tmp", delete=False
        ) as tmp_file:
            tmp_name = tmp_file.name
            tmp_file.write(config_file.model_dump_json(indent=2))
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise ConfigError(f"Could not write telemetry config: {e}", path=str(path)) from e
    finally:
        # Only set when the rename did not happen
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass


@dataclass(frozen=True)
class TelemetryConfig:
    """Resolved telemetry configuration for one application run."""

    enabled: bool = False  # Default to opt-in
    instance_id: str = ""
    config_path: Optional[Path] = None
    persisted: bool = False

    @classmethod
    def resolve(
        cls, config_name: str, custom_path: Optional[PathLike] = None
    ) -> TelemetryConfig:
        """Load or create the config file and decide whether telemetry is enabled.

        Never raises for file problems: a corrupt file is regenerated and an
        unwritable location results in an in-memory config.

        Args:
            config_name: Directory name identifying the application
            custom_path: Explicit config file location overriding the default

        Returns:
            The resolved configuration
        """
        path = resolve_config_path(config_name, custom_path)
        config_file = load_config_file(path)

        needs_save = False
        if config_file is None:
            config_file = TelemetryConfigFile()
            needs_save = True

        if not is_valid_instance_id(config_file.instance_id):
            config_file.instance_id = str(uuid.uuid4())
            logger.debug(f"Generated new instance ID: {config_file.instance_id}")
            needs_save = True

        persisted = True
        if needs_save:
            try:
                save_config_file(path, config_file)
            except ConfigError as e:
                logger.warning(f"{e}; using in-memory telemetry config")
                persisted = False

        enabled = cls._resolve_enabled(config_file)
        logger.info(f"Telemetry {'enabled' if enabled else 'disabled'} (config: {path})")

        return cls(
            enabled=enabled,
            instance_id=config_file.instance_id,
            config_path=path,
            persisted=persisted,
        )

    @staticmethod
    def _resolve_enabled(config_file: TelemetryConfigFile) -> bool:
        if is_test_environment():
            return False
        if is_opted_out():
            return False
        if is_opted_in():
            return True
        return config_file.enabled


def resolve_config(config_name: str, custom_path: Optional[PathLike] = None) -> TelemetryConfig:
    """Resolve the telemetry configuration. See TelemetryConfig.resolve."""
    return TelemetryConfig.resolve(config_name, custom_path)


def set_telemetry_enabled(
    config_name: str, enabled: bool, custom_path: Optional[PathLike] = None
) -> bool:
    """Persist the user's telemetry choice.

    The instance ID and any unknown fields already in the file are kept.

    Args:
        config_name: Directory name identifying the application
        enabled: Whether to enable telemetry
        custom_path: Explicit config file location overriding the default

    Returns:
        bool: True if the stored choice changed, False if it was already set

    Raises:
        ConfigError: If the file cannot be written
    """
    path = resolve_config_path(config_name, custom_path)
    config_file = load_config_file(path) or TelemetryConfigFile()

    changed = config_file.enabled != enabled or not path.exists()
    config_file.enabled = enabled
    if not is_valid_instance_id(config_file.instance_id):
        config_file.instance_id = str(uuid.uuid4())

    save_config_file(path, config_file)
    logger.info(f"Telemetry {'enabled' if enabled else 'disabled'} in {path}")
    return changed


def get_telemetry_status(
    config_name: str, custom_path: Optional[PathLike] = None
) -> Dict[str, Any]:
    """Get current telemetry status and configuration.

    Returns:
        Dictionary with telemetry status information
    """
    config = TelemetryConfig.resolve(config_name, custom_path)

    # Determine why telemetry is disabled (if it is)
    disabled_reason: Optional[str] = None
    if not config.enabled:
        if is_test_environment():
            disabled_reason = "Test or CI environment"
        elif is_opted_out():
            disabled_reason = "Opt-out environment variable"
        else:
            disabled_reason = f"Not enabled in {config.config_path}"

    return {
        "enabled": config.enabled,
        "disabled_reason": disabled_reason,
        "config_path": str(config.config_path),
        "instance_id": config.instance_id if config.enabled else None,
        "is_ci": is_ci_environment(),
    }
