"""
Configuration management for the Vertical Tabs beta helper.

This module implements the AppConfig Pydantic model and configuration loading.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (~/.config/vtbeta-helper/config.yml or --config path)
3. Environment variables (VTBETA_* prefix, __ for nesting)
4. Command-line overrides (highest precedence)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from vtbeta_helper import __version__

DEFAULT_CONFIG_PATH = Path("~/.config/vtbeta-helper/config.yml")
DEFAULT_ENV_PREFIX = "VTBETA_"

# =============================================================================
# Remote API Configuration
# =============================================================================


class ApiConfig(BaseModel):
    """Build service connection settings.

    Attributes:
        server: Host name of the build service.
        token: Access token (normalized form, 16 characters).
        user_agent_version: Version reported in the User-Agent header.
        timeout_seconds: Per-request timeout.
    """

    server: str = Field(
        default="vt-beta.example.com",
        description="Host name of the build service",
    )
    token: str = Field(
        default="",
        description="Access token for the build service",
    )
    user_agent_version: str = Field(
        default=__version__,
        description="Version reported in the User-Agent header",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout in seconds",
    )

    @property
    def base_url(self) -> str:
        """Base URL of the user API."""
        return f"https://{self.server}/api/v1/user"


# =============================================================================
# Install Configuration
# =============================================================================


class InstallConfig(BaseModel):
    """Where and what to install.

    Attributes:
        plugins_dir: Host plugin folder that contains the install target.
        plugin_id: Identifier (and folder name) of the managed plugin.
        settings_file: Persisted settings file carried across installs.
    """

    plugins_dir: str = Field(
        default=".obsidian/plugins",
        description="Host plugin folder",
    )
    plugin_id: str = Field(
        default="vertical-tabs",
        description="Identifier of the managed plugin",
    )
    settings_file: str = Field(
        default="data.json",
        description="Settings file preserved across installs",
    )


# =============================================================================
# Retry Configuration
# =============================================================================


class RetrySettings(BaseModel):
    """Retry budget for one kind of remote call.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        initial_delay_seconds: Base delay for exponential backoff.
    """

    max_retries: int = Field(default=5, ge=0, description="Retries after the first attempt")
    initial_delay_seconds: float = Field(
        default=1.0, ge=0, description="Base delay for exponential backoff"
    )


class RetryConfig(BaseModel):
    """Retry budgets per remote operation."""

    download: RetrySettings = Field(
        default_factory=lambda: RetrySettings(max_retries=5, initial_delay_seconds=1.0),
        description="Build download retries",
    )
    listing: RetrySettings = Field(
        default_factory=lambda: RetrySettings(max_retries=10, initial_delay_seconds=1.0),
        description="Build listing and subscription refresh retries",
    )
    auth: RetrySettings = Field(
        default_factory=lambda: RetrySettings(max_retries=5, initial_delay_seconds=0.5),
        description="Token validation retries",
    )


# =============================================================================
# Update Checker Configuration
# =============================================================================


class UpdatesConfig(BaseModel):
    """Background update checker settings.

    Attributes:
        auto_update: Install new builds automatically.
        check_interval_hours: Hours between two update checks.
        show_update_notification: Announce new builds when not auto-updating.
    """

    auto_update: bool = Field(default=True, description="Install new builds automatically")
    check_interval_hours: float = Field(
        default=1.0, description="Hours between two update checks"
    )
    show_update_notification: bool = Field(
        default=True, description="Announce new builds when not auto-updating"
    )

    @field_validator("check_interval_hours")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        """Reject non-positive check intervals."""
        if v <= 0:
            raise ValueError(f"check_interval_hours must be positive, got {v}")
        return v


# =============================================================================
# Storage Configuration
# =============================================================================


class StorageConfig(BaseModel):
    """Locations of the persisted local state used by migrations.

    Attributes:
        metadata_db_path: SQLite database holding structured metadata records.
        local_storage_path: JSON file holding legacy flat string keys.
    """

    metadata_db_path: str = Field(
        default="~/.local/share/vtbeta-helper/metadata.db",
        description="SQLite metadata database path",
    )
    local_storage_path: str = Field(
        default="~/.local/share/vtbeta-helper/local_storage.json",
        description="Legacy key-value string store path",
    )


# =============================================================================
# Host Configuration
# =============================================================================


class HostConfig(BaseModel):
    """Commands used to ask the host application to reload the plugin.

    Each command is an argv list; "{plugin_id}" and "{plugin_dir}" are
    substituted before execution. Empty means no command is run.
    """

    disable_command: list[str] = Field(
        default_factory=list,
        description="Command that disables the plugin in the host",
    )
    enable_command: list[str] = Field(
        default_factory=list,
        description="Command that enables (reloads) the plugin in the host",
    )
    command_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Timeout for host commands"
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        log_to_console: Whether to log to stderr.
        json_format: Emit JSON records instead of plain text.
    """

    level: str = Field(default="info", description="Log level")
    log_to_console: bool = Field(default=True, description="Whether to log to stderr")
    json_format: bool = Field(default=False, description="Emit JSON log records")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        api: Build service connection settings.
        install: Install target settings.
        retry: Retry budgets per remote operation.
        updates: Background update checker settings.
        storage: Persisted local state locations.
        host: Host reload commands.
        logging: Logging configuration.
    """

    api: ApiConfig = Field(default_factory=ApiConfig, description="Build service settings")
    install: InstallConfig = Field(
        default_factory=InstallConfig, description="Install target settings"
    )
    retry: RetryConfig = Field(default_factory=RetryConfig, description="Retry budgets")
    updates: UpdatesConfig = Field(
        default_factory=UpdatesConfig, description="Update checker settings"
    )
    storage: StorageConfig = Field(
        default_factory=StorageConfig, description="Persisted local state"
    )
    host: HostConfig = Field(default_factory=HostConfig, description="Host reload commands")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, list, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    # Comma-separated lists (e.g. host commands)
    if "," in value:
        return [item.strip() for item in value.split(",")]

    return value


# String fields whose values may look numeric (e.g. user_agent_version=1.0)
_STRING_ENV_KEYS = frozenset({"token", "server", "user_agent_version", "plugin_id"})


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Nested keys use a double underscore separator, e.g.
    VTBETA_INSTALL__PLUGINS_DIR=/vault/.obsidian/plugins.

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        if parts[-1] in _STRING_ENV_KEYS:
            current[parts[-1]] = value
        else:
            current[parts[-1]] = _parse_env_value(value)

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    overrides: dict[str, Any] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, the default
            path is used when it exists.
        env_prefix: Prefix for environment variables.
        overrides: Nested dictionary of command-line overrides.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If an explicitly given config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(overrides={"install": {"plugins_dir": "/vault/plugins"}})
        >>> config.install.plugin_id
        'vertical-tabs'
    """
    config_dict: dict[str, Any] = {}

    if config_path is None:
        default_path = DEFAULT_CONFIG_PATH.expanduser()
        if default_path.exists():
            config_path = default_path
    else:
        config_path = Path(config_path).expanduser()

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)

    return AppConfig(**config_dict)
