"""
Configuration management for the OpenCode bridge.

Provides YAML-based configuration with environment and CLI overrides,
configuration hierarchy (CLI > environment > YAML > defaults), and validation.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_OVERRIDES: dict[str, str] = {
    "OPENCODE_BASE_URL": "base_url",
    "OPENCODE_SERVER_USERNAME": "username",
    "OPENCODE_SERVER_PASSWORD": "password",
    "OPENCODE_AUTO_SERVE": "auto_serve",
    "OPENCODE_STARTUP_TIMEOUT": "startup_timeout",
}


def get_bridge_home() -> Path:
    """Get the bridge home directory, respecting OPENCODE_BRIDGE_HOME.

    Returns:
        Path to the home directory (~/.opencode-bridge by default)
    """
    home = os.environ.get("OPENCODE_BRIDGE_HOME")
    if home:
        return Path(home)
    return Path.home() / ".opencode-bridge"


def default_config_path() -> Path:
    return get_bridge_home() / "config.yaml"


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Log level",
    )
    format: Literal["text", "json"] = Field(
        default="text",
        description="Log format (text or json)",
    )


class BridgeConfig(BaseModel):
    """
    Main configuration for the OpenCode bridge.

    Connection settings for the OpenCode server plus auto-start behaviour
    for the process supervisor.
    """

    base_url: str = Field(
        default="http://127.0.0.1:4096",
        description="Base URL of the OpenCode server",
    )
    username: str | None = Field(
        default=None,
        description="Basic auth username (defaults to 'opencode' when a password is set)",
    )
    password: str | None = Field(
        default=None,
        description="Basic auth password; leave unset for unauthenticated servers",
    )
    auto_serve: bool = Field(
        default=True,
        description="Spawn 'opencode serve' when the server is not reachable",
    )
    startup_timeout: float = Field(
        default=30.0,
        description="Seconds to wait for a spawned server to become healthy",
    )
    request_timeout: float | None = Field(
        default=None,
        description="Default per-request timeout in seconds (None waits indefinitely)",
    )
    health_timeout: float = Field(
        default=3.0,
        description="Timeout for a single health probe in seconds",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate the base URL uses http or https."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v

    @field_validator("startup_timeout")
    @classmethod
    def validate_startup_timeout(cls, v: float) -> float:
        """Validate startup timeout is in valid range."""
        if not (1.0 <= v <= 600.0):
            raise ValueError("startup_timeout must be between 1.0 and 600.0 seconds")
        return v

    @field_validator("request_timeout", "health_timeout")
    @classmethod
    def validate_positive(cls, v: float | None) -> float | None:
        """Validate value is positive."""
        if v is not None and v <= 0:
            raise ValueError("Value must be positive")
        return v


def load_yaml(config_file: str) -> dict[str, Any]:
    """
    Load YAML or JSON configuration file.

    Args:
        config_file: Path to YAML or JSON configuration file

    Returns:
        Dictionary with parsed content, empty if the file does not exist

    Raises:
        ValueError: If the file is malformed or has the wrong extension
    """
    config_path = Path(config_file).expanduser()

    if not config_path.exists():
        return {}

    file_ext = config_path.suffix.lower()
    if file_ext not in [".yaml", ".yml", ".json"]:
        raise ValueError(
            f"Config file must have .yaml, .yml, or .json extension, got: {file_ext}\n"
            f"File: {config_path}"
        )

    try:
        content = config_path.read_text()

        if file_ext == ".json":
            return json.loads(content) if content.strip() else {}

        data = yaml.safe_load(content)
        return data if data is not None else {}

    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}") from e


def apply_env_overrides(
    config_dict: dict[str, Any],
    environ: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    Apply OPENCODE_* environment variables on top of file configuration.

    OPENCODE_AUTO_SERVE disables auto-start only for the literal "false".

    Args:
        config_dict: Configuration dictionary
        environ: Environment mapping (default: os.environ)

    Returns:
        Configuration dictionary with environment overrides applied
    """
    env = os.environ if environ is None else environ
    for var, key in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None:
            continue
        if key == "auto_serve":
            config_dict[key] = value != "false"
        else:
            config_dict[key] = value
    return config_dict


def apply_cli_overrides(
    config_dict: dict[str, Any],
    cli_overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Apply CLI argument overrides to config dictionary.

    None values are skipped so unset options don't clobber lower layers.
    Nested keys use dots, e.g. "logging.level".

    Args:
        config_dict: Configuration dictionary
        cli_overrides: Dictionary of CLI overrides

    Returns:
        Configuration dictionary with CLI overrides applied
    """
    if cli_overrides is None:
        return config_dict

    for key, value in cli_overrides.items():
        if value is None:
            continue
        if "." in key:
            parts = key.split(".")
            current = config_dict
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current[parts[-1]] = value
        else:
            config_dict[key] = value

    return config_dict


def load_config(
    config_file: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> BridgeConfig:
    """
    Load configuration with hierarchy: CLI > environment > YAML > defaults.

    Args:
        config_file: Path to YAML config file (default: ~/.opencode-bridge/config.yaml)
        cli_overrides: Dictionary of CLI argument overrides
        environ: Environment mapping (default: os.environ)

    Returns:
        Validated BridgeConfig instance

    Raises:
        ValueError: If configuration is invalid
    """
    if config_file is None:
        config_file = str(default_config_path())

    config_dict = load_yaml(config_file)
    config_dict = apply_env_overrides(config_dict, environ)
    config_dict = apply_cli_overrides(config_dict, cli_overrides)

    try:
        return BridgeConfig(**config_dict)
    except Exception as e:
        raise ValueError(
            f"Configuration validation failed: {e}\n"
            f"Please check your configuration file at {config_file}"
        ) from e
