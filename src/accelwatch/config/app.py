"""
Configuration management for the accelwatch daemon.

Provides YAML-based configuration with CLI overrides,
configuration hierarchy (CLI > YAML > Defaults), and validation.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from accelwatch.config.watchdog import WatchdogConfig

DEFAULT_WORKSPACE = "~/npu-projects"


def get_accelwatch_home() -> Path:
    """Get the workspace directory, respecting ACCELWATCH_HOME env var."""
    home = os.environ.get("ACCELWATCH_HOME")
    if home:
        return Path(home).expanduser()
    return Path(DEFAULT_WORKSPACE).expanduser()


def default_config_file() -> Path:
    return get_accelwatch_home() / "config.yaml"


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Log level",
    )
    file: str | None = Field(
        default=None,
        description="Watchdog log file path (default: <workspace>/watchdog.log)",
    )
    max_size_mb: int = Field(
        default=10,
        description="Maximum log file size in MB",
    )
    backup_count: int = Field(
        default=3,
        description="Number of backup log files to keep",
    )
    status_lines: int = Field(
        default=5,
        description="Number of recent log lines shown by the status command",
    )

    @field_validator("max_size_mb", "backup_count", "status_lines")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate value is positive."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v


class AppConfig(BaseModel):
    """
    Main configuration for accelwatch.

    Configuration is loaded with the following priority:
    1. CLI arguments (highest)
    2. YAML file (<workspace>/config.yaml)
    3. Defaults (lowest)
    """

    workspace: str | None = Field(
        default=None,
        description="Workspace holding the PID file and log (default: $ACCELWATCH_HOME or ~/npu-projects)",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration",
    )
    watchdog: WatchdogConfig = Field(
        default_factory=WatchdogConfig,
        description="Watchdog target and timing configuration",
    )

    @property
    def workspace_dir(self) -> Path:
        if self.workspace:
            return Path(self.workspace).expanduser()
        return get_accelwatch_home()

    @property
    def pid_file(self) -> Path:
        return self.workspace_dir / "watchdog.pid"

    @property
    def log_file(self) -> Path:
        if self.logging.file:
            return Path(self.logging.file).expanduser()
        return self.workspace_dir / "watchdog.log"


def load_yaml(config_file: str | Path) -> dict[str, Any]:
    """
    Load YAML or JSON configuration file.

    Args:
        config_file: Path to YAML or JSON configuration file

    Returns:
        Dictionary with parsed YAML/JSON content

    Raises:
        ValueError: If YAML/JSON is invalid or file format is wrong
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
        with open(config_path) as f:
            content = f.read()

        if file_ext == ".json":
            return json.loads(content) if content.strip() else {}

        data = yaml.safe_load(content)
        return data if data is not None else {}

    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}") from e


def apply_cli_overrides(
    config_dict: dict[str, Any],
    cli_overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Apply CLI argument overrides to config dictionary.

    Args:
        config_dict: Configuration dictionary
        cli_overrides: Dictionary of CLI overrides, nested keys dotted ("watchdog.cooldown")

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
                if part not in current or current[part] is None:
                    current[part] = {}
                current = current[part]
            current[parts[-1]] = value
        else:
            config_dict[key] = value

    return config_dict


def generate_default_config(config_file: str | Path) -> Path:
    """
    Generate default configuration file from Pydantic model defaults.

    Args:
        config_file: Path where to create the config file

    Returns:
        The expanded path that was written
    """
    config_path = Path(config_file).expanduser()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    default_config = AppConfig().model_dump(mode="python", exclude_none=True)

    with open(config_path, "w") as f:
        yaml.safe_dump(default_config, f, default_flow_style=False, sort_keys=False)

    config_path.chmod(0o600)
    return config_path


def load_config(
    config_file: str | Path | None = None,
    cli_overrides: dict[str, Any] | None = None,
    create_default: bool = False,
) -> AppConfig:
    """
    Load configuration with hierarchy: CLI > YAML > Defaults.

    Args:
        config_file: Path to YAML config file (default: <workspace>/config.yaml)
        cli_overrides: Dictionary of CLI argument overrides
        create_default: Create default config file if it doesn't exist

    Returns:
        Validated AppConfig instance

    Raises:
        ValueError: If configuration is invalid
    """
    if config_file is None:
        config_file = default_config_file()

    config_path = Path(config_file).expanduser()

    if create_default and not config_path.exists():
        generate_default_config(config_path)

    config_dict = load_yaml(config_path)
    config_dict = apply_cli_overrides(config_dict, cli_overrides)

    try:
        return AppConfig(**config_dict)
    except Exception as e:
        raise ValueError(
            f"Configuration validation failed: {e}\n"
            f"Please check your configuration file at {config_path}"
        ) from e
