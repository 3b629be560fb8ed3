"""
Configuration package for accelwatch.

Module structure:
- app.py: AppConfig, LoggingSettings and YAML loading
- watchdog.py: WatchdogConfig (target, probe timing, recovery pacing)
"""

from accelwatch.config.app import (
    AppConfig,
    LoggingSettings,
    apply_cli_overrides,
    generate_default_config,
    get_accelwatch_home,
    load_config,
    load_yaml,
)
from accelwatch.config.watchdog import WatchdogConfig

__all__ = [
    "AppConfig",
    "LoggingSettings",
    "WatchdogConfig",
    "apply_cli_overrides",
    "generate_default_config",
    "get_accelwatch_home",
    "load_config",
    "load_yaml",
]
