"""Configuration models and loaders."""

from choreo.core.config.loader import (
    clear_app_config_cache,
    configure_logging,
    create_clock_host,
    detect_format,
    load_app_config,
    load_config,
)
from choreo.core.config.models import AppConfig, ConfigBase, LoggingConfig, PlaybackDefaults

__all__ = [
    "AppConfig",
    "ConfigBase",
    "LoggingConfig",
    "PlaybackDefaults",
    "clear_app_config_cache",
    "configure_logging",
    "create_clock_host",
    "detect_format",
    "load_app_config",
    "load_config",
]
