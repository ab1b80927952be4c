"""Load choreo configuration from JSON or YAML files and the environment."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any, TextIO

import yaml
from pydantic import ValidationError

from choreo.core.config.models import AppConfig
from choreo.core.effects.clock import ClockEffectHost
from choreo.core.utils.logging import configure_logging as _configure_logging

logger = logging.getLogger(__name__)

_DEFAULT_APP_CONFIG_PATH = AppConfig.default_path()
_app_config_cache: AppConfig | None = None

ENV_TIME_SCALE = "CHOREO_TIME_SCALE"
ENV_LOG_LEVEL = "CHOREO_LOG_LEVEL"
ENV_EASING = "CHOREO_EASING"

# env var -> (AppConfig section, field, raw value transform)
_ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    ENV_TIME_SCALE: ("playback", "time_scale", str.strip),
    ENV_EASING: ("playback", "easing", str.strip),
    ENV_LOG_LEVEL: ("logging", "level", str.upper),
}


def _parse_json(stream: TextIO) -> Any:
    return json.load(stream)


def _parse_yaml(stream: TextIO) -> Any:
    content = yaml.safe_load(stream)
    # safe_load gives None for an empty document
    return {} if content is None else content


_PARSERS: dict[str, tuple[str, Callable[[TextIO], Any], type[Exception]]] = {
    ".json": ("json", _parse_json, json.JSONDecodeError),
    ".yaml": ("yaml", _parse_yaml, yaml.YAMLError),
    ".yml": ("yaml", _parse_yaml, yaml.YAMLError),
}


def detect_format(file_path: Path | str) -> str:
    """Return ``"json"`` or ``"yaml"`` based on the file extension.

    Raises:
        ValueError: For any other extension.

    Example:
        >>> detect_format("choreo.yml")
        'yaml'
    """
    suffix = Path(file_path).suffix.lower()
    if suffix not in _PARSERS:
        raise ValueError(f"Unsupported config format: {suffix}")
    return _PARSERS[suffix][0]


def load_config(path: str | Path) -> dict[str, Any]:
    """Read a config file into a raw mapping.

    Args:
        path: ``.json``, ``.yaml`` or ``.yml`` file

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: On an unsupported extension, unparsable content, or a root
            that is not a mapping
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file does not exist: {path}")

    fmt = detect_format(path)
    _, parse, parse_error = _PARSERS[path.suffix.lower()]
    try:
        with path.open("r", encoding="utf-8") as stream:
            content = parse(stream)
    except parse_error as e:
        raise ValueError(f"Invalid {fmt.upper()} in {path}: {e}") from e

    if not isinstance(content, dict):
        raise ValueError(f"Config root in {path} must be a mapping, got {type(content).__name__}")
    return content


def load_app_config(path: str | Path | None = None) -> AppConfig:
    """Load the application config, falling back to defaults for a missing file.

    Environment variables (``CHOREO_TIME_SCALE``, ``CHOREO_EASING``,
    ``CHOREO_LOG_LEVEL``) override file values; invalid ones are logged and ignored.
    The result for the default path is cached until :func:`clear_app_config_cache`.

    Raises:
        ValidationError: If the file content is invalid
    """
    global _app_config_cache

    path = Path(path) if path is not None else _DEFAULT_APP_CONFIG_PATH
    is_default = path == _DEFAULT_APP_CONFIG_PATH
    if is_default and _app_config_cache is not None:
        return _app_config_cache

    config = AppConfig.model_validate(load_config(path)) if path.exists() else AppConfig()
    config = _apply_env_overrides(config)

    if is_default:
        _app_config_cache = config
    return config


def clear_app_config_cache() -> None:
    global _app_config_cache
    _app_config_cache = None


def configure_logging(config: AppConfig | None = None) -> None:
    """Apply ``config.logging`` (the loaded app config when omitted)."""
    settings = (config or load_app_config()).logging
    _configure_logging(
        level=settings.level,
        format_string=settings.format,
        filename=settings.filename,
        structured=settings.structured,
    )


def create_clock_host(
    name: str = "host", config: AppConfig | None = None, **kwargs: Any
) -> ClockEffectHost:
    """Build a ClockEffectHost with the configured time scale and frame interval.

    Explicit keyword arguments win over config values.
    """
    playback = (config or load_app_config()).playback
    kwargs.setdefault("time_scale", playback.time_scale)
    kwargs.setdefault("frame_interval", playback.frame_interval)
    return ClockEffectHost(name, **kwargs)


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    for env_var, (section, field, transform) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_var)
        if not raw:
            continue
        current = getattr(config, section)
        try:
            updated = type(current).model_validate(
                {**current.model_dump(), field: transform(raw)}
            )
        except ValidationError as e:
            logger.warning(f"Ignoring {env_var}={raw!r}: {e.errors()[0]['msg']}")
            continue
        logger.debug(f"Loaded {env_var} from environment")
        config = config.model_copy(update={section: updated})
    return config
