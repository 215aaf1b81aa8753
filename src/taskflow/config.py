"""Resolve where the document lives and how the store logs.

Settings come from explicit arguments, then the environment, then the optional
``~/.taskflow/config.yaml`` file, then built-in defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from loguru import logger

from .constants import (
    APP_DIR_NAME,
    CONFIG_DIR_NAME,
    CONFIG_FILE,
    DATA_FILE_NAME,
    DEFAULT_LOG_LEVEL,
    ENV_CONFIG_FILE,
    ENV_DATA_FILE,
    ENV_LOG_LEVEL,
)
from .io_utils import _load_data_with_error

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class StoreConfig:
    data_file: Path
    log_level: str = DEFAULT_LOG_LEVEL


def default_data_file(env: Optional[Mapping[str, str]] = None) -> Path:
    """Return the user-scoped document location.

    Uses ``$APPDATA`` when set, otherwise ``~/AppData/Roaming``.
    """
    env = os.environ if env is None else env
    appdata = env.get("APPDATA")
    base = Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
    return base / APP_DIR_NAME / DATA_FILE_NAME


def config_file_path(env: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if env is None else env
    override = env.get(ENV_CONFIG_FILE)
    if override:
        return Path(override).expanduser()
    return Path.home() / CONFIG_DIR_NAME / CONFIG_FILE


def load_config_file(path: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional config file.

    Args:
        path: Location of the YAML config file.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    data, err = _load_data_with_error(path, {})
    if not path.exists():
        return {}, None
    if err:
        return {}, err
    return data, None


def _normalize_level(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    level = raw.strip().upper()
    return level if level in VALID_LOG_LEVELS else None


def load_config(
    *,
    data_file: Optional[str | Path] = None,
    log_level: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> StoreConfig:
    """Build a :class:`StoreConfig` from arguments, environment and config file."""
    env = os.environ if env is None else env
    file_cfg, err = load_config_file(config_file_path(env))
    if err:
        logger.warning("Ignoring unreadable config file: {}", err)

    resolved_file = data_file or env.get(ENV_DATA_FILE) or file_cfg.get("data_file")
    path = Path(str(resolved_file)).expanduser() if resolved_file else default_data_file(env)

    level = (
        _normalize_level(log_level)
        or _normalize_level(env.get(ENV_LOG_LEVEL))
        or _normalize_level(file_cfg.get("log_level"))
        or DEFAULT_LOG_LEVEL
    )
    return StoreConfig(data_file=path, log_level=level)
