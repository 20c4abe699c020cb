"""
Configuration management module for the budget board.

This module handles loading and saving configuration values from a YAML file,
merging them over built-in defaults for the database, logging, finalization
and reporting settings.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from exceptions import ConfigError

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    "database": {
        "connection_string": None,
        "data_dir": "data",
        "path": "budget_board.db",
        "busy_timeout": 30.0,
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        "file": None,
    },
    "months": {
        "seed_initial": True,
    },
    "finalization": {
        "require_actuals": False,
    },
    "reports": {
        "min_year": 2000,
        "max_years_ahead": 5,
    },
    "backup": {
        "backup_dir": None,
    },
}

CONFIG_FILE = "config.yaml"


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` updated recursively with ``override``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    A missing file is not an error: the defaults are returned.

    Args:
        config_path: Path to the YAML file (defaults to config.yaml)

    Returns:
        Configuration dictionary with defaults for missing values

    Raises:
        ConfigError: If the file is not valid YAML or not a mapping
    """
    path = Path(config_path or CONFIG_FILE)
    if not path.exists():
        logger.debug("Config file %s not found; using defaults", path)
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with open(path, "r") as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(
            "Config file is not valid YAML",
            details={"config_path": str(path)},
            original_error=exc
        ) from exc
    except OSError as exc:
        raise ConfigError(
            "Config file could not be read",
            details={"config_path": str(path), "error": str(exc)},
            original_error=exc
        ) from exc

    if not isinstance(loaded, dict):
        raise ConfigError(
            "Config file must contain a mapping at the top level",
            details={"config_path": str(path), "type": type(loaded).__name__}
        )

    config = _deep_merge(DEFAULT_CONFIG, loaded)
    logger.info("Configuration loaded from %s", path)
    return config


def save_config(config: Dict[str, Any], config_path: Optional[Union[str, Path]] = None) -> None:
    """
    Save configuration to a YAML file, preserving keys already on disk.

    Args:
        config: Configuration dictionary to save
        config_path: Target path (defaults to config.yaml)

    Raises:
        ConfigError: If the file cannot be written
    """
    path = Path(config_path or CONFIG_FILE)
    try:
        existing: Dict[str, Any] = {}
        if path.exists():
            with open(path, "r") as f:
                existing = yaml.safe_load(f) or {}

        merged = _deep_merge(existing, config)
        with open(path, "w") as f:
            yaml.safe_dump(merged, f, default_flow_style=False, sort_keys=False)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(
            "Failed to save configuration",
            details={"config_path": str(path)},
            original_error=exc
        ) from exc

    logger.info("Configuration saved to %s", path)


def get_setting(config: Dict[str, Any], section: str, key: str, default: Any = None) -> Any:
    """
    Read ``config[section][key]`` falling back to the built-in default.

    Args:
        config: Loaded configuration dictionary
        section: Top-level section name
        key: Key within the section
        default: Value used when neither config nor defaults define it

    Returns:
        The configured value
    """
    section_values = config.get(section) or {}
    if key in section_values and section_values[key] is not None:
        return section_values[key]
    return DEFAULT_CONFIG.get(section, {}).get(key, default)
