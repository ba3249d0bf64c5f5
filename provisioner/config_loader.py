# provisioner/config_loader.py
# -*- coding: utf-8 -*-
"""
Configuration loader for the provisioner.

Handles loading settings from Pydantic model defaults, environment
variables, a YAML file and command-line options, applying a specific
order of precedence:
1. Pydantic Model Defaults
2. Environment Variables (prefix WINDOWS_UPDATE_, nested with "__")
3. YAML Configuration File
4. Command-Line Options
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from .config_models import AppSettings

module_logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config.yaml"


class ConfigurationError(Exception):
    """The settings could not be loaded or failed validation."""


def _deep_update(
    source: Dict[str, Any], overrides: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Recursively updates a dictionary `source` with values from another dictionary
    `overrides`. Nested dictionaries are merged key by key; `None` values in
    `overrides` never replace an existing value.

    Parameters:
        source: Dict[str, Any]
            The dictionary to be updated. This dictionary gets modified in place.
        overrides: Dict[str, Any]
            The dictionary containing values to update or add to the `source`.

    Returns:
        Dict[str, Any]:
            The updated dictionary after applying all `overrides` to the input `source`.
    """
    for key, value in overrides.items():
        if (
            isinstance(value, dict)
            and key in source
            and isinstance(source[key], dict)
        ):
            source[key] = _deep_update(source[key], value)
        elif value is not None:
            source[key] = value
    return source


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, dict):
            nested = _drop_none(value)
            if nested:
                cleaned[key] = nested
        elif value is not None:
            cleaned[key] = value
    return cleaned


def load_yaml_config(
    config_file_path: Union[str, Path],
    required: bool = False,
    current_logger: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """
    Reads a YAML configuration file into a dictionary.

    Args:
        config_file_path: Path of the YAML file.
        required: Raise when the file does not exist instead of returning {}.
        current_logger: Optional logger to use instead of the module logger.

    Returns:
        The parsed mapping, or an empty dictionary.

    Raises:
        ConfigurationError: The file is required but missing, cannot be
            read or parsed, or does not hold a mapping.
    """
    logger_to_use = current_logger if current_logger else module_logger
    path = Path(config_file_path)

    if not path.is_file():
        if required:
            raise ConfigurationError(f"Configuration file '{path}' not found.")
        logger_to_use.info(
            f"Configuration file '{path}' not found. Using defaults, environment variables, and CLI options."
        )
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Could not parse YAML config file '{path}': {e}"
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Could not read config file '{path}': {e}"
        ) from e

    if yaml_data is None:
        return {}
    if not isinstance(yaml_data, dict):
        raise ConfigurationError(
            f"Config file '{path}' does not contain a valid YAML dictionary."
        )
    logger_to_use.info(f"Loaded configuration from {path}")
    return yaml_data


def load_app_settings(
    cli_overrides: Optional[Dict[str, Any]] = None,
    config_file_path: Optional[Union[str, Path]] = None,
    current_logger: Optional[logging.Logger] = None,
) -> AppSettings:
    """
    Loads the provisioner settings.

    Args:
        cli_overrides: Nested mapping of values given on the command line.
            `None` values are ignored.
        config_file_path: YAML file to read. When omitted, `config.yaml` in
            the working directory is used if it exists.
        current_logger: Optional logger to use instead of the module logger.

    Returns:
        An instance of AppSettings with the fully resolved configuration.

    Raises:
        ConfigurationError: The YAML file is unusable or validation failed.
    """
    logger_to_use = current_logger if current_logger else module_logger

    if config_file_path is None:
        values = load_yaml_config(
            DEFAULT_CONFIG_FILE, required=False, current_logger=logger_to_use
        )
    else:
        values = load_yaml_config(
            config_file_path, required=True, current_logger=logger_to_use
        )

    if cli_overrides:
        values = _deep_update(values, _drop_none(cli_overrides))

    # Init values take precedence over environment variables, which
    # pydantic-settings reads for every field not given here.
    try:
        settings = AppSettings(**values)
    except ValidationError as e:
        logger_to_use.error(f"Configuration validation failed: {e}")
        raise ConfigurationError(f"Configuration error: {e}") from e

    logger_to_use.info("Successfully loaded and validated provisioner settings")
    return settings
