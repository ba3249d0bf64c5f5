# provisioner/config_models.py
# -*- coding: utf-8 -*-
"""
Pydantic models for the provisioner configuration.

This module defines the structured settings for a provisioning run,
including defaults, type annotations, and descriptions.
It utilizes Pydantic for data validation and settings management.
"""

import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from provisioner import config as static_config

SYMBOLS_DEFAULT: Dict[str, str] = {
    "success": "✅", "error": "❌", "warning": "⚠️", "info": "ℹ️",
    "step": "➡️", "gear": "⚙️", "package": "📦", "rocket": "🚀",
    "sparkles": "✨", "critical": "🔥", "debug": "🐛", "restart": "🔄",
    "hourglass": "⏳",
}

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS: Dict[str, float] = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 0.001,
}


def parse_duration(value: str) -> timedelta:
    """
    Parse a Go-style duration string such as "4h", "90m" or "1h30m15s".

    Args:
        value: The duration string. A bare number is read as seconds.

    Returns:
        The parsed duration.

    Raises:
        ValueError: If the string is not a valid duration.
    """
    text = value.strip().lower()
    if not text:
        raise ValueError("empty duration")
    try:
        return timedelta(seconds=float(text))
    except ValueError:
        pass

    total = 0.0
    position = 0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration '{value}'")
    return timedelta(seconds=total)


class RemotePathSettings(BaseModel):
    """Well-known locations of the uploaded scripts on the target."""

    windows_update_path: str = Field(
        default=static_config.WINDOWS_UPDATE_PATH_DEFAULT,
        description="Remote path of the update script.",
    )
    elevated_path: str = Field(
        default=static_config.ELEVATED_PATH_DEFAULT,
        description="Remote path of the elevated update wrapper.",
    )
    pending_reboot_elevated_path: str = Field(
        default=static_config.PENDING_REBOOT_ELEVATED_PATH_DEFAULT,
        description="Remote path of the elevated pending-reboot check wrapper.",
    )


class RemoteCommandSettings(BaseModel):
    """Commands issued on the target while restarting it."""

    restart: str = Field(
        default=static_config.RESTART_COMMAND_DEFAULT,
        description="Forced immediate restart command.",
    )
    test_restart: str = Field(
        default=static_config.TEST_RESTART_COMMAND_DEFAULT,
        description="Delayed restart used purely as a liveness probe.",
    )
    abort_test_restart: str = Field(
        default=static_config.ABORT_TEST_RESTART_COMMAND_DEFAULT,
        description="Command that cancels the scheduled test restart.",
    )


class ConnectionSettings(BaseModel):
    """SSH connection to the target machine."""

    host: Optional[str] = Field(default=None, description="Target host name or IP.")
    port: int = Field(default=static_config.SSH_PORT_DEFAULT, gt=0, lt=65536)
    username: Optional[str] = Field(default=None, description="SSH login user.")
    password: Optional[str] = Field(
        default=None, description="SSH login password.", exclude=True
    )
    key_filename: Optional[Path] = Field(
        default=None, description="Private key used for the SSH login."
    )
    connect_timeout: float = Field(
        default=static_config.SSH_CONNECT_TIMEOUT_DEFAULT,
        gt=0,
        description="Seconds to wait for the SSH connection to open.",
    )
    keepalive_interval: int = Field(
        default=static_config.SSH_KEEPALIVE_INTERVAL_DEFAULT,
        ge=0,
        description="Seconds between SSH keepalive packets; 0 disables them.",
    )
    command_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds a single remote command may run. Unlimited when unset.",
    )


class AppSettings(BaseSettings):
    """Main provisioner settings."""

    model_config = SettingsConfigDict(
        env_prefix=static_config.ENV_PREFIX,
        env_nested_delimiter="__",
        extra="ignore",
    )

    restart_timeout: timedelta = Field(
        default=timedelta(seconds=static_config.RESTART_TIMEOUT_DEFAULT),
        description="Time budget for each step of a restart.",
    )
    retry_delay: float = Field(
        default=static_config.RETRY_DELAY_DEFAULT,
        gt=0,
        description="Fixed delay in seconds between retried restart steps.",
    )

    # Elevation credentials, used only by the scheduled task wrappers.
    username: str = Field(
        default=static_config.ELEVATED_USERNAME_DEFAULT,
        min_length=1,
        description="Identity the update script runs as.",
    )
    password: str = Field(
        default="", description="Password of the elevation identity.", exclude=True
    )

    search_criteria: Optional[str] = Field(
        default=None,
        description="Update search criteria passed to the update script.",
    )
    filters: Optional[List[str]] = Field(
        default=None,
        description="Update filters. Updates matching no filter are not installed.",
    )
    update_limit: int = Field(
        default=static_config.UPDATE_LIMIT_DEFAULT,
        description="Maximum number of updates installed by one script run.",
    )

    update_script: Optional[Path] = Field(
        default=None, description="Local path of the update script to upload."
    )

    remote_paths: RemotePathSettings = Field(default_factory=RemotePathSettings)
    remote_commands: RemoteCommandSettings = Field(
        default_factory=RemoteCommandSettings
    )
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)

    log_prefix: str = Field(
        default=static_config.LOG_PREFIX_DEFAULT,
        description="Prefix for console log messages.",
    )
    symbols: Dict[str, str] = Field(default_factory=lambda: dict(SYMBOLS_DEFAULT))

    @field_validator("restart_timeout", mode="before")
    @classmethod
    def _parse_restart_timeout(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip().upper().startswith("P"):
            value = parse_duration(value)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = timedelta(seconds=value)
        if isinstance(value, timedelta) and value.total_seconds() == 0:
            return timedelta(seconds=static_config.RESTART_TIMEOUT_DEFAULT)
        return value

    @field_validator("restart_timeout")
    @classmethod
    def _check_restart_timeout(cls, value: timedelta) -> timedelta:
        if value.total_seconds() < 0:
            raise ValueError("restart_timeout must not be negative")
        return value

    @field_validator("update_limit")
    @classmethod
    def _check_update_limit(cls, value: int) -> int:
        if value == 0:
            return static_config.UPDATE_LIMIT_DEFAULT
        if value < 0:
            raise ValueError("update_limit must be a positive integer")
        return value

    @field_validator("search_criteria")
    @classmethod
    def _empty_search_criteria(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @field_validator("filters")
    @classmethod
    def _empty_filters(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return list(value) if value else None
