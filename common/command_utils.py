# common/command_utils.py
# -*- coding: utf-8 -*-
"""
Utilities for executing remote commands and logging their outcome.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from common.transport import Transport
from provisioner.command_encoder import decode_powershell_command
from provisioner.config_models import SYMBOLS_DEFAULT, AppSettings

module_logger = logging.getLogger(__name__)


class RemoteCommandError(Exception):
    """A remote command ran but did not exit with the status it was required to."""

    def __init__(self, message: str, exit_status: int):
        self.exit_status = exit_status
        super().__init__(message)


@dataclass(frozen=True)
class RemoteCommand:
    """
    A single command line to run on the target.

    Attributes:
        command: The command line handed to the transport.
        description: Short human readable name used in log messages.
        interpret: Optional function mapping the exit status to the value
            returned by `run_remote_command`. It may raise to signal that
            the status is a failure.
    """

    command: str
    description: str = ""
    interpret: Optional[Callable[[int], Any]] = None

    @property
    def label(self) -> str:
        return self.description or self.command


def log_message(
    message: str,
    level: str = "info",
    current_logger: Optional[logging.Logger] = None,
    app_settings: Optional[AppSettings] = None,
    exc_info: bool = False,
) -> None:
    """
    Logs a message at the named level.

    Args:
        message (str): The log message to be recorded.
        level (str): The severity level of the log message. Defaults to "info". Common options
            include "debug", "info", "warning", "error", and "critical".
        current_logger (Optional[logging.Logger]): A logger instance to use for logging. If not provided,
            the module-level logger will be used.
        app_settings (Optional[AppSettings]): Optional application settings that can influence logging behavior.
        exc_info (bool): Indicator to include exception details in the log. By default, this is set to False.

    Returns:
        None
    """
    effective_logger = current_logger if current_logger else module_logger

    if level == "warning":
        effective_logger.warning(message, exc_info=exc_info)
    elif level == "error":
        effective_logger.error(message, exc_info=exc_info)
    elif level == "critical":
        effective_logger.critical(message, exc_info=exc_info)
    elif level == "debug":
        effective_logger.debug(message, exc_info=exc_info)
    else:
        effective_logger.info(message, exc_info=exc_info)


def get_symbols(app_settings: Optional[AppSettings]) -> dict:
    return (
        app_settings.symbols
        if app_settings and app_settings.symbols
        else SYMBOLS_DEFAULT
    )


def require_success(description: str) -> Callable[[int], int]:
    """
    Builds an exit status interpreter that accepts only 0.

    Args:
        description: Used in the error message, e.g. "Failed to restart the machine".

    Returns:
        A function that returns the status when it is 0 and raises
        `RemoteCommandError` otherwise.
    """

    def interpret(exit_status: int) -> int:
        if exit_status != 0:
            raise RemoteCommandError(
                f"{description} (exit status {exit_status})", exit_status
            )
        return exit_status

    return interpret


def run_remote_command(
    transport: Transport,
    remote_command: RemoteCommand,
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Any:
    """
    Runs a command on the target and interprets its exit status.

    Args:
        transport: The transport to the target machine.
        remote_command: The command to run.
        app_settings: Settings providing log symbols.
        current_logger: Logger to use instead of the module logger.
        cancel_event: Event that abandons the command when set.

    Returns:
        The value produced by `remote_command.interpret`, or the raw exit
        status when the command has no interpreter.

    Raises:
        TransportError: The command could not be run.
        Exception: Whatever `remote_command.interpret` raises.
    """
    effective_logger = current_logger if current_logger else module_logger
    symbols = get_symbols(app_settings)

    log_message(
        f"{symbols.get('gear', '⚙️')} Executing: {remote_command.label}",
        "debug",
        effective_logger,
        app_settings,
    )
    if remote_command.description:
        log_message(
            f"   command: {remote_command.command}",
            "debug",
            effective_logger,
            app_settings,
        )
    if "-EncodedCommand" in remote_command.command:
        log_message(
            f"   decoded: {decode_powershell_command(remote_command.command)}",
            "debug",
            effective_logger,
            app_settings,
        )

    exit_status = transport.run(remote_command.command, cancel_event=cancel_event)

    log_message(
        f"   {remote_command.label} exited with status {exit_status}",
        "debug",
        effective_logger,
        app_settings,
    )
    if remote_command.interpret is None:
        return exit_status
    return remote_command.interpret(exit_status)
