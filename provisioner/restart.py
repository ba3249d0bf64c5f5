# provisioner/restart.py
# -*- coding: utf-8 -*-
"""
Restarts the target machine and waits until it is back and settled.

A restart runs three steps, each retried with the fixed retry delay and
each given the full restart timeout as its own budget:

1. Issue a forced immediate restart. A busy machine may reject it.
2. Probe for availability by scheduling a delayed test restart. The probe
   cannot run while the machine is down; once it succeeds the scheduled
   restart is aborted straight away.
3. Run the pending-reboot check until it reports that nothing is pending.

A step that exhausts its budget fails the whole restart.
"""

import logging
import threading
from typing import Callable, Optional, TypeVar

from common.command_utils import (
    RemoteCommand,
    RemoteCommandError,
    get_symbols,
    log_message,
    require_success,
    run_remote_command,
)
from common.retry_utils import RetryPolicy, retry
from common.transport import Transport, TransportError
from provisioner.command_encoder import file_command
from provisioner.config_models import AppSettings
from provisioner.exit_status import UpdateScriptError, interpret_reboot_pending

module_logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (
    TransportError,
    RemoteCommandError,
    UpdateScriptError,
)


class RebootPendingError(Exception):
    """The pending-reboot check reported that another reboot is still required."""


class RestartSequencer:
    """Restart the target and block until it is reachable and settled."""

    def __init__(
        self,
        transport: Transport,
        app_settings: AppSettings,
        cancel_event: Optional[threading.Event] = None,
        current_logger: Optional[logging.Logger] = None,
    ):
        self.transport = transport
        self.app_settings = app_settings
        self.cancel_event = cancel_event or threading.Event()
        self.logger = current_logger if current_logger else module_logger

        commands = app_settings.remote_commands
        self.restart_command = RemoteCommand(
            commands.restart,
            "restart",
            require_success("Failed to restart the machine"),
        )
        self.test_restart_command = RemoteCommand(
            commands.test_restart,
            "test restart",
            require_success("Machine not yet available"),
        )
        self.abort_test_restart_command = RemoteCommand(
            commands.abort_test_restart, "abort test restart"
        )
        self.pending_reboot_command = RemoteCommand(
            file_command(app_settings.remote_paths.pending_reboot_elevated_path),
            "pending reboot check",
            interpret_reboot_pending,
        )

    def _policy(self) -> RetryPolicy:
        return RetryPolicy(
            delay=self.app_settings.retry_delay,
            budget=self.app_settings.restart_timeout.total_seconds(),
            cancel_event=self.cancel_event,
        )

    def _retry(self, action: Callable[[], T], description: str) -> T:
        return retry(
            action,
            self._policy(),
            description=description,
            retry_on=RETRYABLE_ERRORS + (RebootPendingError,),
            current_logger=self.logger,
        )

    def _run(self, remote_command: RemoteCommand):
        return run_remote_command(
            self.transport,
            remote_command,
            self.app_settings,
            self.logger,
            cancel_event=self.cancel_event,
        )

    def restart(self) -> None:
        """
        Run the full restart sequence.

        Raises:
            RetryTimeoutError: A step did not succeed within the restart timeout.
            RetryCancelledError: Cancellation was requested.
        """
        self.issue_restart()
        self.wait_for_availability()
        self.wait_for_settled()

    def issue_restart(self) -> None:
        symbols = get_symbols(self.app_settings)
        log_message(
            f"{symbols.get('restart', '🔄')} Restarting the machine...",
            "info",
            self.logger,
            self.app_settings,
        )
        self._retry(lambda: self._run(self.restart_command), "machine restart")

    def probe_availability(self) -> None:
        """
        One liveness probe: schedule a test restart, then abort it.

        A non-zero status from the abort is only logged, the probe has
        already proven the machine is reachable.
        """
        self._run(self.test_restart_command)
        abort_status = self._run(self.abort_test_restart_command)
        if abort_status != 0:
            log_message(
                f"Aborting the test restart exited with status {abort_status}",
                "warning",
                self.logger,
                self.app_settings,
            )

    def wait_for_availability(self) -> None:
        symbols = get_symbols(self.app_settings)
        log_message(
            f"{symbols.get('hourglass', '⏳')} Waiting for machine to become available...",
            "info",
            self.logger,
            self.app_settings,
        )
        self._retry(self.probe_availability, "machine availability")

    def check_settled(self) -> None:
        if self._run(self.pending_reboot_command):
            raise RebootPendingError("A reboot is still pending")

    def wait_for_settled(self) -> None:
        symbols = get_symbols(self.app_settings)
        log_message(
            f"{symbols.get('hourglass', '⏳')} Waiting for pending reboot work to finish...",
            "info",
            self.logger,
            self.app_settings,
        )
        self._retry(self.check_settled, "pending reboot work")
        log_message(
            f"{symbols.get('success', '✅')} Machine is available.",
            "info",
            self.logger,
            self.app_settings,
        )
