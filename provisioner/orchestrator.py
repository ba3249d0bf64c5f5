# provisioner/orchestrator.py
# -*- coding: utf-8 -*-
"""
Update/restart orchestrator.

Uploads the update script and its elevated wrappers once, then alternates
between running the update script and restarting the machine until the
script reports that nothing is left to do.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from common.command_utils import (
    RemoteCommand,
    get_symbols,
    log_message,
    run_remote_command,
)
from common.retry_utils import RetryCancelledError
from common.transport import Transport
from provisioner import config as static_config
from provisioner.command_encoder import (
    file_command,
    pending_reboot_check_command,
    windows_update_command,
)
from provisioner.config_models import AppSettings
from provisioner.elevated import (
    ElevatedOptions,
    new_task_name,
    render_elevated_script,
)
from provisioner.exit_status import UpdateResult, classify_exit_status
from provisioner.restart import RestartSequencer

module_logger = logging.getLogger(__name__)


@dataclass
class UpdateSession:
    """State of one provisioning run. Never persisted."""

    app_settings: AppSettings
    iteration: int = 0
    last_exit_status: Optional[int] = None
    restarts: int = 0
    # "update" and "restart" entries, in the order they completed.
    history: List[str] = field(default_factory=list)


class UpdateOrchestrator:
    """Drives the update/restart cycle against a single target."""

    def __init__(
        self,
        transport: Transport,
        app_settings: AppSettings,
        update_script: Optional[bytes] = None,
        cancel_event: Optional[threading.Event] = None,
        restart_sequencer: Optional[RestartSequencer] = None,
        current_logger: Optional[logging.Logger] = None,
    ):
        """
        Initializes the orchestrator.

        Args:
            transport: Transport to the target machine.
            app_settings: Validated provisioner settings.
            update_script: Content of the update script. Read from
                `app_settings.update_script` when not given.
            cancel_event: Event that stops the run at the next boundary.
            restart_sequencer: Sequencer used for restarts. Built from the
                transport and settings when not given.
            current_logger: Logger to use instead of the module logger.
        """
        self.transport = transport
        self.app_settings = app_settings
        self.cancel_event = cancel_event or threading.Event()
        self.logger = current_logger if current_logger else module_logger
        self._update_script = update_script
        self.restart_sequencer = restart_sequencer or RestartSequencer(
            transport,
            app_settings,
            cancel_event=self.cancel_event,
            current_logger=self.logger,
        )
        self.update_command = RemoteCommand(
            file_command(app_settings.remote_paths.elevated_path),
            "Windows update",
            classify_exit_status,
        )

    def load_update_script(self) -> bytes:
        if self._update_script is not None:
            return self._update_script
        if self.app_settings.update_script is None:
            raise ValueError("No update script configured")
        return self.app_settings.update_script.read_bytes()

    def windows_update_command(self) -> str:
        return windows_update_command(
            self.app_settings.remote_paths.windows_update_path,
            self.app_settings.search_criteria,
            self.app_settings.filters,
            self.app_settings.update_limit,
        )

    def pending_reboot_check_command(self) -> str:
        return pending_reboot_check_command(
            self.app_settings.remote_paths.windows_update_path
        )

    def _elevated_script(
        self, task_prefix: str, description: str, command: str
    ) -> bytes:
        return render_elevated_script(
            ElevatedOptions(
                username=self.app_settings.username,
                password=self.app_settings.password,
                task_name=new_task_name(task_prefix),
                task_description=description,
                command=command,
            )
        ).encode("utf-8")

    def upload_scripts(self) -> None:
        """Upload the elevated wrappers and the update script to their well-known paths."""
        paths = self.app_settings.remote_paths
        update_script = self.load_update_script()

        log_message(
            "Uploading the Windows update elevated script...",
            "info",
            self.logger,
            self.app_settings,
        )
        self.transport.upload(
            paths.elevated_path,
            self._elevated_script(
                static_config.UPDATE_TASK_NAME_PREFIX,
                "Packer Windows update elevated task",
                self.windows_update_command(),
            ),
        )

        log_message(
            "Uploading the Windows update check for reboot required elevated script...",
            "info",
            self.logger,
            self.app_settings,
        )
        self.transport.upload(
            paths.pending_reboot_elevated_path,
            self._elevated_script(
                static_config.PENDING_REBOOT_TASK_NAME_PREFIX,
                "Packer Windows update pending reboot elevated task",
                self.pending_reboot_check_command(),
            ),
        )

        log_message(
            "Uploading the Windows update script...",
            "info",
            self.logger,
            self.app_settings,
        )
        self.transport.upload(paths.windows_update_path, update_script)

    def _check_cancelled(self, session: UpdateSession) -> None:
        if self.cancel_event.is_set():
            raise RetryCancelledError(
                f"Windows update cancelled after {session.iteration} run(s)",
                attempts=session.iteration,
            )

    def update(self, session: UpdateSession) -> UpdateResult:
        """
        Run the update script once.

        Raises:
            UpdateScriptError: The script exited with a status outside the protocol.
            TransportError: The script could not be run.
        """
        session.iteration += 1
        log_message(
            f"--- Update cycle {session.iteration}: Running Windows update... ---",
            "info",
            self.logger,
            self.app_settings,
        )
        result = run_remote_command(
            self.transport,
            self.update_command,
            self.app_settings,
            self.logger,
            cancel_event=self.cancel_event,
        )
        session.last_exit_status = result.exit_status
        session.history.append("update")
        return result.raise_for_failure()

    def run(self) -> UpdateSession:
        """
        Run the update/restart cycle until the update script converges.

        There is no cap on the number of cycles; a machine that keeps
        asking for a restart is updated until the caller cancels.

        Returns:
            The finished session.

        Raises:
            UpdateScriptError: The update script failed.
            TransportError: An upload or update run could not be carried out.
            RetryTimeoutError: A restart step did not finish in time.
            RetryCancelledError: Cancellation was requested.
        """
        symbols = get_symbols(self.app_settings)
        session = UpdateSession(app_settings=self.app_settings)

        try:
            self.upload_scripts()
            while True:
                self._check_cancelled(session)
                result = self.update(session)
                if result.converged:
                    break

                self._check_cancelled(session)
                self.restart_sequencer.restart()
                session.restarts += 1
                session.history.append("restart")
        except Exception as e:
            log_message(
                f"{symbols.get('critical', '🔥')} Windows update failed: {e}",
                "critical",
                self.logger,
                self.app_settings,
            )
            raise

        log_message(
            f"{symbols.get('sparkles', '✨')} Windows update finished after "
            f"{session.iteration} run(s) and {session.restarts} restart(s).",
            "info",
            self.logger,
            self.app_settings,
        )
        return session
