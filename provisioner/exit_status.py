# provisioner/exit_status.py
# -*- coding: utf-8 -*-
"""
Exit status protocol shared with the remote update script.

The script reports its outcome only through its process exit status:

    0    nothing left to install and no restart required
    101  updates were installed and the machine must be restarted
    *    the script failed

Raw statuses are converted to an `UpdateResult` as soon as they are
received, so the rest of the provisioner never inspects integers.
"""

import enum
from dataclasses import dataclass

EXIT_STATUS_CONVERGED = 0
EXIT_STATUS_RESTART_REQUIRED = 101


class UpdateOutcome(enum.Enum):
    CONVERGED = "converged"
    RESTART_REQUIRED = "restart_required"
    FAILED = "failed"


class UpdateScriptError(Exception):
    """The update script exited with a status outside the protocol."""

    def __init__(self, exit_status: int, message: str = ""):
        self.exit_status = exit_status
        super().__init__(
            message
            or f"Windows update script exited with non-zero exit status: {exit_status}"
        )


@dataclass(frozen=True)
class UpdateResult:
    outcome: UpdateOutcome
    exit_status: int

    @property
    def restart_required(self) -> bool:
        return self.outcome is UpdateOutcome.RESTART_REQUIRED

    @property
    def converged(self) -> bool:
        return self.outcome is UpdateOutcome.CONVERGED

    def raise_for_failure(self) -> "UpdateResult":
        """Raise `UpdateScriptError` for a failed run, otherwise return self."""
        if self.outcome is UpdateOutcome.FAILED:
            raise UpdateScriptError(self.exit_status)
        return self


def classify_exit_status(exit_status: int) -> UpdateResult:
    """Map a raw exit status of the update script to an `UpdateResult`."""
    if exit_status == EXIT_STATUS_CONVERGED:
        return UpdateResult(UpdateOutcome.CONVERGED, exit_status)
    if exit_status == EXIT_STATUS_RESTART_REQUIRED:
        return UpdateResult(UpdateOutcome.RESTART_REQUIRED, exit_status)
    return UpdateResult(UpdateOutcome.FAILED, exit_status)


def interpret_update_status(exit_status: int) -> UpdateResult:
    """Interpreter for an update run: classify, raising on a protocol violation."""
    return classify_exit_status(exit_status).raise_for_failure()


def interpret_reboot_pending(exit_status: int) -> bool:
    """
    Interpreter for the pending-reboot check.

    Returns:
        True when a reboot is still pending, False when the machine is settled.

    Raises:
        UpdateScriptError: The check itself failed.
    """
    return interpret_update_status(exit_status).restart_required
