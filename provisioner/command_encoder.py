# provisioner/command_encoder.py
# -*- coding: utf-8 -*-
"""
Builds the PowerShell command lines that invoke the remote update script.

The script invocation is never passed inline. It is encoded as UTF-16LE,
then base64, and handed to PowerShell through `-EncodedCommand`, so that
quoting, length and control characters survive any remote transport.
Free-form parameter values are embedded as PowerShell single-quoted
string literals.
"""

import base64
from typing import Optional, Sequence

from provisioner import config as static_config


def escape_powershell_string(value: str) -> str:
    """
    Quote `value` as a PowerShell single-quoted string literal.

    Embedded single quotes are doubled: `O'Brien` becomes `'O''Brien'`.
    No other sanitization is applied.
    """
    return "'{}'".format(value.replace("'", "''"))


def search_criteria_argument(search_criteria: Optional[str]) -> str:
    if not search_criteria:
        return ""
    return " -SearchCriteria " + escape_powershell_string(search_criteria)


def filters_argument(filters: Optional[Sequence[str]]) -> str:
    # The separator is not escaped; the script splits the array itself.
    if not filters:
        return ""
    return " -Filters " + ",".join(
        escape_powershell_string(value) for value in filters
    )


def encode_powershell_command(script: str) -> str:
    """
    Wrap a PowerShell script in an `-EncodedCommand` invocation.

    Args:
        script: The literal PowerShell text to run.

    Returns:
        The full command line, with the script as a base64 encoded UTF-16LE payload.
    """
    payload = base64.b64encode(script.encode("utf-16-le")).decode("ascii")
    return (
        f"{static_config.POWERSHELL_COMMAND_PREFIX} -EncodedCommand {payload}"
    )


def decode_powershell_command(command_line: str) -> str:
    """
    Recover the literal script from a command line built by `encode_powershell_command`.

    Raises:
        ValueError: If the command line carries no `-EncodedCommand` payload.
    """
    parts = command_line.split()
    try:
        payload = parts[parts.index("-EncodedCommand") + 1]
    except (ValueError, IndexError):
        raise ValueError("command line has no -EncodedCommand payload") from None
    return base64.b64decode(payload).decode("utf-16-le")


def windows_update_invocation(
    script_path: str,
    search_criteria: Optional[str] = None,
    filters: Optional[Sequence[str]] = None,
    update_limit: int = static_config.UPDATE_LIMIT_DEFAULT,
) -> str:
    """Literal PowerShell invocation of the update script."""
    if update_limit <= 0:
        raise ValueError("update_limit must be a positive integer")
    return "{}{}{} -UpdateLimit {}".format(
        script_path,
        search_criteria_argument(search_criteria),
        filters_argument(filters),
        update_limit,
    )


def pending_reboot_invocation(script_path: str) -> str:
    """Literal PowerShell invocation that only checks whether a reboot is pending."""
    return f"{script_path} -OnlyCheckForRebootRequired"


def windows_update_command(
    script_path: str,
    search_criteria: Optional[str] = None,
    filters: Optional[Sequence[str]] = None,
    update_limit: int = static_config.UPDATE_LIMIT_DEFAULT,
) -> str:
    """
    Command line that runs the update script once.

    Args:
        script_path: Remote path of the update script.
        search_criteria: Update search criteria; omitted when empty.
        filters: Ordered update filters; omitted when empty.
        update_limit: Maximum number of updates to install in this run.

    Returns:
        An encoded PowerShell command line.
    """
    return encode_powershell_command(
        windows_update_invocation(
            script_path, search_criteria, filters, update_limit
        )
    )


def pending_reboot_check_command(script_path: str) -> str:
    """Command line that asks the update script whether a reboot is still pending."""
    return encode_powershell_command(pending_reboot_invocation(script_path))


def file_command(script_path: str) -> str:
    """Command line that runs an uploaded PowerShell file."""
    return f"{static_config.POWERSHELL_COMMAND_PREFIX} -File {script_path}"
