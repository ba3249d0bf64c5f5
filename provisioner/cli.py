# -*- coding: utf-8 -*-
"""
Command-line interface of the Windows update provisioner.
"""

import logging
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Optional

import click

from common.command_utils import RemoteCommandError
from common.core_utils import setup_logging
from common.retry_utils import RetryCancelledError, RetryTimeoutError
from common.transport import CommandCancelledError, SSHTransport, TransportError
from provisioner.command_encoder import (
    decode_powershell_command,
    file_command,
    pending_reboot_check_command,
    windows_update_command,
)
from provisioner.config_loader import ConfigurationError, load_app_settings
from provisioner.config_models import AppSettings
from provisioner.exit_status import UpdateScriptError
from provisioner.orchestrator import UpdateOrchestrator

module_logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_TIMEOUT = 3
EXIT_CANCELLED = 130


@contextmanager
def cancel_on_signals(cancel_event: threading.Event):
    """Set `cancel_event` on SIGINT/SIGTERM for the duration of the block."""

    def handler(signum, frame):
        module_logger.warning(
            f"Received {signal.Signals(signum).name}, cancelling after the current step..."
        )
        cancel_event.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handler)
    try:
        yield cancel_event
    finally:
        for signum, old_handler in previous.items():
            signal.signal(signum, old_handler)


def _load_settings(ctx: click.Context, overrides: Dict[str, Any]) -> AppSettings:
    try:
        settings = load_app_settings(
            cli_overrides=overrides, config_file_path=ctx.obj["config_file"]
        )
    except ConfigurationError as e:
        click.echo(str(e), err=True)
        ctx.exit(EXIT_CONFIGURATION_ERROR)

    setup_logging(
        log_level=logging.DEBUG if ctx.obj["verbose"] else logging.INFO,
        log_file=ctx.obj["log_file"],
        log_prefix=settings.log_prefix,
        json_format=ctx.obj["json_logs"],
        symbols=settings.symbols,
    )
    return settings


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="YAML configuration file (default: ./config.yaml when present).",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug output.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Also write the log to this file.",
)
@click.option("--json-logs", is_flag=True, help="Emit log records as JSON.")
@click.pass_context
def cli(ctx, config_file, verbose, log_file, json_logs):
    """
    Install Windows updates on a remote machine, restarting it as often
    as the updates require.
    """
    ctx.ensure_object(dict)
    ctx.obj.update(
        config_file=config_file,
        verbose=verbose,
        log_file=log_file,
        json_logs=json_logs,
    )


@cli.command(name="provision")
@click.option("--host", help="Target host name or IP address.")
@click.option("--port", type=int, help="SSH port of the target.")
@click.option("--ssh-user", help="SSH login user.")
@click.option("--ssh-password", help="SSH login password.")
@click.option(
    "--ssh-key",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Private key for the SSH login.",
)
@click.option("--username", help="Identity the update script runs as.")
@click.option("--password", help="Password of the elevation identity.")
@click.option("--search-criteria", help="Update search criteria.")
@click.option(
    "--filter",
    "filters",
    multiple=True,
    help="Update filter; may be given several times.",
)
@click.option("--update-limit", type=int, help="Maximum updates per script run.")
@click.option(
    "--restart-timeout",
    help='Time budget for each restart step, e.g. "4h" or "90m".',
)
@click.option(
    "--update-script",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Local update script to upload.",
)
@click.pass_context
def provision_command(
    ctx,
    host,
    port,
    ssh_user,
    ssh_password,
    ssh_key,
    username,
    password,
    search_criteria,
    filters,
    update_limit,
    restart_timeout,
    update_script,
):
    """Run the update/restart cycle against the target machine."""
    overrides = {
        "username": username,
        "password": password,
        "search_criteria": search_criteria,
        "filters": list(filters) or None,
        "update_limit": update_limit,
        "restart_timeout": restart_timeout,
        "update_script": update_script,
        "connection": {
            "host": host,
            "port": port,
            "username": ssh_user,
            "password": ssh_password,
            "key_filename": ssh_key,
        },
    }
    settings = _load_settings(ctx, overrides)

    if not settings.connection.host:
        click.echo("No target host configured (use --host).", err=True)
        ctx.exit(EXIT_CONFIGURATION_ERROR)
    if settings.update_script is None:
        click.echo("No update script configured (use --update-script).", err=True)
        ctx.exit(EXIT_CONFIGURATION_ERROR)

    connection = settings.connection
    exit_code = EXIT_OK
    with SSHTransport(
        connection.host,
        port=connection.port,
        username=connection.username,
        password=connection.password,
        key_filename=connection.key_filename,
        connect_timeout=connection.connect_timeout,
        keepalive_interval=connection.keepalive_interval,
        command_timeout=connection.command_timeout,
    ) as transport, cancel_on_signals(threading.Event()) as cancel_event:
        orchestrator = UpdateOrchestrator(
            transport, settings, cancel_event=cancel_event
        )
        try:
            orchestrator.run()
        except (RetryCancelledError, CommandCancelledError) as e:
            click.echo(f"Cancelled: {e}", err=True)
            exit_code = EXIT_CANCELLED
        except RetryTimeoutError as e:
            click.echo(f"Timed out: {e}", err=True)
            exit_code = EXIT_TIMEOUT
        except (
            UpdateScriptError,
            TransportError,
            RemoteCommandError,
            ValueError,
            OSError,
        ) as e:
            click.echo(f"Error: {e}", err=True)
            exit_code = EXIT_FAILED
    ctx.exit(exit_code)


@cli.command(name="show-commands")
@click.option("--search-criteria", help="Update search criteria.")
@click.option("--filter", "filters", multiple=True, help="Update filter.")
@click.option("--update-limit", type=int, help="Maximum updates per script run.")
@click.pass_context
def show_commands_command(ctx, search_criteria, filters, update_limit):
    """Print the remote command lines without contacting a target."""
    settings = _load_settings(
        ctx,
        {
            "search_criteria": search_criteria,
            "filters": list(filters) or None,
            "update_limit": update_limit,
        },
    )
    paths = settings.remote_paths

    update_command = windows_update_command(
        paths.windows_update_path,
        settings.search_criteria,
        settings.filters,
        settings.update_limit,
    )
    pending_command = pending_reboot_check_command(paths.windows_update_path)

    click.echo("Windows update (elevated):")
    click.echo(f"  {file_command(paths.elevated_path)}")
    click.echo(f"  wraps: {update_command}")
    click.echo(f"  script: {decode_powershell_command(update_command)}")
    click.echo("Pending reboot check (elevated):")
    click.echo(f"  {file_command(paths.pending_reboot_elevated_path)}")
    click.echo(f"  wraps: {pending_command}")
    click.echo(f"  script: {decode_powershell_command(pending_command)}")
    click.echo("Restart:")
    click.echo(f"  {settings.remote_commands.restart}")
    click.echo(f"  probe: {settings.remote_commands.test_restart}")
    click.echo(f"  abort: {settings.remote_commands.abort_test_restart}")


def main(args: Optional[list] = None) -> None:
    cli(args=args, obj={})


if __name__ == "__main__":
    main()
