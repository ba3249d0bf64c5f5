# -*- coding: utf-8 -*-
import pytest
from click.testing import CliRunner

from common.command_utils import RemoteCommandError
from common.retry_utils import RetryCancelledError, RetryTimeoutError
from common.transport import CommandCancelledError, TransportError
from provisioner.cli import cli
from provisioner.exit_status import UpdateScriptError


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def mock_setup_logging(mocker):
    return mocker.patch("provisioner.cli.setup_logging")


@pytest.fixture
def mock_transport(mocker):
    return mocker.patch("provisioner.cli.SSHTransport")


@pytest.fixture
def mock_orchestrator(mocker):
    return mocker.patch("provisioner.cli.UpdateOrchestrator")


def invoke_provision(runner, *extra):
    with runner.isolated_filesystem():
        with open("windows-update.ps1", "w") as f:
            f.write("exit 0")
        return runner.invoke(
            cli,
            [
                "provision",
                "--host",
                "winbox",
                "--update-script",
                "windows-update.ps1",
                *extra,
            ],
            obj={},
        )


def test_cli_help(runner):
    """Test the CLI help text."""
    result = runner.invoke(cli, ["--help"], obj={})
    assert result.exit_code == 0
    assert "Usage" in result.output
    assert "provision" in result.output
    assert "show-commands" in result.output


def test_show_commands(runner):
    """Test that show-commands prints every remote command line."""
    with runner.isolated_filesystem():
        result = runner.invoke(
            cli,
            [
                "show-commands",
                "--search-criteria",
                "O'Brien",
                "--filter",
                "include:$true",
                "--update-limit",
                "25",
            ],
            obj={},
        )

    assert result.exit_code == 0
    assert "-SearchCriteria 'O''Brien'" in result.output
    assert "-Filters 'include:$true'" in result.output
    assert "-UpdateLimit 25" in result.output
    assert "-OnlyCheckForRebootRequired" in result.output
    assert 'shutdown.exe -f -r -t 0 -c "packer restart"' in result.output
    assert "abort: shutdown.exe -a" in result.output


def test_show_commands_rejects_invalid_setting(runner):
    with runner.isolated_filesystem():
        result = runner.invoke(
            cli, ["show-commands", "--update-limit=-3"], obj={}
        )

    assert result.exit_code == 2
    assert "update_limit" in result.output


def test_missing_config_file(runner):
    with runner.isolated_filesystem():
        result = runner.invoke(
            cli, ["--config", "missing.yaml", "show-commands"], obj={}
        )

    assert result.exit_code == 2
    assert "not found" in result.output


def test_provision_requires_host(runner, mock_transport):
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["provision"], obj={})

    assert result.exit_code == 2
    assert "No target host configured" in result.output
    mock_transport.assert_not_called()


def test_provision_requires_update_script(runner, mock_transport):
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["provision", "--host", "winbox"], obj={})

    assert result.exit_code == 2
    assert "No update script configured" in result.output
    mock_transport.assert_not_called()


def test_provision_success(runner, mock_transport, mock_orchestrator):
    """Test a successful provisioning run."""
    result = invoke_provision(
        runner, "--port", "2222", "--ssh-user", "admin", "--update-limit", "5"
    )

    assert result.exit_code == 0
    mock_transport.assert_called_once()
    assert mock_transport.call_args.args == ("winbox",)
    assert mock_transport.call_args.kwargs["port"] == 2222
    assert mock_transport.call_args.kwargs["username"] == "admin"

    settings = mock_orchestrator.call_args.args[1]
    assert settings.update_limit == 5
    assert settings.connection.host == "winbox"
    assert mock_orchestrator.call_args.kwargs["cancel_event"] is not None
    mock_orchestrator.return_value.run.assert_called_once()
    mock_transport.return_value.__exit__.assert_called_once()


def test_provision_uses_verbose_logging(
    runner, mock_transport, mock_orchestrator, mock_setup_logging
):
    with runner.isolated_filesystem():
        with open("windows-update.ps1", "w") as f:
            f.write("exit 0")
        result = runner.invoke(
            cli,
            [
                "-v",
                "--json-logs",
                "provision",
                "--host",
                "winbox",
                "--update-script",
                "windows-update.ps1",
            ],
            obj={},
        )

    assert result.exit_code == 0
    kwargs = mock_setup_logging.call_args.kwargs
    assert kwargs["log_level"] == 10
    assert kwargs["json_format"] is True


@pytest.mark.parametrize(
    "error, exit_code",
    [
        (UpdateScriptError(1603), 1),
        (TransportError("connection reset"), 1),
        (RemoteCommandError("Failed", 5), 1),
        (RetryTimeoutError("Machine not yet available", attempts=7), 3),
        (RetryCancelledError("Cancelled before restart"), 130),
        (CommandCancelledError("Cancelled while running update"), 130),
    ],
)
def test_provision_failure_exit_codes(
    runner, mock_transport, mock_orchestrator, error, exit_code
):
    """Test that failures map to distinct exit codes."""
    mock_orchestrator.return_value.run.side_effect = error

    result = invoke_provision(runner)

    assert result.exit_code == exit_code
    assert str(error) in result.output
    mock_transport.return_value.__exit__.assert_called_once()
