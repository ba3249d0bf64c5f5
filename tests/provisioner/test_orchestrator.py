# tests/provisioner/test_orchestrator.py
# -*- coding: utf-8 -*-
"""
Tests for the update/restart orchestrator.
"""

import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from common.retry_utils import RetryCancelledError, RetryTimeoutError
from common.transport import TransportError
from provisioner.command_encoder import file_command, windows_update_command
from provisioner.exit_status import UpdateScriptError
from provisioner.orchestrator import UpdateOrchestrator

ELEVATED_PATH = "C:/Windows/Temp/packer-windows-update-elevated.ps1"
PENDING_PATH = "C:/Windows/Temp/packer-windows-update-pending-reboot-elevated.ps1"
SCRIPT_PATH = "C:/Windows/Temp/packer-windows-update.ps1"
UPDATE = file_command(ELEVATED_PATH)
PENDING = file_command(PENDING_PATH)
RESTART = 'shutdown.exe -f -r -t 0 -c "packer restart"'
PROBE = 'shutdown.exe -f -r -t 60 -c "packer restart test"'
ABORT = "shutdown.exe -a"


@pytest.fixture
def make_orchestrator(fake_transport, app_settings):
    def factory(**kwargs):
        kwargs.setdefault("update_script", b"# update script")
        return UpdateOrchestrator(fake_transport, app_settings, **kwargs)

    return factory


def test_converged_on_first_run(make_orchestrator, fake_transport):
    session = make_orchestrator().run()

    assert session.iteration == 1
    assert session.restarts == 0
    assert session.last_exit_status == 0
    assert fake_transport.commands == [UPDATE]


@pytest.mark.parametrize("k", [1, 2, 4])
def test_restart_required_k_times(make_orchestrator, fake_transport, k):
    fake_transport.respond(UPDATE, *([101] * k), 0)

    session = make_orchestrator().run()

    assert session.iteration == k + 1
    assert session.restarts == k
    assert session.history == ["update", "restart"] * k + ["update"]
    assert fake_transport.commands == (
        [UPDATE, RESTART, PROBE, ABORT, PENDING] * k + [UPDATE]
    )


def test_protocol_violation_aborts_without_restart(
    make_orchestrator, fake_transport
):
    fake_transport.respond(UPDATE, 2)

    with pytest.raises(UpdateScriptError) as excinfo:
        make_orchestrator().run()

    assert excinfo.value.exit_status == 2
    assert fake_transport.commands == [UPDATE]


def test_protocol_violation_after_restart(make_orchestrator, fake_transport):
    fake_transport.respond(UPDATE, 101, 1603)

    with pytest.raises(UpdateScriptError) as excinfo:
        make_orchestrator().run()

    assert excinfo.value.exit_status == 1603
    assert fake_transport.count(RESTART) == 1
    assert fake_transport.commands[-1] == UPDATE


def test_transport_error_during_update_is_fatal(
    make_orchestrator, fake_transport
):
    fake_transport.respond(UPDATE, TransportError("connection reset"))

    with pytest.raises(TransportError):
        make_orchestrator().run()

    assert fake_transport.commands == [UPDATE]


def test_upload_failure_is_fatal(make_orchestrator, fake_transport):
    fake_transport.upload_error = TransportError("sftp unavailable")

    with pytest.raises(TransportError):
        make_orchestrator().run()

    assert fake_transport.commands == []


def test_scripts_uploaded_once(make_orchestrator, fake_transport):
    fake_transport.respond(UPDATE, 101, 101, 0)
    uploads = []
    original_upload = fake_transport.upload

    def recording_upload(remote_path, data):
        uploads.append(remote_path)
        original_upload(remote_path, data)

    fake_transport.upload = recording_upload

    make_orchestrator().run()

    assert uploads == [ELEVATED_PATH, PENDING_PATH, SCRIPT_PATH]
    assert fake_transport.uploads[SCRIPT_PATH] == b"# update script"


def test_elevated_wrappers_embed_encoded_commands(
    make_orchestrator, fake_transport, app_settings
):
    app_settings.search_criteria = "IsInstalled=0"
    app_settings.filters = ["include:$true"]
    app_settings.update_limit = 7
    app_settings.username = "builder"
    app_settings.password = "p'w"

    make_orchestrator().run()

    update_wrapper = fake_transport.uploads[ELEVATED_PATH].decode("utf-8")
    pending_wrapper = fake_transport.uploads[PENDING_PATH].decode("utf-8")
    expected_command = windows_update_command(
        SCRIPT_PATH, "IsInstalled=0", ["include:$true"], 7
    )
    assert expected_command in update_wrapper
    assert "'builder', 'p''w', 1" in update_wrapper
    assert "$name = 'packer-windows-update-" in update_wrapper
    assert "$name = 'packer-windows-update-pending-reboot-" in pending_wrapper


def test_update_script_read_from_settings(
    fake_transport, app_settings, tmp_path
):
    script = tmp_path / "windows-update.ps1"
    script.write_bytes(b"param($UpdateLimit)")
    app_settings.update_script = script

    UpdateOrchestrator(fake_transport, app_settings).run()

    assert fake_transport.uploads[SCRIPT_PATH] == b"param($UpdateLimit)"


def test_missing_update_script(fake_transport, app_settings):
    with pytest.raises(ValueError):
        UpdateOrchestrator(fake_transport, app_settings).run()

    assert fake_transport.uploads == {}


def test_restart_timeout_is_fatal(make_orchestrator, fake_transport, app_settings):
    app_settings.restart_timeout = timedelta(seconds=0.05)
    fake_transport.respond(UPDATE, 101, 0)
    fake_transport.respond(PROBE, TransportError("connection refused"))

    with pytest.raises(RetryTimeoutError):
        make_orchestrator().run()

    assert fake_transport.count(UPDATE) == 1


def test_cancelled_before_first_update(make_orchestrator, fake_transport):
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(RetryCancelledError):
        make_orchestrator(cancel_event=cancel_event).run()

    assert fake_transport.commands == []


def test_cancelled_between_update_and_restart(
    make_orchestrator, fake_transport
):
    cancel_event = threading.Event()
    fake_transport.respond(UPDATE, 101)
    original_run = fake_transport.run

    def run_then_cancel(command, cancel_event=None):
        status = original_run(command, cancel_event)
        cancel_event.set()
        return status

    fake_transport.run = run_then_cancel

    with pytest.raises(RetryCancelledError):
        make_orchestrator(cancel_event=cancel_event).run()

    assert fake_transport.commands == [UPDATE]


def test_uses_injected_restart_sequencer(make_orchestrator, fake_transport):
    sequencer = MagicMock()
    fake_transport.respond(UPDATE, 101, 101, 0)

    session = make_orchestrator(restart_sequencer=sequencer).run()

    assert sequencer.restart.call_count == 2
    assert session.restarts == 2
    assert fake_transport.commands == [UPDATE, UPDATE, UPDATE]


def test_failure_is_logged_as_critical(fake_transport, app_settings):
    logger = MagicMock()
    fake_transport.respond(UPDATE, 5)

    with pytest.raises(UpdateScriptError):
        UpdateOrchestrator(
            fake_transport,
            app_settings,
            update_script=b"",
            current_logger=logger,
        ).run()

    logger.critical.assert_called_once()
    assert "exit status: 5" in logger.critical.call_args[0][0]
