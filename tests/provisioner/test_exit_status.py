# tests/provisioner/test_exit_status.py
# -*- coding: utf-8 -*-
"""
Tests for the exit status protocol.
"""

import pytest

from provisioner.exit_status import (
    UpdateOutcome,
    UpdateScriptError,
    classify_exit_status,
    interpret_reboot_pending,
    interpret_update_status,
)


def test_zero_is_converged():
    result = classify_exit_status(0)

    assert result.outcome is UpdateOutcome.CONVERGED
    assert result.converged
    assert not result.restart_required


def test_101_requires_restart():
    result = classify_exit_status(101)

    assert result.outcome is UpdateOutcome.RESTART_REQUIRED
    assert result.restart_required


@pytest.mark.parametrize("exit_status", [1, 2, 100, 102, -1, 3010])
def test_other_statuses_fail(exit_status):
    result = classify_exit_status(exit_status)

    assert result.outcome is UpdateOutcome.FAILED
    with pytest.raises(UpdateScriptError) as excinfo:
        result.raise_for_failure()
    assert excinfo.value.exit_status == exit_status
    assert str(exit_status) in str(excinfo.value)


def test_interpret_update_status_returns_result():
    assert interpret_update_status(101).exit_status == 101


def test_interpret_reboot_pending():
    assert interpret_reboot_pending(0) is False
    assert interpret_reboot_pending(101) is True
    with pytest.raises(UpdateScriptError):
        interpret_reboot_pending(1)
