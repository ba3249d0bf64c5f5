# tests/conftest.py
import threading
from datetime import timedelta
from typing import Dict, List, Optional

import pytest

from common.transport import Transport
from provisioner.config_models import AppSettings


class FakeTransport(Transport):
    """
    In-memory transport.

    Responses are queued per command line. Each queued entry is either an
    exit status or an exception to raise; the last entry of a queue is
    repeated once the others are used up. Unknown commands exit with 0.
    """

    def __init__(self):
        self.uploads: Dict[str, bytes] = {}
        self.commands: List[str] = []
        self.upload_error: Optional[Exception] = None
        self.cancel_events: List[Optional[threading.Event]] = []
        self._responses: Dict[str, list] = {}

    def respond(self, command: str, *results) -> None:
        self._responses.setdefault(command, []).extend(results)

    def upload(self, remote_path: str, data: bytes) -> None:
        if self.upload_error is not None:
            raise self.upload_error
        self.uploads[remote_path] = data

    def run(self, command: str, cancel_event=None) -> int:
        self.commands.append(command)
        self.cancel_events.append(cancel_event)
        queue = self._responses.get(command)
        if not queue:
            return 0
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, BaseException):
            raise result
        return result

    def count(self, command: str) -> int:
        return self.commands.count(command)


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def app_settings():
    """Settings with short timings so that retries finish quickly."""
    return AppSettings(
        retry_delay=0.01,
        restart_timeout=timedelta(seconds=5),
    )
