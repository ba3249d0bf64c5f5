# common/transport.py
# -*- coding: utf-8 -*-
"""
Transport to the machine being provisioned.

`Transport` is the interface the provisioning core consumes: upload a file
and run a command line, returning its exit status. Connection failures
are raised as `TransportError` so that callers can tell them apart from a
command that ran and exited with a non-zero status.

`SSHTransport` implements the interface with paramiko against the OpenSSH
server shipped with Windows.
"""

import codecs
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import paramiko

module_logger = logging.getLogger(__name__)

_WINDOWS_DRIVE_RE = re.compile(r"^[A-Za-z]:[/\\]")


class TransportError(Exception):
    """The command or upload could not be carried out on the target."""

    def __init__(
        self,
        message: str,
        original_error: Optional[BaseException] = None,
    ):
        self.original_error = original_error
        super().__init__(message)


class CommandCancelledError(TransportError):
    """A running command was abandoned because cancellation was requested."""


class Transport(ABC):
    """Runs commands on, and uploads files to, a single target machine."""

    @abstractmethod
    def upload(self, remote_path: str, data: bytes) -> None:
        """
        Write `data` to `remote_path` on the target, replacing any existing file.

        Raises:
            TransportError: If the file could not be written.
        """
        pass

    @abstractmethod
    def run(
        self, command: str, cancel_event: Optional[threading.Event] = None
    ) -> int:
        """
        Run `command` on the target and wait for it to finish.

        Output is streamed to the log while the command runs. When
        `cancel_event` is set before the command completes, the command is
        abandoned and `CommandCancelledError` is raised.

        Returns:
            The exit status of the command.

        Raises:
            TransportError: If the command could not be run or its exit
                status could not be observed.
        """
        pass

    def close(self) -> None:
        """Release any connection held by the transport."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False


def to_sftp_path(remote_path: str) -> str:
    """
    Convert a Windows path to the form expected by the Windows OpenSSH SFTP server.

    `C:/Windows/Temp/x.ps1` becomes `/C:/Windows/Temp/x.ps1`; other paths are
    returned unchanged.
    """
    if _WINDOWS_DRIVE_RE.match(remote_path):
        return "/" + remote_path.replace("\\", "/")
    return remote_path


class SSHTransport(Transport):
    """
    Transport over SSH.

    The connection is opened lazily and dropped after any failure, so the
    next call reconnects. That is what lets the same transport keep working
    across a restart of the target.
    """

    def __init__(
        self,
        host: str,
        port: int = 22,
        username: Optional[str] = None,
        password: Optional[str] = None,
        key_filename: Optional[Union[str, Path]] = None,
        connect_timeout: float = 30.0,
        keepalive_interval: int = 15,
        command_timeout: Optional[float] = None,
        poll_interval: float = 0.2,
        current_logger: Optional[logging.Logger] = None,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.key_filename = str(key_filename) if key_filename else None
        self.connect_timeout = connect_timeout
        self.keepalive_interval = keepalive_interval
        self.command_timeout = command_timeout
        self.poll_interval = poll_interval
        self.logger = current_logger if current_logger else module_logger
        self._client: Optional[paramiko.SSHClient] = None

    def _connect(self) -> paramiko.SSHClient:
        if self._client is not None:
            transport = self._client.get_transport()
            if transport is not None and transport.is_active():
                return self._client
            self.close()

        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                key_filename=self.key_filename,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
            )
        except (paramiko.SSHException, OSError, EOFError) as e:
            client.close()
            raise TransportError(
                f"Could not connect to {self.host}:{self.port}: {e}", e
            ) from e
        if self.keepalive_interval:
            # Detects a target that vanished without closing the socket.
            client.get_transport().set_keepalive(self.keepalive_interval)
        self.logger.debug(f"Connected to {self.host}:{self.port}")
        self._client = client
        return client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def upload(self, remote_path: str, data: bytes) -> None:
        client = self._connect()
        sftp_path = to_sftp_path(remote_path)
        try:
            with client.open_sftp() as sftp:
                with sftp.open(sftp_path, "wb") as remote_file:
                    remote_file.write(data)
        except (paramiko.SSHException, OSError, EOFError) as e:
            self.close()
            raise TransportError(
                f"Could not upload {remote_path} to {self.host}: {e}", e
            ) from e
        self.logger.debug(f"Uploaded {len(data)} bytes to {remote_path}")

    def run(
        self, command: str, cancel_event: Optional[threading.Event] = None
    ) -> int:
        client = self._connect()
        try:
            channel = client.get_transport().open_session()
            channel.set_combine_stderr(True)
            channel.exec_command(command)

            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            deadline = (
                time.monotonic() + self.command_timeout
                if self.command_timeout
                else None
            )
            pending = ""
            while not channel.exit_status_ready() or channel.recv_ready():
                if cancel_event is not None and cancel_event.is_set():
                    channel.close()
                    raise CommandCancelledError(
                        f"Command cancelled on {self.host}"
                    )
                if deadline is not None and time.monotonic() > deadline:
                    channel.close()
                    raise TransportError(
                        f"Command on {self.host} did not finish within "
                        f"{self.command_timeout:g}s"
                    )
                if not channel.get_transport().is_active():
                    raise TransportError(f"Connection to {self.host} was lost")
                if channel.recv_ready():
                    chunk = decoder.decode(channel.recv(4096))
                    pending = self._log_output(pending + chunk)
                else:
                    time.sleep(self.poll_interval)
            pending += decoder.decode(b"", final=True)
            if pending:
                self.logger.info(pending.rstrip("\r"))

            exit_status = channel.recv_exit_status()
        except TransportError:
            self.close()
            raise
        except (paramiko.SSHException, OSError, EOFError) as e:
            self.close()
            raise TransportError(
                f"Command failed to run on {self.host}: {e}", e
            ) from e

        if exit_status == -1:
            self.close()
            raise TransportError(
                f"Connection to {self.host} closed before the command reported an exit status"
            )
        return exit_status

    def _log_output(self, text: str) -> str:
        """Log complete lines of `text` and return the unfinished remainder."""
        lines = text.split("\n")
        for line in lines[:-1]:
            self.logger.info(line.rstrip("\r"))
        return lines[-1]
