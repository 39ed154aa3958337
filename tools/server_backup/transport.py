"""Command execution on local or remote (SSH) servers."""

import os
import signal
import socket
import subprocess
import threading
from dataclasses import dataclass
from typing import BinaryIO, Dict, List, Optional

import paramiko

from shared.logger import get_logger

from .config import DefaultConfig, ServerConfig
from .errors import CommandError, ServerConnectionError

logger = get_logger(__name__)

CHUNK_SIZE = 32768


@dataclass
class ExecResult:
    """Outcome of one command execution."""

    exit_status: Optional[int]
    stderr: str
    timed_out: bool = False


class MultiWriter:
    """
    Broadcast written data to several binary destinations.

    Every destination is closed on exit, whether the block raised or not.
    """

    def __init__(self, destinations: Optional[List[BinaryIO]] = None):
        self.destinations: List[BinaryIO] = list(destinations or [])
        self.bytes_written = 0

    def add(self, destination: BinaryIO) -> None:
        self.destinations.append(destination)

    def write(self, data: bytes) -> None:
        for destination in self.destinations:
            destination.write(data)
        self.bytes_written += len(data)

    def close(self) -> None:
        errors = []
        for destination in self.destinations:
            try:
                destination.close()
            except OSError as e:
                errors.append(e)
        if errors:
            raise errors[0]

    def __enter__(self) -> "MultiWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class LocalTransport:
    """Run commands on this machine through the default shell."""

    def connect(self) -> None:
        pass

    def execute(
        self,
        command: str,
        sink: MultiWriter,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ExecResult:
        """
        Run a shell command, streaming stdout to sink.

        Args:
            command: Shell command line
            sink: Destination for standard output
            env: Extra environment variables
            timeout: Seconds before the process is killed (optional)

        Returns:
            ExecResult with exit status and collected stderr

        Raises:
            CommandError: If the process cannot be started
        """
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                env={**os.environ, **(env or {})},
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise CommandError(f"Failed to start command: {e}") from e

        errors: List[bytes] = []
        drain = threading.Thread(target=lambda: errors.append(process.stderr.read()))
        drain.start()

        timed_out = threading.Event()

        def kill() -> None:
            timed_out.set()
            _kill_group(process)

        timer = threading.Timer(timeout, kill) if timeout else None
        if timer:
            timer.start()
        try:
            for chunk in iter(lambda: process.stdout.read(CHUNK_SIZE), b""):
                sink.write(chunk)
            exit_status = process.wait()
        except BaseException:
            _kill_group(process)
            process.wait()
            raise
        finally:
            if timer:
                timer.cancel()
            drain.join()
            process.stdout.close()
            process.stderr.close()

        return ExecResult(
            exit_status=exit_status,
            stderr=b"".join(errors).decode("utf-8", errors="replace"),
            timed_out=timed_out.is_set(),
        )

    def close(self) -> None:
        pass


class SSHTransport:
    """
    Run commands on a remote server over one SSH connection.

    Attributes:
        server: Server configuration
        defaults: Default configuration (user and key fallback)
    """

    def __init__(self, server: ServerConfig, defaults: DefaultConfig):
        self.server = server
        self.defaults = defaults
        self.client: Optional[paramiko.SSHClient] = None

    def connect(self) -> None:
        """
        Open the SSH connection.

        Raises:
            ServerConnectionError: If the server cannot be reached or authenticated
        """
        user = self.server.effective_user(self.defaults)
        key_path = self.server.effective_key(self.defaults)
        logger.debug(f"SSH: connecting to {user}@{self.server.host}:{self.server.port}")

        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.server.host,
                port=self.server.port,
                username=user,
                key_filename=key_path,
                timeout=self.server.connect_timeout,
                allow_agent=key_path is None,
                look_for_keys=key_path is None,
            )
        except (paramiko.SSHException, socket.error, OSError) as e:
            client.close()
            raise ServerConnectionError(self.server.name, str(e)) from e

        self.client = client

    def execute(
        self,
        command: str,
        sink: MultiWriter,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ExecResult:
        """
        Run a command in the remote default shell, streaming stdout to sink.

        Args:
            command: Shell command line
            sink: Destination for standard output
            env: Environment variables (the server must accept them)
            timeout: Seconds without progress before the channel is closed

        Returns:
            ExecResult with exit status and collected stderr

        Raises:
            CommandError: If the command cannot be started
        """
        if self.client is None:
            raise CommandError(f"Not connected to server {self.server.name}")

        try:
            _, stdout, stderr = self.client.exec_command(
                command, timeout=timeout, environment=env or None
            )
        except paramiko.SSHException as e:
            raise CommandError(f"Failed to start command: {e}") from e

        errors: List[bytes] = []
        stop = threading.Event()
        drain = threading.Thread(target=_drain_stderr, args=(stderr.channel, errors, stop))
        drain.start()

        timed_out = False
        exit_status = None
        channel = stdout.channel
        try:
            for chunk in iter(lambda: stdout.read(CHUNK_SIZE), b""):
                sink.write(chunk)
            exit_status = channel.recv_exit_status()
        except socket.timeout:
            timed_out = True
        except paramiko.SSHException as e:
            raise CommandError(f"Connection lost while running command: {e}") from e
        finally:
            if exit_status is None:
                stop.set()
                channel.close()
            drain.join()

        return ExecResult(
            exit_status=exit_status,
            stderr=b"".join(errors).decode("utf-8", errors="replace"),
            timed_out=timed_out,
        )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None
            logger.debug(f"SSH: closed connection to {self.server.name}")


def _kill_group(process: subprocess.Popen) -> None:
    """Kill the shell and every process it started."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _drain_stderr(channel, errors: List[bytes], stop: threading.Event) -> None:
    """
    Collect stderr until EOF.

    The channel timeout applies to stderr too, so a quiet stderr times out while
    stdout is still streaming; reading resumes until EOF or until stop is set.
    """
    while True:
        try:
            chunk = channel.recv_stderr(CHUNK_SIZE)
        except socket.timeout:
            if stop.is_set():
                return
            continue
        if not chunk:
            return
        errors.append(chunk)


def open_transport(server: ServerConfig, defaults: DefaultConfig):
    """Create the transport matching the server (not yet connected)."""
    if server.local:
        return LocalTransport()
    return SSHTransport(server, defaults)
