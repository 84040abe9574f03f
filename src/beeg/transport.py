"""Command transports: local subprocess and SSH."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import asyncssh

from .config import Config, Node

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Base class for transport failures."""


class ConnectionFailed(TransportError):
    """The command could not be started on the node."""

    def __init__(self, host: str, cause: object) -> None:
        super().__init__(f"{host}: {cause}")
        self.host = host
        self.cause = cause


class CommandTimeout(TransportError):
    """The command did not complete in time and was terminated."""

    def __init__(self, host: str, timeout: float) -> None:
        super().__init__(f"{host}: timed out after {timeout:g}s")
        self.host = host
        self.timeout = timeout


class NonZeroExit(TransportError):
    """The command ran but exited with a failure status."""

    def __init__(self, exit_status: int, stderr: str) -> None:
        message = f"exit status {exit_status}"
        if stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)
        self.exit_status = exit_status
        self.stderr = stderr


@dataclass(frozen=True)
class CommandOutput:
    """Captured output of one command."""

    exit_status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    def check_returncode(self) -> CommandOutput:
        """Return self, or raise NonZeroExit if the command failed."""
        if not self.ok:
            raise NonZeroExit(self.exit_status, self.stderr)
        return self


class Transport(ABC):
    """Runs one command on one node, one process or session per call."""

    name: str = ""

    @abstractmethod
    async def run(self, node: Node, command: str, timeout: float) -> CommandOutput:
        """Run ``command`` on ``node``.

        Raises ConnectionFailed when the command could not be started and
        CommandTimeout when it did not finish within ``timeout`` seconds.
        """


REMOTE_GRACE = 1.0


def wrap_timeout(command: str, timeout: float) -> str:
    """Bound a remote command with coreutils ``timeout``.

    Closing a non-pty SSH channel does not signal the remote process, so the
    remote side kills it itself shortly after the local deadline passes.
    """
    limit = timeout + REMOTE_GRACE
    return f"timeout --signal=KILL {limit:g}s sh -lc {shlex.quote(command)}"


def _kill_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class LocalTransport(Transport):
    """Runs commands with ``sh -lc`` on the controlling host.

    Each command gets its own session so that a timeout or cancellation
    kills the whole process group, including any children it spawned.
    """

    name = "local"

    async def run(self, node: Node, command: str, timeout: float) -> CommandOutput:
        logger.debug("[%s] local: %s", node.name, command)
        try:
            proc = await asyncio.create_subprocess_exec(
                "sh",
                "-lc",
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise ConnectionFailed("localhost", e) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
        except asyncio.TimeoutError:
            _kill_group(proc)
            await proc.wait()
            raise CommandTimeout("localhost", timeout) from None
        except asyncio.CancelledError:
            _kill_group(proc)
            await proc.wait()
            raise

        return CommandOutput(
            exit_status=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )


class SSHTransport(Transport):
    """Runs commands over a fresh non-interactive SSH connection.

    Authentication comes from the SSH agent or key files only; password and
    keyboard-interactive prompts are disabled so an unreachable login fails
    fast. Host keys are not verified, so a first contact never blocks.
    """

    name = "ssh"

    def __init__(
        self,
        user: str | None = None,
        ssh_key: Path | None = None,
        connect_timeout: float = 5.0,
        port: int = 22,
    ) -> None:
        self.user = user
        self.ssh_key = ssh_key
        self.connect_timeout = connect_timeout
        self.port = port

    def target(self, node: Node) -> str:
        return f"{self.user}@{node.host}" if self.user else node.host

    def connect_options(self) -> dict:
        """Keyword arguments passed to ``asyncssh.connect``."""
        options: dict = {
            "port": self.port,
            "known_hosts": None,
            "password_auth": False,
            "kbdint_auth": False,
            "connect_timeout": self.connect_timeout,
        }
        if self.user:
            options["username"] = self.user
        if self.ssh_key:
            options["client_keys"] = [str(self.ssh_key)]
        return options

    async def run(self, node: Node, command: str, timeout: float) -> CommandOutput:
        logger.debug("[%s] ssh %s: %s", node.name, self.target(node), command)
        try:
            async with asyncssh.connect(node.host, **self.connect_options()) as conn:
                try:
                    result = await asyncio.wait_for(
                        conn.run(wrap_timeout(command, timeout), check=False), timeout
                    )
                except asyncio.TimeoutError:
                    raise CommandTimeout(node.host, timeout) from None
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
            # connect_timeout surfaces as a TimeoutError before any output
            raise ConnectionFailed(node.host, str(e) or "connection timed out") from e

        return CommandOutput(
            exit_status=result.exit_status if result.exit_status is not None else -1,
            stdout=_as_text(result.stdout),
            stderr=_as_text(result.stderr),
        )


def _as_text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def transport_from_config(config: Config) -> Transport:
    """Build the transport named by the config."""
    if config.transport == "local":
        return LocalTransport()
    return SSHTransport(
        user=config.ssh_user,
        ssh_key=config.ssh_key,
        connect_timeout=config.connect_timeout,
    )
