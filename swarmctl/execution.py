"""Execution transports for running commands on swarm nodes.

A transport has exactly one current target at a time. The manager switches
the target and then runs commands against it, one at a time.

Usage:
    from swarmctl.execution import SSHConfig, SSHTransport, LocalTransport

    transport = SSHTransport(SSHConfig(user="ubuntu"))
    transport.switch_target("203.0.113.10")
    result = transport.run('docker info --format "{{ json . }}"')
    print(result.stdout)
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from swarmctl.errors import PROCESS_ERRORS, ExecutionError, TransportError

logger = logging.getLogger(__name__)

__all__ = [
    "CommandResult",
    "Transport",
    "LocalTransport",
    "SSHConfig",
    "SSHTransport",
]

# ssh exits 255 when the connection itself failed
SSH_CONNECTION_FAILED = 255

_VALID_ADDRESS = re.compile(r"^[A-Za-z0-9._:\-\[\]%]+$")


@dataclass
class CommandResult:
    """Captured output of a command that exited successfully."""

    command: str
    stdout: str
    stderr: str = ""
    exit_code: int = 0
    address: str = "local"
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def __bool__(self) -> bool:
        return self.success


class Transport(ABC):
    """Runs commands against a single, switchable target node."""

    def __init__(self) -> None:
        self._address: Optional[str] = None

    @property
    def address(self) -> Optional[str]:
        """The current target, or None before the first switch."""
        return self._address

    def switch_target(self, address: str) -> None:
        """Make ``address`` the target of subsequent commands.

        Switching to the current target is a no-op.

        Raises:
            TransportError: if the address is rejected or unreachable.
        """
        if address == self._address:
            return
        self._connect(address)
        logger.debug(f"Switched target from {self._address} to {address}")
        self._address = address

    def run(self, command: str) -> CommandResult:
        """Run ``command`` on the current target and capture its output.

        Raises:
            TransportError: if no target is set or the target is unreachable.
            ExecutionError: if the command exits non-zero.
        """
        if self._address is None:
            raise TransportError("no target node selected")

        logger.debug(f"Running command on {self._address}: {command}")
        started = time.monotonic()
        result = self._execute(command)
        result.duration_seconds = time.monotonic() - started

        if not result.success:
            logger.error(
                f"Command failed on {self._address} (exit {result.exit_code}): {command}\n"
                f"stdout: {result.stdout.strip()}\nstderr: {result.stderr.strip()}"
            )
            raise ExecutionError(
                command,
                result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                address=self._address,
            )
        return result

    def __str__(self) -> str:
        return f"{type(self).__name__}({self._address})"

    @abstractmethod
    def _connect(self, address: str) -> None:
        """Validate a new target and check it is reachable. Raise TransportError on failure."""

    @abstractmethod
    def _execute(self, command: str) -> CommandResult:
        """Run a command on the current target without checking its exit code."""


class LocalTransport(Transport):
    """Runs commands through the local shell.

    Every address is accepted: the local docker engine is the only engine,
    so the target is only recorded for logging.
    """

    def __init__(self, command_timeout: float = 300.0) -> None:
        super().__init__()
        self.command_timeout = command_timeout

    def _connect(self, address: str) -> None:
        logger.debug(f"Local transport ignores target {address}")

    def _execute(self, command: str) -> CommandResult:
        try:
            proc = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except PROCESS_ERRORS as e:
            raise ExecutionError(command, None, stderr=str(e), address=self._address) from e

        return CommandResult(
            command=command,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            exit_code=proc.returncode,
            address=self._address or "local",
        )


@dataclass
class SSHConfig:
    """SSH connection settings shared by every target."""

    user: Optional[str] = "root"
    port: int = 22
    key_path: Optional[str] = None
    connect_timeout: int = 10
    command_timeout: float = 300.0

    def ssh_target(self, host: str) -> str:
        return f"{self.user}@{host}" if self.user else host

    def build_ssh_command(self, host: str) -> list[str]:
        """Build the ``ssh`` argv (without the remote command) for ``host``."""
        cmd = [
            "ssh",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", "StrictHostKeyChecking=no",
            "-o", "BatchMode=yes",
        ]
        if self.port != 22:
            cmd.extend(["-p", str(self.port)])
        if self.key_path:
            cmd.extend(["-i", os.path.expanduser(self.key_path)])
        cmd.append(self.ssh_target(host))
        return cmd


class SSHTransport(Transport):
    """Runs commands on the target over ``ssh``."""

    PROBE_COMMAND = "true"

    def __init__(self, config: Optional[SSHConfig] = None) -> None:
        super().__init__()
        self.config = config or SSHConfig()

    def _connect(self, address: str) -> None:
        if not address or not _VALID_ADDRESS.match(address):
            raise TransportError(f"invalid node address {address!r}", address=address)

        cmd = self.config.build_ssh_command(address) + [self.PROBE_COMMAND]
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.connect_timeout + 5,
            )
        except PROCESS_ERRORS as e:
            raise TransportError(f"error connecting to {address}: {e}", address=address) from e

        if proc.returncode != 0:
            raise TransportError(
                f"error connecting to {address}: {(proc.stderr or '').strip() or f'exit code {proc.returncode}'}",
                address=address,
            )

    def _execute(self, command: str) -> CommandResult:
        address = self._address
        cmd = self.config.build_ssh_command(address) + [command]
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.command_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(
                command, None, stderr=f"timed out after {self.config.command_timeout}s", address=address
            ) from e
        except OSError as e:
            raise TransportError(f"error running ssh for {address}: {e}", address=address) from e

        if proc.returncode == SSH_CONNECTION_FAILED:
            raise TransportError(
                f"lost connection to {address}: {(proc.stderr or '').strip()}",
                address=address,
            )

        return CommandResult(
            command=command,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            exit_code=proc.returncode,
            address=address,
        )
