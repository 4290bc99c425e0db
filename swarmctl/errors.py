"""Exception types raised by swarmctl.

Every failure surfaced to a caller derives from :class:`SwarmError` so the
CLI can report a single message chain and exit non-zero.

Usage:
    from swarmctl.errors import ExecutionError, SwarmError

    try:
        manager.create_swarm(members)
    except SwarmError as e:
        print(e)
"""

from __future__ import annotations

import subprocess

__all__ = [
    "SwarmError",
    "TransportError",
    "ExecutionError",
    "DeserializationError",
    "InvalidQuorumSize",
    "ClusterAlreadyExists",
    "NoExistingCluster",
    "NoSuitableManager",
    "DrainTimeout",
    "ManifestError",
    "PROCESS_ERRORS",
]

# Errors raised by subprocess when a command cannot be started or finished
PROCESS_ERRORS: tuple[type[BaseException], ...] = (
    OSError,                      # Command not found, permission denied
    subprocess.TimeoutExpired,    # Command exceeded its timeout
)


class SwarmError(Exception):
    """Base class for all swarmctl failures.

    Callers add operation context with :meth:`add_context` and re-raise the
    same exception, so the type and its attributes survive while ``str()``
    reads as one message chain, outermost operation first.
    """

    def __init__(self, *args):
        super().__init__(*args)
        self.context: list[str] = []

    def add_context(self, message: str) -> SwarmError:
        self.context.insert(0, message)
        return self

    def __str__(self) -> str:
        return ": ".join(self.context + [super().__str__()])


class TransportError(SwarmError):
    """Raised when the target node cannot be switched to or reached."""

    def __init__(self, message: str, address: str | None = None):
        super().__init__(message)
        self.address = address


class ExecutionError(SwarmError):
    """Raised when a command ran on the target but failed.

    Both captured streams are kept for diagnostics.
    """

    def __init__(
        self,
        command: str,
        exit_code: int | None,
        stdout: str = "",
        stderr: str = "",
        address: str | None = None,
    ):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.address = address
        detail = stderr.strip()[:200] or stdout.strip()[:200]
        message = f"command failed on {address or 'unknown target'} with exit code {exit_code}: {command}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class DeserializationError(SwarmError):
    """Raised when command output does not match the expected JSON shape."""

    def __init__(self, message: str, payload: str = ""):
        super().__init__(message)
        self.payload = payload


class InvalidQuorumSize(SwarmError):
    """Raised when the manager set is not 3 or 5 members."""

    def __init__(self, count: int):
        self.count = count
        super().__init__(f"expected 3 or 5 managers but got {count}")


class ClusterAlreadyExists(SwarmError):
    """Raised when formation targets a node that already belongs to a cluster."""

    def __init__(self, cluster_id: str, address: str | None = None):
        self.cluster_id = cluster_id
        self.address = address
        super().__init__(f"swarm cluster with id {cluster_id} already exists on {address}")


class NoExistingCluster(SwarmError):
    """Raised when an update targets a node that is not part of any cluster."""

    def __init__(self, address: str | None = None):
        self.address = address
        super().__init__(f"no swarm cluster found on {address}")


class NoSuitableManager(SwarmError):
    """Raised when no active manager could be reached."""

    def __init__(self, candidates: list[str] | None = None):
        self.candidates = list(candidates or [])
        if self.candidates:
            message = f"unable to connect to a suitable manager (tried {', '.join(self.candidates)})"
        else:
            message = "unable to connect to a suitable manager (no remote managers known)"
        super().__init__(message)


class DrainTimeout(SwarmError):
    """Raised when a node did not finish draining before the deadline."""

    def __init__(self, node: str, elapsed: float):
        self.node = node
        self.elapsed = elapsed
        super().__init__(f"timed out waiting for {node} to drain after {elapsed:.1f}s")


class ManifestError(SwarmError):
    """Raised when the membership manifest is missing or malformed."""

