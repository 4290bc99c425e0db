"""
Pydantic models for docker swarm command output, and the member node
description read from the membership manifest.

Field aliases mirror the JSON keys docker prints with ``--format "{{ json . }}"``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from swarmctl.commands import MANAGER_ROLE, WORKER_ROLE
from swarmctl.errors import DeserializationError
from swarmctl.labels import parse_labels

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

ROLE_TAG = "role"
LABELS_TAG = "labels"

# Task states after which a task no longer runs on its node
TERMINAL_TASK_STATES = frozenset({
    "shutdown",
    "complete",
    "failed",
    "rejected",
    "orphaned",
    "remove",
})


class DockerModel(BaseModel):
    """Base for models decoded from docker JSON output."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RemoteManager(DockerModel):
    """A manager known to a node, as listed in ``docker info``."""
    node_id: str = Field("", alias="NodeID")
    addr: str = Field(alias="Addr")

    @property
    def host(self) -> str:
        """Host part of ``addr`` (``host:port``).

        Raises:
            ValueError: if the address has no port or an empty host.
        """
        return split_host_port(self.addr)[0]


class ClusterRef(DockerModel):
    """Cluster identity block of ``docker info``."""
    id: str = Field("", alias="ID")


class SwarmInfo(DockerModel):
    """The ``Swarm`` section of ``docker info``."""
    node_id: str = Field("", alias="NodeID")
    node_addr: str = Field("", alias="NodeAddr")
    local_node_state: str = Field("inactive", alias="LocalNodeState")
    control_available: bool = Field(False, alias="ControlAvailable")
    error: str = Field("", alias="Error")
    cluster: Optional[ClusterRef] = Field(None, alias="Cluster")
    remote_managers: List[RemoteManager] = Field(default_factory=list, alias="RemoteManagers")
    nodes: int = Field(0, alias="Nodes")
    managers: int = Field(0, alias="Managers")

    @field_validator("remote_managers", mode="before")
    @classmethod
    def _null_to_empty(cls, value):
        # docker prints null when the node knows no managers
        return [] if value is None else value


class NodeInfo(DockerModel):
    """One node's own view of the cluster (``docker info``).

    Produced fresh on every query. Quorum membership can change between
    calls, so instances are never cached by the manager.
    """
    id: str = Field("", alias="ID")
    name: str = Field("", alias="Name")
    swarm: SwarmInfo = Field(default_factory=SwarmInfo, alias="Swarm")

    @property
    def is_manager(self) -> bool:
        """True when the node is an active quorum manager."""
        return self.swarm.control_available and self.swarm.local_node_state == "active"

    @property
    def node_id(self) -> str:
        return self.swarm.node_id

    @property
    def cluster_id(self) -> str:
        """Cluster id, or an empty string when the node is not in a swarm."""
        return self.swarm.cluster.id if self.swarm.cluster else ""

    @property
    def remote_manager_addresses(self) -> list[str]:
        return [m.addr for m in self.swarm.remote_managers]


class NodeStatus(DockerModel):
    """One row of ``docker node ls``."""
    id: str = Field("", alias="ID")
    hostname: str = Field(alias="Hostname")
    status: str = Field("", alias="Status")
    availability: str = Field("", alias="Availability")
    manager_status: str = Field("", alias="ManagerStatus")
    engine_version: str = Field("", alias="EngineVersion")
    self_: bool = Field(False, alias="Self")

    @property
    def is_manager(self) -> bool:
        return bool(self.manager_status)

    @property
    def is_leader(self) -> bool:
        return self.manager_status.lower() == "leader"


class Task(DockerModel):
    """One row of ``docker node ps``."""
    id: str = Field("", alias="ID")
    name: str = Field("", alias="Name")
    image: str = Field("", alias="Image")
    node: str = Field("", alias="Node")
    desired_state: str = Field("", alias="DesiredState")
    current_state: str = Field("", alias="CurrentState")
    error: str = Field("", alias="Error")
    ports: str = Field("", alias="Ports")

    @property
    def state(self) -> str:
        """Current state without its age, e.g. ``"Shutdown 2 minutes ago"`` -> ``"shutdown"``."""
        parts = self.current_state.split()
        return parts[0].lower() if parts else ""

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_TASK_STATES


def all_shutdown(tasks: Iterable[Task]) -> bool:
    """True when every task is in a terminal state. No tasks means drained."""
    return all(task.is_terminal for task in tasks)


# =============================================================================
# Membership
# =============================================================================


@dataclass(frozen=True)
class MemberNode:
    """A machine that should be a member of the cluster.

    Attributes:
        hostname: Hostname the node registers with in the swarm
        public_address: Address the coordinator reaches the node on
        private_address: Address advertised for intra-cluster traffic
        tags: Free-form tags; ``role`` is required, ``labels`` optional
    """

    hostname: str
    public_address: str
    private_address: str
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def identity(self) -> tuple[str, str]:
        return (self.public_address, self.hostname)

    @property
    def role(self) -> str:
        return self.get_tag(ROLE_TAG)

    @property
    def is_manager(self) -> bool:
        return self.role == MANAGER_ROLE

    @property
    def is_worker(self) -> bool:
        return self.role == WORKER_ROLE

    @property
    def labels(self) -> dict[str, list[str]]:
        return parse_labels(self.get_tag(LABELS_TAG))

    def get_tag(self, name: str) -> str:
        return self.tags.get(name, "")


def filter_by_tag(nodes: Iterable[MemberNode], tag: str, value: str) -> list[MemberNode]:
    """Return nodes whose ``tag`` equals ``value``, keeping input order."""
    return [node for node in nodes if node.get_tag(tag) == value]


# =============================================================================
# Decoding
# =============================================================================


def split_host_port(addr: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into its parts."""
    host, sep, port = addr.rpartition(":")
    if not sep or not host or not port:
        raise ValueError(f"missing port in address {addr!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"too many colons in address {addr!r}")
    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"invalid port in address {addr!r}") from None
    if not host:
        raise ValueError(f"missing host in address {addr!r}")
    return host, port_number


def parse_info(text: str) -> NodeInfo:
    """Decode the single JSON object printed by ``docker info``."""
    try:
        return NodeInfo.model_validate_json(text.strip())
    except ValidationError as e:
        raise DeserializationError(f"error parsing node info: {e}", payload=text) from e


def parse_json_lines(text: str, model: Type[ModelT]) -> list[ModelT]:
    """Decode line-delimited JSON objects into ``model`` instances.

    Blank lines are skipped.
    """
    items: list[ModelT] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            items.append(model.model_validate(json.loads(line)))
        except (json.JSONDecodeError, ValidationError) as e:
            raise DeserializationError(
                f"error parsing {model.__name__} on line {lineno}: {e}",
                payload=text,
            ) from e
    return items
