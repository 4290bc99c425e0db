"""Shared pytest fixtures for swarmctl tests.

Provides an in-memory docker swarm behind a recording Transport, a fake
clock for drain polling, and member node factories.
"""

import json
from dataclasses import dataclass, field
from typing import Optional

import pytest

from swarmctl.errors import TransportError
from swarmctl.execution import CommandResult, Transport
from swarmctl.manager import SwarmManager
from swarmctl.models import MemberNode

CLUSTER_ID = "qzk4f8w2cluster"
MANAGER_TOKEN = "SWMTKN-1-manager"
WORKER_TOKEN = "SWMTKN-1-worker"


# =============================================================================
# FAKE SWARM
# =============================================================================


@dataclass
class FakeNode:
    """One docker engine reachable at ``address``."""
    hostname: str
    address: str
    node_id: str = ""
    cluster_id: str = ""
    manager: bool = False
    remote_managers: list = field(default_factory=list)
    reachable: bool = True


class FakeSwarmTransport(Transport):
    """Transport that emulates docker commands against FakeNodes.

    Records every switch and command so tests can assert on exactly what
    was issued and where.
    """

    def __init__(self, nodes=()):
        super().__init__()
        self.nodes = {node.address: node for node in nodes}
        self.switches: list[str] = []
        self.commands: list[tuple[str, str]] = []
        self.roster: Optional[list[dict]] = None
        self.task_outputs: list = []
        # command prefix -> stderr of a forced failure
        self.failures: dict[str, str] = {}
        self.task_polls = 0

    # -- helpers --------------------------------------------------------------

    def add(self, node: FakeNode) -> FakeNode:
        self.nodes[node.address] = node
        return node

    def position(self, address: str) -> None:
        """Set the current target without recording a switch."""
        self._address = address

    @property
    def invocations(self) -> int:
        return len(self.switches) + len(self.commands)

    def issued(self, prefix: str) -> list[tuple[str, str]]:
        return [(addr, cmd) for addr, cmd in self.commands if cmd.startswith(prefix)]

    # -- Transport ------------------------------------------------------------

    def _connect(self, address):
        self.switches.append(address)
        node = self.nodes.get(address)
        if node is None or not node.reachable:
            raise TransportError(f"ssh: connect to host {address} port 22: Connection refused", address=address)

    def _execute(self, command):
        self.commands.append((self._address, command))
        node = self.nodes[self._address]

        for prefix, stderr in self.failures.items():
            if command.startswith(prefix):
                return self._fail(command, stderr)

        if command.startswith("docker info"):
            return self._ok(command, json.dumps(self._info(node)))
        if command.startswith("docker swarm init"):
            if node.cluster_id:
                return self._fail(command, "Error response from daemon: This node is already part of a swarm.")
            node.cluster_id = CLUSTER_ID
            node.manager = True
            node.node_id = node.node_id or f"id-{node.hostname}"
            return self._ok(command, f"Swarm initialized: current node ({node.node_id}) is now a manager.\n")
        if command.startswith("docker swarm join-token"):
            if not node.manager:
                return self._fail(command, "Error response from daemon: This node is not a swarm manager.")
            role = command.split()[-1]
            return self._ok(command, (MANAGER_TOKEN if role == "manager" else WORKER_TOKEN) + "\n")
        if command.startswith("docker swarm join "):
            if node.cluster_id:
                return self._fail(command, "Error response from daemon: This node is already part of a swarm.")
            parts = command.split()
            token = parts[parts.index("--token") + 1]
            node.cluster_id = CLUSTER_ID
            node.manager = token == MANAGER_TOKEN
            node.node_id = node.node_id or f"id-{node.hostname}"
            return self._ok(command, "This node joined a swarm.\n")
        if command.startswith("docker node update"):
            if not node.manager:
                return self._fail(command, "Error response from daemon: This node is not a swarm manager.")
            return self._ok(command, command.split()[-1] + "\n")
        if command.startswith("docker node ls"):
            if not node.manager:
                return self._fail(command, "Error response from daemon: This node is not a swarm manager.")
            return self._ok(command, "\n".join(json.dumps(row) for row in self._roster()) + "\n")
        if command.startswith("docker node ps"):
            self.task_polls += 1
            output = self.task_outputs.pop(0) if len(self.task_outputs) > 1 else self.task_outputs[0]
            if isinstance(output, Exception):
                return self._fail(command, str(output))
            return self._ok(command, output)
        return self._fail(command, f"unknown command: {command}", exit_code=127)

    def _info(self, node: FakeNode) -> dict:
        swarm = {
            "NodeID": node.node_id if node.cluster_id else "",
            "NodeAddr": node.address if node.cluster_id else "",
            "LocalNodeState": "active" if node.cluster_id else "inactive",
            "ControlAvailable": node.manager,
            "Error": "",
            "RemoteManagers": [
                {"NodeID": f"id-{i}", "Addr": addr} for i, addr in enumerate(node.remote_managers)
            ] or None,
        }
        if node.cluster_id:
            swarm["Cluster"] = {"ID": node.cluster_id}
        return {"ID": f"engine-{node.hostname}", "Name": node.hostname, "Swarm": swarm}

    def _roster(self) -> list[dict]:
        if self.roster is not None:
            return self.roster
        return [
            {
                "ID": node.node_id,
                "Hostname": node.hostname,
                "Status": "Ready",
                "Availability": "Active",
                "ManagerStatus": "Reachable" if node.manager else "",
            }
            for node in self.nodes.values()
            if node.cluster_id
        ]

    def _ok(self, command, stdout):
        return CommandResult(command=command, stdout=stdout, address=self._address)

    def _fail(self, command, stderr, exit_code=1):
        return CommandResult(command=command, stdout="", stderr=stderr, exit_code=exit_code, address=self._address)


class FakeClock:
    """Monotonic clock advanced only by its own sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FirstChoice:
    """Deterministic stand-in for random.Random picking the first item."""

    def choice(self, seq):
        return seq[0]


# =============================================================================
# FIXTURES
# =============================================================================


def make_member(hostname, index, role, labels=None) -> MemberNode:
    tags = {"role": role}
    if labels:
        tags["labels"] = labels
    return MemberNode(
        hostname=hostname,
        public_address=f"203.0.113.{index}",
        private_address=f"10.0.0.{index}",
        tags=tags,
    )


@pytest.fixture
def member_factory():
    """Factory building MemberNodes with predictable addresses."""
    return make_member


@pytest.fixture
def fake_transport():
    return FakeSwarmTransport()


@pytest.fixture
def fake_node_class():
    return FakeNode


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def swarm_manager(fake_transport, fake_clock):
    """SwarmManager over the fake swarm with a deterministic rng and clock."""
    return SwarmManager(
        fake_transport,
        clock=fake_clock,
        sleep=fake_clock.sleep,
        rng=FirstChoice(),
    )


@pytest.fixture
def cluster_members(fake_transport, member_factory):
    """Three managers and two workers, all virgin, registered in the fake swarm.

    m1 and w1 declare labels.
    """
    members = [
        member_factory("m1", 11, "manager", labels="zone=a"),
        member_factory("m2", 12, "manager"),
        member_factory("m3", 13, "manager"),
        member_factory("w1", 21, "worker", labels="zone=b ssd"),
        member_factory("w2", 22, "worker"),
    ]
    for member in members:
        fake_transport.add(FakeNode(hostname=member.hostname, address=member.public_address))
    return members
