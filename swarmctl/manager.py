"""Swarm cluster lifecycle coordinator.

SwarmManager drives the multi-step protocols that form, grow and drain a
docker swarm cluster. It always acts against the transport's current target
node; protocols switch that target as they go and leave it on a manager when
they finish.

Usage:
    from swarmctl.execution import SSHConfig, SSHTransport
    from swarmctl.manager import SwarmManager

    manager = SwarmManager(SSHTransport(SSHConfig(user="ubuntu")))
    cluster_id = manager.create_swarm(members)
    manager.drain_nodes(["worker-2"])

All commands run sequentially through one transport. Use one manager (and
one transport) per concurrent caller.
"""

from __future__ import annotations

import logging
import random
import time
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

from swarmctl import commands
from swarmctl.commands import (
    AVAILABILITY_ACTIVE,
    AVAILABILITY_DRAIN,
    MANAGER_ROLE,
    WORKER_ROLE,
)
from swarmctl.errors import (
    ClusterAlreadyExists,
    DeserializationError,
    DrainTimeout,
    ExecutionError,
    InvalidQuorumSize,
    NoExistingCluster,
    NoSuitableManager,
    SwarmError,
    TransportError,
)
from swarmctl.execution import Transport
from swarmctl.models import (
    ROLE_TAG,
    MemberNode,
    NodeInfo,
    NodeStatus,
    RemoteManager,
    Task,
    all_shutdown,
    filter_by_tag,
    parse_info,
    parse_json_lines,
)

logger = logging.getLogger(__name__)

# Allowed number of managers for a healthy raft quorum
QUORUM_SIZES = (3, 5)

DEFAULT_DRAIN_INTERVAL = 5.0
DEFAULT_DRAIN_TIMEOUT = 600.0  # 10 minutes per node

# Failures while polling drain progress that are retried on the next tick
DRAIN_POLL_ERRORS: tuple[type[SwarmError], ...] = (
    ExecutionError,
    DeserializationError,
    TransportError,
)


class SwitchOutcome(Enum):
    """Result of trying one failover candidate."""
    SWITCHED = "switched"
    BAD_ADDRESS = "bad_address"
    UNREACHABLE = "unreachable"


class DrainState(Enum):
    """Drain progress of a single node."""
    REQUESTED = "requested"
    DRAINING = "draining"
    DRAINED = "drained"
    TIMED_OUT = "timed_out"


def check_quorum(managers: Sequence[MemberNode]) -> None:
    """Raise InvalidQuorumSize unless there are 3 or 5 managers."""
    if len(managers) not in QUORUM_SIZES:
        raise InvalidQuorumSize(len(managers))


class SwarmManager:
    """Manages all operations of a docker swarm cluster through a Transport."""

    def __init__(
        self,
        transport: Transport,
        *,
        drain_interval: float = DEFAULT_DRAIN_INTERVAL,
        drain_timeout: float = DEFAULT_DRAIN_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the manager.

        Args:
            transport: Transport owned exclusively by this manager
            drain_interval: Seconds between drain progress polls
            drain_timeout: Seconds to wait for one node to drain
            clock: Monotonic time source used for drain deadlines
            sleep: Blocking sleep used between drain polls
            rng: Random source for leader / join target selection
        """
        self._transport = transport
        self.drain_interval = drain_interval
        self.drain_timeout = drain_timeout
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._drain_states: dict[str, DrainState] = {}

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def drain_states(self) -> dict[str, DrainState]:
        """Drain state per node for the most recent drain_nodes() call."""
        return dict(self._drain_states)

    # =========================================================================
    # Plumbing
    # =========================================================================

    def switch_node(self, address: str) -> None:
        """Switch to the node at ``address`` for subsequent operations."""
        try:
            self._transport.switch_target(address)
        except TransportError as e:
            logger.error(f"[SwarmManager] Error switching to node {address}: {e}")
            e.add_context(f"error switching to node {address}")
            raise

    def _run(self, command: str) -> str:
        return self._transport.run(command).stdout

    def _try_switch(self, candidate: RemoteManager) -> SwitchOutcome:
        try:
            host = candidate.host
        except ValueError as e:
            logger.warning(
                f"[SwarmManager] Error parsing remote manager address {candidate.addr!r} "
                f"(trying next manager): {e}"
            )
            return SwitchOutcome.BAD_ADDRESS

        try:
            self._transport.switch_target(host)
        except TransportError as e:
            logger.warning(
                f"[SwarmManager] Error switching to remote manager {host} "
                f"(trying next manager): {e}"
            )
            return SwitchOutcome.UNREACHABLE

        return SwitchOutcome.SWITCHED

    def ensure_manager(self) -> None:
        """Make sure the current target is an active manager.

        If the current node is not a manager, switch to the first remote
        manager it knows about that accepts the switch. Candidates are
        trusted and not re-checked after the switch.

        Raises:
            NoSuitableManager: if no candidate could be switched to.
        """
        try:
            node = self.get_info()
        except SwarmError as e:
            e.add_context("error getting node info")
            raise

        if node.is_manager:
            return

        candidates = node.swarm.remote_managers
        for candidate in candidates:
            if self._try_switch(candidate) is SwitchOutcome.SWITCHED:
                logger.info(f"[SwarmManager] Switched to remote manager {candidate.addr}")
                return

        raise NoSuitableManager([c.addr for c in candidates])

    # =========================================================================
    # Queries
    # =========================================================================

    def get_info(self) -> NodeInfo:
        """Return information about the current node."""
        return parse_info(self._run(commands.info_command()))

    def get_nodes(self) -> list[NodeStatus]:
        """Return the full member roster as seen by a manager."""
        try:
            self.ensure_manager()
        except SwarmError as e:
            e.add_context("error connecting to manager node")
            raise

        return parse_json_lines(self._run(commands.nodes_command()), NodeStatus)

    def get_managers(self) -> list[NodeInfo]:
        """Return node information for every manager the current node knows.

        The current target is restored afterwards, also when a query fails.
        """
        node = self.get_info()
        original = self._transport.address

        managers = []
        try:
            for remote in node.swarm.remote_managers:
                try:
                    host = remote.host
                except ValueError as e:
                    raise DeserializationError(
                        f"error parsing remote manager address {remote.addr!r}: {e}",
                        payload=remote.addr,
                    ) from e
                self.switch_node(host)
                try:
                    managers.append(self.get_info())
                except SwarmError as e:
                    e.add_context(f"error getting manager node info from {host}")
                    raise
        finally:
            if original is not None:
                self.switch_node(original)
        return managers

    def join_token(self, role: str) -> str:
        """Return the current join token for ``role`` ("manager" or "worker").

        Must run against a manager.
        """
        try:
            return self._run(commands.token_command(role)).strip()
        except SwarmError as e:
            e.add_context(f"error getting {role} join token")
            raise

    def _get_tasks(self, node: str) -> list[Task]:
        return parse_json_lines(self._run(commands.tasks_command(node)), Task)

    # =========================================================================
    # Membership
    # =========================================================================

    def _join_swarm(self, new_node: MemberNode, manager: MemberNode, token: str) -> None:
        self.switch_node(new_node.public_address)
        self._run(commands.join_command(new_node.private_address, token, manager.private_address))

    def _label_node(self, node: MemberNode, manager: MemberNode) -> bool:
        """Apply ``node``'s labels, issuing the update from ``manager``.

        Returns False when the node declares no labels.
        """
        labels = node.labels
        if not labels:
            return False

        self.switch_node(node.public_address)
        try:
            node_id = self.get_info().node_id
        except SwarmError as e:
            e.add_context(f"error getting node info from {node.public_address}")
            raise

        self.switch_node(manager.public_address)
        try:
            self._run(commands.update_command(node_id, commands.label_flags(labels)))
        except SwarmError as e:
            e.add_context(f"error labelling {node.hostname}")
            raise

        logger.debug(f"[SwarmManager] Labelled {node.hostname} ({node_id}) with {labels}")
        return True

    def _join_members(
        self,
        members: Iterable[MemberNode],
        manager: MemberNode,
        token: str,
        role: str,
        cluster_id: str,
    ) -> None:
        # Label right after each join so a failure is isolated to one node
        for member in members:
            try:
                self._join_swarm(member, manager, token)
                self._label_node(member, manager)
            except SwarmError as e:
                e.add_context(
                    f"error joining {role} {member.public_address} to "
                    f"{manager.public_address} on swarm cluster {cluster_id}"
                )
                raise
            logger.info(f"[SwarmManager] Joined {role} {member.hostname} to swarm cluster {cluster_id}")

    def _fetch_tokens(self) -> tuple[str, str]:
        return self.join_token(MANAGER_ROLE), self.join_token(WORKER_ROLE)

    def create_swarm(self, members: Sequence[MemberNode]) -> str:
        """Create a new swarm cluster from ``members`` and return its id.

        One manager is picked at random as the initial leader. Remaining
        managers join before workers. Nodes already joined are not rolled
        back on failure.

        Raises:
            InvalidQuorumSize: before any command, unless there are 3 or 5 managers.
            ClusterAlreadyExists: if the chosen leader is already in a swarm.
        """
        managers = filter_by_tag(members, ROLE_TAG, MANAGER_ROLE)
        check_quorum(managers)
        workers = filter_by_tag(members, ROLE_TAG, WORKER_ROLE)

        leader = self._rng.choice(managers)
        logger.info(f"[SwarmManager] Creating swarm cluster with leader {leader.hostname}")

        self.switch_node(leader.public_address)

        try:
            node = self.get_info()
        except SwarmError as e:
            e.add_context("error getting node info")
            raise
        if node.cluster_id:
            raise ClusterAlreadyExists(node.cluster_id, leader.public_address)

        try:
            self._run(commands.init_command(leader.private_address))
        except SwarmError as e:
            e.add_context("error running init command")
            raise
        try:
            self._label_node(leader, leader)
        except SwarmError as e:
            e.add_context(f"error labelling leader {leader.public_address}")
            raise

        try:
            cluster_id = self.get_info().cluster_id
        except SwarmError as e:
            e.add_context("error refreshing node info")
            raise

        manager_token, worker_token = self._fetch_tokens()

        others = [m for m in managers if m.public_address != leader.public_address]
        self._join_members(others, leader, manager_token, MANAGER_ROLE, cluster_id)
        self._join_members(workers, leader, worker_token, WORKER_ROLE, cluster_id)

        self.switch_node(leader.public_address)
        logger.info(
            f"[SwarmManager] Swarm cluster {cluster_id} created with "
            f"{len(managers)} managers and {len(workers)} workers"
        )
        return cluster_id

    def update_swarm(self, members: Sequence[MemberNode]) -> list[MemberNode]:
        """Join any ``members`` whose hostname is not yet in the cluster.

        Existing members are left untouched: no relabelling, no role
        changes, no removals. Returns the members that were joined.

        Raises:
            InvalidQuorumSize: before any command, unless there are 3 or 5 managers.
            NoExistingCluster: if the current node is not part of a swarm.
        """
        managers = filter_by_tag(members, ROLE_TAG, MANAGER_ROLE)
        check_quorum(managers)

        try:
            node = self.get_info()
        except SwarmError as e:
            e.add_context("error getting node info")
            raise
        cluster_id = node.cluster_id
        if not cluster_id:
            raise NoExistingCluster(self._transport.address)

        try:
            current = {status.hostname for status in self.get_nodes()}
        except SwarmError as e:
            e.add_context("error getting current nodes")
            raise

        new_nodes = [m for m in members if m.hostname not in current]
        if not new_nodes:
            logger.info(f"[SwarmManager] Swarm cluster {cluster_id} already has all members")
            return []

        # Join through a desired manager that is already part of the cluster
        live_managers = [m for m in managers if m.hostname in current]
        if not live_managers:
            raise NoSuitableManager([m.public_address for m in managers])
        join_target = self._rng.choice(live_managers)

        manager_token, worker_token = self._fetch_tokens()

        new_managers = filter_by_tag(new_nodes, ROLE_TAG, MANAGER_ROLE)
        new_workers = filter_by_tag(new_nodes, ROLE_TAG, WORKER_ROLE)
        self._join_members(new_managers, join_target, manager_token, MANAGER_ROLE, cluster_id)
        self._join_members(new_workers, join_target, worker_token, WORKER_ROLE, cluster_id)

        self.switch_node(join_target.public_address)
        logger.info(
            f"[SwarmManager] Added {len(new_managers)} managers and "
            f"{len(new_workers)} workers to swarm cluster {cluster_id}"
        )
        return new_managers + new_workers

    # =========================================================================
    # Availability
    # =========================================================================

    def _drain_node(self, node: str) -> DrainState:
        self._drain_states[node] = DrainState.REQUESTED
        started = self._clock()

        try:
            self._run(commands.update_command(node, [commands.availability_flag(AVAILABILITY_DRAIN)]))
        except SwarmError as e:
            e.add_context("error running update command")
            raise
        self._drain_states[node] = DrainState.DRAINING

        deadline = started + self.drain_timeout
        while True:
            remaining = deadline - self._clock()
            if remaining > 0:
                self._sleep(min(self.drain_interval, remaining))

            now = self._clock()
            elapsed = now - started
            if now >= deadline:
                self._drain_states[node] = DrainState.TIMED_OUT
                logger.error(f"[SwarmManager] Timed out waiting for {node} to drain after {elapsed:.1f}s")
                raise DrainTimeout(node, elapsed)

            try:
                tasks = self._get_tasks(node)
            except DRAIN_POLL_ERRORS as e:
                logger.warning(f"[SwarmManager] Error getting tasks from node {node} (retrying): {e}")
                continue

            if all_shutdown(tasks):
                self._drain_states[node] = DrainState.DRAINED
                logger.info(f"[SwarmManager] Successfully drained {node} after {elapsed:.1f}s")
                return DrainState.DRAINED

            logger.info(f"[SwarmManager] Still waiting for {node} to drain after {elapsed:.1f}s ...")

    def drain_nodes(self, nodes: Sequence[str]) -> None:
        """Drain ``nodes`` one at a time, blocking until each has no running tasks.

        Stops at the first node that fails or times out.

        Raises:
            DrainTimeout: if a node does not drain within ``drain_timeout``.
        """
        self._drain_states = {}
        try:
            self.ensure_manager()
        except SwarmError as e:
            e.add_context("error connecting to manager node")
            raise

        for node in nodes:
            try:
                self._drain_node(node)
            except SwarmError as e:
                logger.error(f"[SwarmManager] Error draining node {node}: {e}")
                e.add_context(f"error draining node {node}")
                raise

    def activate_nodes(self, nodes: Sequence[str]) -> None:
        """Set ``nodes`` back to active availability, e.g. after maintenance."""
        try:
            self.ensure_manager()
        except SwarmError as e:
            e.add_context("error connecting to manager node")
            raise

        for node in nodes:
            try:
                self._run(commands.update_command(node, [commands.availability_flag(AVAILABILITY_ACTIVE)]))
            except SwarmError as e:
                e.add_context(f"error activating node {node}")
                raise
            logger.info(f"[SwarmManager] Activated {node}")
