"""
swarmctl - docker swarm cluster lifecycle management.

Forms a cluster from a membership manifest, joins new members to an
existing cluster, and drains nodes, by running a fixed set of docker
commands on member machines over SSH or locally.
"""

__version__ = "1.0.0"

from .errors import (
    ClusterAlreadyExists,
    DeserializationError,
    DrainTimeout,
    ExecutionError,
    InvalidQuorumSize,
    ManifestError,
    NoExistingCluster,
    NoSuitableManager,
    SwarmError,
    TransportError,
)
from .execution import LocalTransport, SSHConfig, SSHTransport, Transport
from .manager import DrainState, SwarmManager
from .manifest import load_manifest
from .models import MemberNode, NodeInfo, NodeStatus, Task

__all__ = [
    # Errors
    'SwarmError',
    'TransportError',
    'ExecutionError',
    'DeserializationError',
    'InvalidQuorumSize',
    'ClusterAlreadyExists',
    'NoExistingCluster',
    'NoSuitableManager',
    'DrainTimeout',
    'ManifestError',
    # Transports
    'Transport',
    'LocalTransport',
    'SSHConfig',
    'SSHTransport',
    # Coordinator
    'SwarmManager',
    'DrainState',
    'load_manifest',
    # Models
    'MemberNode',
    'NodeInfo',
    'NodeStatus',
    'Task',
]
