"""Docker command templates issued against swarm nodes.

Only this fixed vocabulary is ever run on a node. Every substituted value is
shell-quoted, since commands run through a remote shell or ``shell=True``.
"""

from __future__ import annotations

import shlex

INFO_COMMAND = 'docker info --format "{{ json . }}"'
NODES_COMMAND = 'docker node ls --format "{{ json . }}"'
TASKS_COMMAND = 'docker node ps --format "{{ json . }}"'
INIT_COMMAND = "docker swarm init --advertise-addr {addr} --listen-addr {addr}"
JOIN_COMMAND = "docker swarm join --advertise-addr {addr} --listen-addr {addr} --token {token} {manager}:{port}"
TOKEN_COMMAND = "docker swarm join-token -q {role}"
UPDATE_COMMAND = "docker node update {flags} {node}"

SET_AVAILABILITY = "--availability {value}"
LABEL_ADD = "--label-add {label}"

# Swarm cluster management port
SWARM_PORT = 2377

MANAGER_ROLE = "manager"
WORKER_ROLE = "worker"
ROLES = (MANAGER_ROLE, WORKER_ROLE)

AVAILABILITY_ACTIVE = "active"
AVAILABILITY_PAUSE = "pause"
AVAILABILITY_DRAIN = "drain"


def info_command() -> str:
    return INFO_COMMAND


def nodes_command() -> str:
    return NODES_COMMAND


def tasks_command(node: str) -> str:
    return f"{TASKS_COMMAND} {shlex.quote(node)}"


def init_command(addr: str) -> str:
    return INIT_COMMAND.format(addr=shlex.quote(addr))


def join_command(addr: str, token: str, manager_addr: str, port: int = SWARM_PORT) -> str:
    return JOIN_COMMAND.format(
        addr=shlex.quote(addr),
        token=shlex.quote(token),
        manager=shlex.quote(manager_addr),
        port=int(port),
    )


def token_command(role: str) -> str:
    if role not in ROLES:
        raise ValueError(f"Unknown join token role: {role!r} (expected one of {ROLES})")
    return TOKEN_COMMAND.format(role=role)


def availability_flag(value: str) -> str:
    return SET_AVAILABILITY.format(value=shlex.quote(value))


def label_flags(labels: dict[str, list[str]]) -> list[str]:
    """Build ``--label-add`` flags, one per key.

    A key with values becomes ``key=v1,v2``; a key without values is added
    as a bare label.
    """
    flags = []
    for key, values in labels.items():
        label = key
        if values:
            label += "=" + ",".join(values)
        flags.append(LABEL_ADD.format(label=shlex.quote(label)))
    return flags


def update_command(node: str, flags: list[str]) -> str:
    """Build ``docker node update``; ``flags`` come from the flag helpers above."""
    return UPDATE_COMMAND.format(flags=" ".join(flags), node=shlex.quote(node))
