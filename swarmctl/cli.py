#!/usr/bin/env python3
"""swarmctl command line.

Usage:
    # Create a new cluster from a manifest
    swarmctl create Clusterfile.yaml

    # Add any new members from an updated manifest
    swarmctl update Clusterfile.yaml

    # Drain nodes before maintenance, then bring them back
    swarmctl --node 203.0.113.10 drain wrk-1 wrk-2
    swarmctl --node 203.0.113.10 activate wrk-1 wrk-2

    # Inspect the cluster
    swarmctl --node 203.0.113.10 nodes
    swarmctl --node 203.0.113.10 token worker
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional, Sequence

from swarmctl import __version__
from swarmctl.commands import ROLES
from swarmctl.config import SwarmDefaults
from swarmctl.errors import SwarmError
from swarmctl.execution import LocalTransport, SSHConfig, SSHTransport, Transport
from swarmctl.logging_config import setup_logging
from swarmctl.manager import SwarmManager
from swarmctl.manifest import load_manifest
from swarmctl.models import MemberNode

logger = logging.getLogger(__name__)

STATUS_OK = 0
STATUS_ERROR = 1


def build_parser(defaults: SwarmDefaults) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="swarmctl",
        description="Create, grow and drain docker swarm clusters",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--node", help="Address of the node to start from")
    parser.add_argument("--local", action="store_true", help="Run docker commands locally instead of over SSH")
    parser.add_argument("--user", default=defaults.ssh_user, help="SSH user (default: %(default)s)")
    parser.add_argument("--port", type=int, default=defaults.ssh_port, help="SSH port (default: %(default)s)")
    parser.add_argument("--key", default=defaults.ssh_key, help="SSH private key path")
    parser.add_argument(
        "--connect-timeout", type=int, default=defaults.connect_timeout,
        help="SSH connect timeout in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--drain-timeout", type=float, default=defaults.drain_timeout,
        help="Seconds to wait for each node to drain (default: %(default)s)",
    )
    parser.add_argument(
        "--drain-interval", type=float, default=defaults.drain_interval,
        help="Seconds between drain progress checks (default: %(default)s)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every command issued")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log errors")

    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create a new swarm cluster")
    create.add_argument("manifest", help="Membership manifest (YAML), or - for stdin")

    update = sub.add_parser(
        "update",
        help="Join members missing from an existing cluster (starts from the first "
        "manifest manager already in the cluster unless --node is given)",
    )
    update.add_argument("manifest", help="Membership manifest (YAML), or - for stdin")

    drain = sub.add_parser("drain", help="Drain nodes and wait for their tasks to stop")
    drain.add_argument("nodes", nargs="+", help="Swarm node ids or hostnames")

    activate = sub.add_parser("activate", help="Set nodes back to active availability")
    activate.add_argument("nodes", nargs="+", help="Swarm node ids or hostnames")

    sub.add_parser("info", help="Show the current node's swarm info")
    sub.add_parser("nodes", help="List cluster nodes")
    sub.add_parser("managers", help="Show info for every manager")

    token = sub.add_parser("token", help="Print a join token")
    token.add_argument("role", choices=ROLES)

    return parser


def build_transport(args: argparse.Namespace, defaults: SwarmDefaults) -> Transport:
    if args.local:
        return LocalTransport(command_timeout=defaults.command_timeout)
    return SSHTransport(SSHConfig(
        user=args.user,
        port=args.port,
        key_path=args.key,
        connect_timeout=args.connect_timeout,
        command_timeout=defaults.command_timeout,
    ))


def _starting_node(args: argparse.Namespace) -> str:
    if args.node:
        return args.node
    if args.local:
        return "localhost"
    raise SwarmError("no starting node: pass --node ADDRESS")


def _switch_to_live_manager(manager: SwarmManager, members: list[MemberNode]) -> None:
    """Switch to the first manifest manager that already belongs to a cluster.

    Managers that are unreachable or not yet joined are skipped.
    """
    for member in members:
        if not member.is_manager:
            continue
        try:
            manager.switch_node(member.public_address)
            if manager.get_info().cluster_id:
                return
        except SwarmError as e:
            logger.warning(f"Skipping manager {member.hostname} as starting node: {e}")
            continue
        logger.info(f"Manager {member.hostname} is not part of a swarm cluster yet")
    raise SwarmError("no manager in the manifest is part of a swarm cluster: pass --node ADDRESS")


def print_status(manager: SwarmManager) -> None:
    """Print the cluster roster as a table."""
    nodes = manager.get_nodes()
    print(f"{'HOSTNAME':<24} {'STATUS':<10} {'AVAILABILITY':<14} {'MANAGER':<12} ID")
    for node in nodes:
        print(
            f"{node.hostname:<24} {node.status:<10} {node.availability:<14} "
            f"{node.manager_status:<12} {node.id}"
        )


def run(args: argparse.Namespace, manager: SwarmManager) -> int:
    if args.command == "create":
        members = load_manifest(args.manifest)
        cluster_id = manager.create_swarm(members)
        print(f"Swarm cluster successfully created with id: {cluster_id}")
        print_status(manager)
    elif args.command == "update":
        members = load_manifest(args.manifest)
        if args.node or args.local:
            manager.switch_node(_starting_node(args))
        else:
            _switch_to_live_manager(manager, members)
        joined = manager.update_swarm(members)
        print(f"Swarm cluster successfully updated ({len(joined)} new members)")
        print_status(manager)
    else:
        manager.switch_node(_starting_node(args))
        if args.command == "drain":
            manager.drain_nodes(args.nodes)
            print(f"Successfully drained: {', '.join(args.nodes)}")
        elif args.command == "activate":
            manager.activate_nodes(args.nodes)
            print(f"Successfully activated: {', '.join(args.nodes)}")
        elif args.command == "info":
            print(json.dumps(manager.get_info().model_dump(by_alias=True), indent=2))
        elif args.command == "nodes":
            print_status(manager)
        elif args.command == "managers":
            for info in manager.get_managers():
                print(f"{info.name:<24} {info.node_id:<28} {info.swarm.node_addr}")
        elif args.command == "token":
            print(manager.join_token(args.role))
    return STATUS_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    defaults = SwarmDefaults.from_env()
    args = build_parser(defaults).parse_args(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet)

    manager = SwarmManager(
        build_transport(args, defaults),
        drain_interval=args.drain_interval,
        drain_timeout=args.drain_timeout,
    )

    try:
        return run(args, manager)
    except SwarmError as e:
        print(f"error: {e}", file=sys.stderr)
        return STATUS_ERROR


if __name__ == "__main__":
    sys.exit(main())
