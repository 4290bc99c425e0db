"""Membership manifest loader.

The manifest is a YAML document listing the machines that should be members
of the cluster:

    nodes:
      - hostname: mgr-1
        public_address: 203.0.113.10
        private_address: 10.0.0.10
        tags:
          role: manager
          labels: "zone=a ssd"
      - hostname: wrk-1
        public_address: 203.0.113.20
        private_address: 10.0.0.20
        tags:
          role: worker
          labels:
            zone: [a, b]

Usage:
    from swarmctl.manifest import load_manifest

    members = load_manifest("Clusterfile.yaml")
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path
from typing import IO, Any

import yaml

from swarmctl.commands import ROLES
from swarmctl.errors import ManifestError
from swarmctl.labels import format_labels, parse_labels
from swarmctl.models import LABELS_TAG, ROLE_TAG, MemberNode

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("hostname", "public_address", "private_address")

# Addresses and hostnames are substituted into remote shell commands
_VALID_HOSTNAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_VALID_ADDRESS = re.compile(r"^(\[[0-9A-Fa-f:.%]+\]|[0-9A-Fa-f:.%]+|[A-Za-z0-9][A-Za-z0-9.-]*)$")


def load_manifest(source: str | Path | IO[str]) -> list[MemberNode]:
    """Load and validate the members listed in a manifest.

    Args:
        source: Path to a YAML file, ``"-"`` for stdin, or an open text stream

    Raises:
        ManifestError: if the file is missing, not YAML, or invalid.
    """
    if source == "-":
        return _load_stream(sys.stdin, "<stdin>")
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise ManifestError(f"manifest not found: {path}")
        with open(path, "r") as f:
            return _load_stream(f, str(path))
    return _load_stream(source, getattr(source, "name", "<stream>"))


def _load_stream(stream: IO[str], name: str) -> list[MemberNode]:
    try:
        data = yaml.safe_load(stream) or {}
    except yaml.YAMLError as e:
        raise ManifestError(f"error parsing manifest {name}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("nodes"), list):
        raise ManifestError(f"manifest {name} must contain a 'nodes' list")

    members = [_parse_member(entry, index) for index, entry in enumerate(data["nodes"])]
    validate_members(members)
    logger.debug(f"Loaded {len(members)} members from {name}")
    return members


def _parse_member(entry: Any, index: int) -> MemberNode:
    if not isinstance(entry, dict):
        raise ManifestError(f"node #{index} must be a mapping")

    missing = [name for name in REQUIRED_FIELDS if not entry.get(name)]
    if missing:
        raise ManifestError(f"node #{index} is missing {', '.join(missing)}")

    raw_tags = entry.get("tags") or {}
    if not isinstance(raw_tags, dict):
        raise ManifestError(f"node {entry['hostname']}: tags must be a mapping")

    tags = {}
    for key, value in raw_tags.items():
        if key == LABELS_TAG and isinstance(value, dict):
            try:
                value = format_labels(_normalize_label_mapping(value))
            except ManifestError as e:
                e.add_context(f"node {entry['hostname']}")
                raise
        tags[str(key)] = "" if value is None else str(value)

    return MemberNode(
        hostname=str(entry["hostname"]),
        public_address=str(entry["public_address"]),
        private_address=str(entry["private_address"]),
        tags=tags,
    )


def _normalize_label_mapping(labels: dict) -> dict[str, list[str]]:
    normalized: dict[str, list[str]] = {}
    for key, values in labels.items():
        if values is None:
            normalized[str(key)] = []
        elif isinstance(values, (list, tuple)):
            normalized[str(key)] = [str(v) for v in values]
        else:
            normalized[str(key)] = [str(values)]
    return normalized


def validate_members(members: list[MemberNode]) -> None:
    """Check roles, label syntax, address syntax and uniqueness.

    Quorum size is checked by the manager, not here.
    """
    seen_hostnames: set[str] = set()
    seen_addresses: set[str] = set()

    for member in members:
        if not _VALID_HOSTNAME.match(member.hostname):
            raise ManifestError(f"invalid hostname {member.hostname!r}")
        for name in ("public_address", "private_address"):
            address = getattr(member, name)
            if not _VALID_ADDRESS.match(address):
                raise ManifestError(f"node {member.hostname}: invalid {name} {address!r}")
        if member.role not in ROLES:
            raise ManifestError(
                f"node {member.hostname}: {ROLE_TAG} tag must be one of {', '.join(ROLES)}, "
                f"got {member.role!r}"
            )
        if member.hostname in seen_hostnames:
            raise ManifestError(f"duplicate hostname {member.hostname}")
        if member.public_address in seen_addresses:
            raise ManifestError(f"duplicate public address {member.public_address}")
        try:
            parse_labels(member.get_tag(LABELS_TAG))
        except ManifestError as e:
            e.add_context(f"node {member.hostname}")
            raise
        seen_hostnames.add(member.hostname)
        seen_addresses.add(member.public_address)
