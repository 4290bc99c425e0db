"""Tunable defaults for swarmctl.

Values can be overridden with environment variables:

    SWARMCTL_DRAIN_INTERVAL     seconds between drain polls (default 5)
    SWARMCTL_DRAIN_TIMEOUT      seconds before a drain gives up (default 600)
    SWARMCTL_SSH_USER           remote user for SSH transport (default root)
    SWARMCTL_SSH_PORT           remote SSH port (default 22)
    SWARMCTL_SSH_KEY            private key path (default: ssh agent/config)
    SWARMCTL_CONNECT_TIMEOUT    SSH connect timeout in seconds (default 10)
    SWARMCTL_COMMAND_TIMEOUT    per-command timeout in seconds (default 300)

Usage:
    from swarmctl.config import SwarmDefaults

    defaults = SwarmDefaults.from_env()
    manager = SwarmManager(transport, drain_timeout=defaults.drain_timeout)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

logger = logging.getLogger(__name__)

ENV_PREFIX = "SWARMCTL_"


@dataclass(frozen=True)
class SwarmDefaults:
    """Timeouts and connection settings shared by the CLI and library."""

    drain_interval: float = 5.0
    drain_timeout: float = 600.0  # 10 minutes per node
    ssh_user: str = "root"
    ssh_port: int = 22
    ssh_key: str | None = None
    connect_timeout: int = 10
    command_timeout: float = 300.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SwarmDefaults:
        """Build defaults, applying any ``SWARMCTL_*`` overrides."""
        env = os.environ if environ is None else environ
        base = cls()

        def _get(name: str, cast, default):
            raw = env.get(ENV_PREFIX + name)
            if raw is None or raw == "":
                return default
            try:
                return cast(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_PREFIX}{name}={raw!r}, using {default!r}")
                return default

        return cls(
            drain_interval=_get("DRAIN_INTERVAL", float, base.drain_interval),
            drain_timeout=_get("DRAIN_TIMEOUT", float, base.drain_timeout),
            ssh_user=_get("SSH_USER", str, base.ssh_user),
            ssh_port=_get("SSH_PORT", int, base.ssh_port),
            ssh_key=_get("SSH_KEY", str, base.ssh_key),
            connect_timeout=_get("CONNECT_TIMEOUT", int, base.connect_timeout),
            command_timeout=_get("COMMAND_TIMEOUT", float, base.command_timeout),
        )
