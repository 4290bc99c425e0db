"""Logging setup for the swarmctl command line."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging once for a CLI invocation.

    ``verbose`` shows every command issued; ``quiet`` only shows errors.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
