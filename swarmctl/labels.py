"""Node label tag parsing.

A label tag is a whitespace or semicolon separated list of entries, each
either a bare key or ``key=value[,value...]``::

    "zone=eu-1a,eu-1b ssd; tier=frontend"
    -> {"zone": ["eu-1a", "eu-1b"], "ssd": [], "tier": ["frontend"]}

Keys and values are restricted to characters that survive both the tag
syntax and a remote shell unchanged.
"""

from __future__ import annotations

import re

from swarmctl.errors import ManifestError

_ENTRY_SEPARATOR = re.compile(r"[\s;]+")
_VALID_KEY = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/-]*$")
_VALID_VALUE = re.compile(r"^[A-Za-z0-9._:/@+-]+$")


def check_label(key: str, values: list[str]) -> None:
    """Raise ManifestError unless ``key`` and every value are well formed."""
    if not key:
        raise ManifestError("invalid label: empty key")
    if not _VALID_KEY.match(key):
        raise ManifestError(f"invalid label key {key!r}")
    for value in values:
        if not _VALID_VALUE.match(value):
            raise ManifestError(f"invalid value {value!r} for label {key!r}")


def parse_labels(text: str | None) -> dict[str, list[str]]:
    """Parse a label tag into an ordered mapping of key to values."""
    labels: dict[str, list[str]] = {}
    if not text:
        return labels

    for entry in _ENTRY_SEPARATOR.split(text.strip()):
        if not entry:
            continue
        key, sep, raw_values = entry.partition("=")
        key = key.strip()
        if not key:
            raise ManifestError(f"invalid label {entry!r}: empty key")
        values = [v for v in raw_values.split(",") if v] if sep else []
        check_label(key, values)
        labels.setdefault(key, []).extend(values)

    return labels


def format_labels(labels: dict[str, list[str]]) -> str:
    """Inverse of :func:`parse_labels`.

    Raises:
        ManifestError: if a key or value would not parse back unchanged.
    """
    for key, values in labels.items():
        check_label(key, values)
    return " ".join(
        f"{key}={','.join(values)}" if values else key
        for key, values in labels.items()
    )
