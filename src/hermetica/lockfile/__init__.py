"""Lockfile parsing."""

from hermetica.lockfile.parse import fixup_lockfile, parse_lockfile, read_lockfile

__all__ = [
    "fixup_lockfile",
    "parse_lockfile",
    "read_lockfile",
]
