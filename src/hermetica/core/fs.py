"""Filesystem helpers for immutable trees."""

from __future__ import annotations

import os
import shutil
import stat
import sys
from pathlib import Path

# Timestamp every store file is normalized to (1970-01-01T00:00:01Z).
EPOCH_MTIME = 1


def make_read_only(root: Path) -> None:
    """Strip write bits from every file and directory under root (root included)."""
    root = Path(root)
    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        for name in filenames:
            full = os.path.join(dirpath, name)
            if os.path.islink(full):
                continue
            mode = os.lstat(full).st_mode
            os.chmod(full, stat.S_IMODE(mode) & ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH))
        for name in dirnames:
            full = os.path.join(dirpath, name)
            if not os.path.islink(full):
                os.chmod(full, 0o555)
    if root.is_dir():
        os.chmod(root, 0o555)
    elif root.exists():
        os.chmod(root, stat.S_IMODE(root.stat().st_mode) & ~0o222)


def normalize_tree(root: Path) -> None:
    """Fix permissions and timestamps so identical contents give identical trees.

    Files become 0644 (0755 if owner-executable), directories 0755, and every
    entry gets EPOCH_MTIME.
    """
    root = Path(root)
    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        for name in filenames + dirnames:
            full = os.path.join(dirpath, name)
            st = os.lstat(full)
            if stat.S_ISLNK(st.st_mode):
                os.utime(full, (EPOCH_MTIME, EPOCH_MTIME), follow_symlinks=False)
                continue
            if stat.S_ISDIR(st.st_mode):
                os.chmod(full, 0o755)
            else:
                os.chmod(full, 0o755 if st.st_mode & stat.S_IXUSR else 0o644)
            os.utime(full, (EPOCH_MTIME, EPOCH_MTIME))
    os.chmod(root, 0o755)
    os.utime(root, (EPOCH_MTIME, EPOCH_MTIME))


def remove_tree(path: Path) -> None:
    """Delete a tree even when parts of it were made read-only."""

    def _make_writable(func, target, _exc):
        parent = os.path.dirname(target)
        os.chmod(parent, stat.S_IMODE(os.lstat(parent).st_mode) | stat.S_IWUSR | stat.S_IXUSR)
        if not os.path.islink(target):
            os.chmod(target, stat.S_IMODE(os.lstat(target).st_mode) | stat.S_IWUSR)
        func(target)

    path = Path(path)
    if not path.exists() and not path.is_symlink():
        return
    if path.is_dir() and not path.is_symlink():
        os.chmod(path, stat.S_IMODE(path.stat().st_mode) | stat.S_IWUSR | stat.S_IXUSR)
        if sys.version_info >= (3, 12):
            shutil.rmtree(path, onexc=_make_writable)
        else:
            shutil.rmtree(path, onerror=_make_writable)
    else:
        path.unlink()


def tree_size(root: Path) -> int:
    """Total size in bytes of regular files under root."""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            full = os.path.join(dirpath, name)
            if not os.path.islink(full):
                total += os.lstat(full).st_size
    return total
