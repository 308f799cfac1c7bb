"""Artifact inventory — installed npm packages and every file."""

from __future__ import annotations

import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageRecord:
    name: str
    version: str
    license: str
    path: str  # directory relative to the artifact root

    @property
    def purl(self) -> str:
        return f"pkg:npm/{quote(self.name, safe='/')}@{quote(self.version, safe='')}"


@dataclass(frozen=True)
class FileRecord:
    path: str
    sha1: str
    sha256: str


@dataclass
class Inventory:
    root: Path
    name: str
    version: str
    packages: list[PackageRecord] = field(default_factory=list)
    files: list[FileRecord] = field(default_factory=list)


def take_inventory(root: Path, with_files: bool = True) -> Inventory:
    """Walk an artifact, listing node_modules packages and (optionally) files.

    Ordering is by path, so two walks of the same tree are identical.
    """
    root = Path(root)
    top = _read_package_json(root / "package.json") or {}
    inventory = Inventory(root=root, name=str(top.get("name", root.name)), version=str(top.get("version", "")))

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        rel_dir = os.path.relpath(dirpath, root).replace(os.sep, "/")
        if "package.json" in filenames and _is_package_dir(rel_dir):
            data = _read_package_json(Path(dirpath) / "package.json")
            if data and data.get("name") and data.get("version"):
                inventory.packages.append(PackageRecord(
                    name=str(data["name"]),
                    version=str(data["version"]),
                    license=_license_of(data),
                    path=rel_dir,
                ))
        if with_files:
            for name in sorted(filenames):
                full = Path(dirpath) / name
                if full.is_symlink() or not full.is_file():
                    continue
                sha1, sha256 = _digests(full)
                rel = name if rel_dir == "." else f"{rel_dir}/{name}"
                inventory.files.append(FileRecord(path=rel, sha1=sha1, sha256=sha256))

    inventory.packages.sort(key=lambda p: (p.path, p.name, p.version))
    inventory.files.sort(key=lambda f: f.path)
    return inventory


def _is_package_dir(rel_dir: str) -> bool:
    parts = rel_dir.split("/")
    if len(parts) >= 2 and parts[-2] == "node_modules":
        return not parts[-1].startswith(".")
    return len(parts) >= 3 and parts[-3] == "node_modules" and parts[-2].startswith("@")


def _read_package_json(path: Path) -> dict | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.debug("Skipping unreadable %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None


def _license_of(data: dict) -> str:
    value = data.get("license")
    if isinstance(value, dict):
        value = value.get("type")
    if not value and isinstance(data.get("licenses"), list):
        names = [
            (item.get("type") if isinstance(item, dict) else str(item))
            for item in data["licenses"]
        ]
        value = " OR ".join(n for n in names if n)
    return str(value) if value else ""


def _digests(path: Path) -> tuple[str, str]:
    sha1 = hashlib.sha1()
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            sha1.update(chunk)
            sha256.update(chunk)
    return sha1.hexdigest(), sha256.hexdigest()
