"""Semantic fingerprinting — self-describing, versioned hashes for store addressing."""

from __future__ import annotations

import base64
import fnmatch
import hashlib
import json
import os
import stat
from dataclasses import dataclass
from pathlib import Path

_CHUNK = 1 << 20


@dataclass(frozen=True)
class Fingerprint:
    """A self-describing, versioned hash for any entity in the build.

    Each fingerprint records its scheme (how it was generated) and its
    components (what went into it), so a cache miss can be explained.
    """

    scheme: str  # e.g. "hermetica:derivation:v1"
    digest: str  # SHA256 hex (full)
    components: dict[str, str]  # component_name -> component_hash

    def matches(self, other: Fingerprint | None) -> bool:
        """Match requires same scheme AND same digest."""
        if other is None:
            return False
        return self.scheme == other.scheme and self.digest == other.digest

    def explain_diff(self, other: Fingerprint | None) -> list[str]:
        """Human-readable list of reasons these fingerprints differ."""
        if other is None:
            return ["no stored fingerprint"]
        if self.scheme != other.scheme:
            return [f"scheme changed ({other.scheme} -> {self.scheme})"]
        changed = []
        all_keys = sorted(set(self.components) | set(other.components))
        for k in all_keys:
            if self.components.get(k) != other.components.get(k):
                changed.append(k)
        return [f"{k} changed" for k in changed] or ["unknown"]

    def to_dict(self) -> dict:
        return {
            "scheme": self.scheme,
            "digest": self.digest,
            "components": dict(self.components),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Fingerprint | None:
        """Deserialize from a dict. Returns None if data is empty/missing."""
        if not data or "scheme" not in data:
            return None
        return cls(
            scheme=data["scheme"],
            digest=data["digest"],
            components=data.get("components", {}),
        )


def compute_digest(components: dict[str, str]) -> str:
    """Deterministic digest from sorted component hashes."""
    parts = "|".join(f"{k}={v}" for k, v in sorted(components.items()))
    return hashlib.sha256(parts.encode()).hexdigest()


def fingerprint_value(obj) -> str:
    """Deterministic SHA256 prefix for any common Python value.

    Python's built-in hash() is salted per process, so values are serialized
    to a canonical string form and hashed instead.
    """
    if obj is None:
        raw = ""
    elif isinstance(obj, str):
        raw = obj
    elif isinstance(obj, dict):
        raw = json.dumps(obj, sort_keys=True, default=str)
    elif isinstance(obj, (list, tuple)):
        # order matters for argv-like values
        raw = json.dumps(list(obj), default=str)
    else:
        raw = str(obj)
    return hashlib.sha256(raw.encode()).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Content hashing
# ---------------------------------------------------------------------------


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def to_sri(algorithm: str, digest: bytes) -> str:
    """Encode a raw digest as a Subresource Integrity string."""
    return f"{algorithm}-{base64.b64encode(digest).decode()}"


def parse_sri(sri: str) -> tuple[str, bytes]:
    """Split an SRI string into (algorithm, raw digest).

    Raises ValueError on unknown algorithms or bad base64.
    """
    algorithm, sep, encoded = sri.strip().partition("-")
    if not sep or algorithm not in hashlib.algorithms_guaranteed:
        raise ValueError(f"Unsupported integrity string: {sri!r}")
    return algorithm, base64.b64decode(encoded, validate=True)


def sri_of_bytes(payload: bytes, algorithm: str) -> str:
    return to_sri(algorithm, hashlib.new(algorithm, payload).digest())


def sri_of_file(path: Path, algorithm: str) -> str:
    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return to_sri(algorithm, h.digest())


def hash_tree(root: Path, exclude: frozenset[str] = frozenset()) -> bytes:
    """Raw sha256 of a directory tree, independent of timestamps and walk order.

    Covers relative paths, entry type, executable bit, file contents and
    symlink targets. Top-level names matching a pattern in ``exclude`` are
    skipped.
    """
    h = hashlib.sha256()
    root = Path(root)
    for rel in _sorted_entries(root, exclude):
        full = root / rel
        st = os.lstat(full)
        if stat.S_ISLNK(st.st_mode):
            h.update(f"L {rel} {os.readlink(full)}\n".encode())
        elif stat.S_ISDIR(st.st_mode):
            h.update(f"D {rel}\n".encode())
        else:
            executable = "x" if st.st_mode & stat.S_IXUSR else "-"
            h.update(f"F {rel} {executable} {sha256_file(full)}\n".encode())
    return h.digest()


def tree_sri(root: Path, exclude: frozenset[str] = frozenset()) -> str:
    return to_sri("sha256", hash_tree(root, exclude))


def is_excluded(name: str, exclude: frozenset[str]) -> bool:
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in exclude)


def _sorted_entries(root: Path, exclude: frozenset[str]) -> list[str]:
    entries: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)
        if rel_dir == ".":
            dirnames[:] = [d for d in dirnames if not is_excluded(d, exclude)]
            filenames = [f for f in filenames if not is_excluded(f, exclude)]
        for name in dirnames + filenames:
            rel = name if rel_dir == "." else f"{rel_dir}/{name}"
            entries.append(rel.replace(os.sep, "/"))
    return sorted(entries)


# ---------------------------------------------------------------------------
# Derivation identity
# ---------------------------------------------------------------------------


def compute_derivation_fingerprint(
    source_hash: str,
    lockfile_digest: str,
    cache_hash: str,
    toolchain: dict,
    build_command: list[str],
    build_env: dict[str, str],
    outputs: dict,
    launcher: list[str],
    port: int,
) -> Fingerprint:
    """Combine every build input into the artifact's derivation identity."""
    components = {
        "source": source_hash,
        "lockfile": lockfile_digest,
        "cache": fingerprint_value(cache_hash),
        "toolchain": fingerprint_value(toolchain),
        "build_command": fingerprint_value(build_command),
        "build_env": fingerprint_value(build_env),
        "outputs": fingerprint_value(outputs),
        "launcher": fingerprint_value(launcher),
        "port": fingerprint_value(port),
    }
    return Fingerprint(
        scheme="hermetica:derivation:v1",
        digest=compute_digest(components),
        components=components,
    )
