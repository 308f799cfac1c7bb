"""Core data models for Hermetica."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BUILD_ENV = {
    "NEXT_TELEMETRY_DISABLED": "1",
    "CYPRESS_INSTALL_BINARY": "0",
}


def mirror_name_from_url(url: str) -> str:
    """``.../@scope/pkg/-/pkg-1.0.0.tgz`` -> ``@scope-pkg-1.0.0.tgz``."""
    parts = url.split("#", 1)[0].rstrip("/").split("/")
    filename = parts[-1]
    if len(parts) >= 4 and parts[-2] == "-" and parts[-4].startswith("@"):
        return f"{parts[-4]}-{filename}"
    return filename


@dataclass
class Toolchain:
    """Pinned JavaScript toolchain."""

    node: str = "22"  # version prefix `node --version` must match
    node_bin: str = "node"
    yarn_bin: str = "yarn"

    def to_dict(self) -> dict:
        return {"node": self.node, "node_bin": self.node_bin, "yarn_bin": self.yarn_bin}


@dataclass
class OutputSpec:
    """Which build outputs are copied into the artifact."""

    required: list[str] = field(default_factory=lambda: [".next", "node_modules", "package.json"])
    optional: list[str] = field(default_factory=lambda: ["public", "next.config.js"])


@dataclass
class ImageConfig:
    """Container image metadata."""

    name: str = ""
    tag: str = ""
    env: dict[str, str] = field(default_factory=dict)
    exposed_port: int | None = None  # defaults to Project.port
    ca_bundle: str = "/etc/ssl/certs/ca-certificates.crt"
    runtime_prefix: str = ""  # node installation prefix; derived from node_bin when empty


@dataclass
class Meta:
    description: str = ""
    homepage: str = ""
    license: str = ""
    main_program: str = ""


@dataclass
class Project:
    """The full declared build of one front-end application."""

    pname: str
    version: str
    src: str = "."
    lockfile: str = "yarn.lock"
    cache_hash: str = ""
    toolchain: Toolchain = field(default_factory=Toolchain)
    build_command: list[str] = field(default_factory=lambda: ["yarn", "build"])
    build_env: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_BUILD_ENV))
    outputs: OutputSpec = field(default_factory=OutputSpec)
    launcher: list[str] = field(default_factory=lambda: ["node_modules/.bin/next", "start"])
    port: int = 3000
    image: ImageConfig = field(default_factory=ImageConfig)
    trust_anchor_url: str = ""
    meta: Meta = field(default_factory=Meta)
    root: Path = field(default_factory=Path.cwd)  # directory of the project file

    @property
    def source_dir(self) -> Path:
        return (self.root / self.src).resolve()

    @property
    def lockfile_path(self) -> Path:
        return self.source_dir / self.lockfile

    @property
    def image_name(self) -> str:
        return self.image.name or self.pname

    @property
    def image_tag(self) -> str:
        return self.image.tag or self.version

    @property
    def image_port(self) -> int:
        return self.image.exposed_port if self.image.exposed_port is not None else self.port


@dataclass(frozen=True)
class LockEntry:
    """One resolved package from the lockfile."""

    name: str
    version: str
    resolved: str
    integrity: str  # SRI string, e.g. "sha512-..." or "sha1-..."
    specifiers: tuple[str, ...] = ()
    dependencies: tuple[tuple[str, str], ...] = ()  # (name, range)

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}"

    @property
    def mirror_name(self) -> str:
        """File name yarn expects in an offline mirror."""
        return mirror_name_from_url(self.url)

    @property
    def url(self) -> str:
        """Resolved URL without the hash fragment."""
        return self.resolved.split("#", 1)[0]


@dataclass
class Lockfile:
    """Parsed lockfile: ordered entries plus the raw text they came from."""

    entries: list[LockEntry] = field(default_factory=list)
    raw: str = ""
    path: Path | None = None

    @property
    def digest(self) -> str:
        """sha256 hex of the raw lockfile; keys the offline cache."""
        return hashlib.sha256(self.raw.encode()).hexdigest()


@dataclass(frozen=True)
class OfflineCache:
    """Read-only handle on a populated, content-addressed offline cache.

    Single writer until the ``.complete`` marker exists; immutable and safe for
    concurrent readers afterwards.
    """

    path: Path
    lockfile_digest: str
    aggregate_hash: str
    index: dict[str, str] = field(default_factory=dict)  # integrity -> mirror file name

    def path_for(self, entry: LockEntry) -> Path | None:
        name = self.index.get(entry.integrity)
        if name is None:
            return None
        return self.path / name


@dataclass
class BuildOutput:
    """Work tree left behind by a successful hermetic build."""

    root: Path
    source_hash: str
    log: str = ""


@dataclass
class Artifact:
    """Immutable, addressable build output plus launcher."""

    path: Path
    pname: str
    version: str
    fingerprint: str  # derivation digest
    tree_hash: str = ""

    @property
    def launcher(self) -> Path:
        return self.path / "bin" / self.pname


@dataclass
class Image:
    """A container image archive built from one artifact."""

    path: Path
    name: str
    tag: str
    config_digest: str
    layer_digest: str
    config: dict = field(default_factory=dict)

    @property
    def reference(self) -> str:
        return f"{self.name}:{self.tag}"
