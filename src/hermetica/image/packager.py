"""Image packager — deterministic docker-archive images from store artifacts.

The archive is what ``docker save`` produces and ``docker load`` accepts:
``manifest.json``, ``repositories``, the image config and a single
``<layer digest>/layer.tar``. The layer holds only the artifact, the
runtime with its loader and shared libraries, the CA bundle and the
``/bin`` + ``/etc`` links into them, each at its absolute path. All tar
members carry fixed ownership and timestamps and are written in sorted order.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import os
import shutil
import stat
import struct
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from hermetica.core.commands import CommandRunner
from hermetica.core.errors import PipelineError
from hermetica.core.fs import EPOCH_MTIME
from hermetica.core.models import Artifact, Image, Project, Toolchain

CREATED = "1970-01-01T00:00:01Z"
CERT_LINK = "/etc/ssl/certs/ca-bundle.crt"

logger = logging.getLogger(__name__)

PT_INTERP = 3
# ELF class -> (offset, struct format) of the header and program header fields read
_ELF_LAYOUT = {
    1: {"phoff": (28, "I"), "phent": 42, "p_offset": (4, "I"), "p_filesz": (16, "I")},
    2: {"phoff": (32, "Q"), "phent": 54, "p_offset": (8, "Q"), "p_filesz": (32, "Q")},
}


@dataclass
class Runtime:
    """The interpreter copied into the image.

    ``interpreter`` and ``libraries`` are the dynamic loader and shared
    library closure of ``node``; both are empty for a statically linked
    binary. With no ``prefix`` the node binary and that closure are all that
    is included.
    """

    node: Path
    prefix: Path | None = None
    interpreter: Path | None = None
    libraries: tuple[Path, ...] = ()

    @classmethod
    def discover(cls, toolchain: Toolchain, prefix: str = "", runner: CommandRunner | None = None) -> Runtime:
        located = shutil.which(toolchain.node_bin)
        if located is None:
            raise PipelineError(
                f"Runtime binary {toolchain.node_bin!r} not found on PATH.",
                context={"node_bin": toolchain.node_bin},
            )
        node = Path(located).resolve()
        runtime = cls(node=node, prefix=Path(prefix).resolve() if prefix else None)
        if not is_elf(node):
            logger.warning("Runtime %s is not an ELF executable; its dependencies are not collected", node)
            return runtime
        interpreter = elf_interpreter(node)
        if interpreter is not None:
            runtime.interpreter = Path(interpreter)
            runtime.libraries = shared_libraries(node, runner or CommandRunner())
        return runtime


def is_elf(path: Path) -> bool:
    with open(path, "rb") as f:
        return f.read(4) == b"\x7fELF"


def elf_interpreter(path: Path) -> str | None:
    """The PT_INTERP loader path of an ELF executable, or None if it has none."""
    try:
        with open(path, "rb") as f:
            ident = f.read(16)
            if ident[:4] != b"\x7fELF":
                return None
            layout = _ELF_LAYOUT[ident[4]]
            order = "<" if ident[5] == 1 else ">"

            def field(data: bytes, at: tuple[int, str]) -> int:
                return struct.unpack_from(order + at[1], data, at[0])[0]

            header = ident + f.read(64 - 16)
            phoff = field(header, layout["phoff"])
            phentsize, phnum = struct.unpack_from(order + "HH", header, layout["phent"])
            for i in range(phnum):
                f.seek(phoff + i * phentsize)
                entry = f.read(phentsize)
                if struct.unpack_from(order + "I", entry)[0] != PT_INTERP:
                    continue
                f.seek(field(entry, layout["p_offset"]))
                return f.read(field(entry, layout["p_filesz"])).rstrip(b"\0").decode()
    except (IndexError, KeyError, struct.error, UnicodeDecodeError) as e:
        raise PipelineError(f"Malformed ELF executable: {path}", context={"path": str(path)}) from e
    return None


def shared_libraries(binary: Path, runner: CommandRunner) -> tuple[Path, ...]:
    """Resolved shared-library closure of ``binary``, as reported by ``ldd``."""
    result = runner.run(["ldd", str(binary)])
    if not result.ok:
        raise PipelineError(
            f"Could not list the shared libraries of {binary}.",
            context={"binary": str(binary), "returncode": result.returncode},
            output=result.output,
        )
    libraries = []
    for line in result.output.splitlines():
        line = line.strip()
        if "=> not found" in line:
            raise PipelineError(
                f"{binary} needs {line.split()[0]}, which is not installed.",
                context={"binary": str(binary)},
                output=result.output,
            )
        target = line.split("=>", 1)[-1].strip().split(" (", 1)[0].strip()
        if target.startswith("/"):
            libraries.append(Path(target))
    return tuple(sorted(set(libraries)))


def image_config(project: Project, artifact: Artifact, runtime: Runtime) -> dict:
    env = {
        "NODE_ENV": "production",
        "SSL_CERT_FILE": CERT_LINK,
        "PATH": "/bin",
        "PORT": str(project.image_port),
    }
    if runtime.libraries:
        env["LD_LIBRARY_PATH"] = ":".join(sorted({str(lib.parent) for lib in runtime.libraries}))
    env.update(project.image.env)
    # no shell in the image, so the runtime is invoked directly
    return {
        "Entrypoint": [str(runtime.node), *project.launcher, "-p", str(project.image_port)],
        "WorkingDir": str(artifact.path),
        "ExposedPorts": {f"{project.image_port}/tcp": {}},
        "Env": [f"{k}={v}" for k, v in env.items()],
    }


def build_image(
    artifact: Artifact,
    runtime: Runtime,
    project: Project,
    out_path: str | Path,
) -> Image:
    """Write a loadable image archive for ``artifact`` to ``out_path``."""
    ca_bundle = Path(project.image.ca_bundle)
    if not ca_bundle.is_file():
        raise PipelineError(
            f"CA bundle not found: {ca_bundle}",
            context={"ca_bundle": str(ca_bundle)},
        )

    entries = _LayerEntries()
    entries.add_tree(artifact.path)
    if runtime.prefix is not None:
        entries.add_tree(runtime.prefix)
    else:
        entries.add_file(runtime.node)
    if runtime.interpreter is not None:
        entries.add_file(runtime.interpreter)
    for library in runtime.libraries:
        entries.add_file(library)
    entries.add_file(ca_bundle.resolve())
    entries.add_symlink(f"/bin/{project.pname}", str(artifact.launcher))
    entries.add_symlink("/bin/node", str(runtime.node))
    entries.add_symlink(CERT_LINK, str(ca_bundle.resolve()))

    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(dir=out_path.parent) as tmp:
        layer_path = Path(tmp) / "layer.tar"
        entries.write(layer_path)
        layer_digest = _sha256_file(layer_path)

        config = {
            "architecture": _architecture(),
            "os": "linux",
            "created": CREATED,
            "config": image_config(project, artifact, runtime),
            "rootfs": {"type": "layers", "diff_ids": [f"sha256:{layer_digest}"]},
            "history": [{"created": CREATED, "created_by": f"hermetica {artifact.fingerprint[:32]}"}],
        }
        config_bytes = json.dumps(config, sort_keys=True, separators=(",", ":")).encode()
        config_digest = hashlib.sha256(config_bytes).hexdigest()
        reference = f"{project.image_name}:{project.image_tag}"
        manifest = [{
            "Config": f"{config_digest}.json",
            "RepoTags": [reference],
            "Layers": [f"{layer_digest}/layer.tar"],
        }]
        repositories = {project.image_name: {project.image_tag: layer_digest}}

        with tarfile.open(out_path, "w", format=tarfile.PAX_FORMAT) as archive:
            _add_dir(archive, layer_digest)
            _add_bytes(archive, f"{config_digest}.json", config_bytes)
            with open(layer_path, "rb") as f:
                info = _tarinfo(f"{layer_digest}/layer.tar", 0o644)
                info.size = layer_path.stat().st_size
                archive.addfile(info, f)
            _add_bytes(archive, "manifest.json", json.dumps(manifest, separators=(",", ":")).encode())
            _add_bytes(archive, "repositories", json.dumps(repositories, separators=(",", ":")).encode())

    return Image(
        path=out_path,
        name=project.image_name,
        tag=project.image_tag,
        config_digest=config_digest,
        layer_digest=layer_digest,
        config=config,
    )


class _LayerEntries:
    """Collect layer members keyed by their path inside the image."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, str]] = {}  # arcname -> (kind, source or link target)

    def add_tree(self, root: Path) -> None:
        root = Path(root)
        self._add_parents(str(root))
        self._entries[_arcname(str(root))] = ("dir", str(root))
        for dirpath, dirnames, filenames in os.walk(root):
            for name in dirnames + filenames:
                full = os.path.join(dirpath, name)
                st = os.lstat(full)
                if stat.S_ISLNK(st.st_mode):
                    self._entries[_arcname(full)] = ("symlink", os.readlink(full))
                elif stat.S_ISDIR(st.st_mode):
                    self._entries[_arcname(full)] = ("dir", full)
                elif stat.S_ISREG(st.st_mode):
                    self._entries[_arcname(full)] = ("file", full)

    def add_file(self, path: Path) -> None:
        self._add_parents(str(path))
        self._entries[_arcname(str(path))] = ("file", str(path))

    def add_symlink(self, link: str, target: str) -> None:
        self._add_parents(link)
        self._entries[_arcname(link)] = ("symlink", target)

    def _add_parents(self, path: str) -> None:
        for parent in PurePosixPath(path).parents:
            arc = _arcname(str(parent))
            if arc:
                self._entries.setdefault(arc, ("dir", ""))

    def write(self, path: Path) -> None:
        with tarfile.open(path, "w", format=tarfile.PAX_FORMAT) as tar:
            for arc in sorted(self._entries):
                kind, source = self._entries[arc]
                if kind == "dir":
                    _add_dir(tar, arc)
                elif kind == "symlink":
                    info = _tarinfo(arc, 0o777)
                    info.type = tarfile.SYMTYPE
                    info.linkname = source
                    tar.addfile(info)
                else:
                    st = os.stat(source)
                    info = _tarinfo(arc, 0o755 if st.st_mode & stat.S_IXUSR else 0o644)
                    info.size = st.st_size
                    with open(source, "rb") as f:
                        tar.addfile(info, f)


def _arcname(path: str) -> str:
    return path.lstrip("/")


def _tarinfo(name: str, mode: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.mode = mode
    info.mtime = EPOCH_MTIME
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def _add_dir(tar: tarfile.TarFile, name: str) -> None:
    info = _tarinfo(name, 0o755)
    info.type = tarfile.DIRTYPE
    tar.addfile(info)


def _add_bytes(tar: tarfile.TarFile, name: str, payload: bytes) -> None:
    info = _tarinfo(name, 0o644)
    info.size = len(payload)
    tar.addfile(info, io.BytesIO(payload))


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            h.update(chunk)
    return h.hexdigest()


def _architecture() -> str:
    machine = os.uname().machine
    return {"x86_64": "amd64", "aarch64": "arm64", "arm64": "arm64"}.get(machine, machine)
