"""Artifact assembly — place build outputs and a launcher into the store."""

from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path

from hermetica.assemble.store import ARTIFACT_METADATA, ArtifactStore
from hermetica.core.errors import IncompleteArtifact, atomic_write
from hermetica.core.fingerprint import Fingerprint, compute_derivation_fingerprint, tree_sri
from hermetica.core.fs import EPOCH_MTIME, make_read_only, normalize_tree, remove_tree
from hermetica.core.logging import HermeticaLogger
from hermetica.core.models import Artifact, BuildOutput, Project, Toolchain

logger = logging.getLogger(__name__)

STAGE = "assemble"


def runtime_path(toolchain: Toolchain) -> str:
    """The node binary the launcher execs, as found on this host."""
    return shutil.which(toolchain.node_bin) or toolchain.node_bin


def derivation_fingerprint(
    project: Project,
    source_hash: str,
    lockfile_digest: str,
    node: str | None = None,
) -> Fingerprint:
    """Derivation identity of the artifact ``project`` would produce.

    The launcher embeds the runtime path, so that path is part of the identity.
    """
    toolchain = project.toolchain.to_dict()
    toolchain["node_path"] = node or runtime_path(project.toolchain)
    return compute_derivation_fingerprint(
        source_hash=source_hash,
        lockfile_digest=lockfile_digest,
        cache_hash=project.cache_hash,
        toolchain=toolchain,
        build_command=project.build_command,
        build_env=project.build_env,
        outputs={"required": project.outputs.required, "optional": project.outputs.optional},
        launcher=project.launcher,
        port=project.port,
    )


def render_launcher(project: Project, out: Path, node: str) -> str:
    """Shell launcher: cd into the artifact and exec the runtime on $PORT."""
    command = " ".join(_sh_quote(part) for part in [node, *project.launcher])
    return (
        "#!/bin/sh\n"
        f"cd {_sh_quote(str(out))}\n"
        f'export PORT="${{PORT:-{project.port}}}"\n'
        f'exec {command} -p "$PORT" "$@"\n'
    )


class Assembler:
    """Copy designated build outputs into a new store path.

    Missing required outputs raise IncompleteArtifact before anything is
    written; missing optional outputs are logged and skipped.
    """

    def __init__(self, store: ArtifactStore, logger: HermeticaLogger | None = None) -> None:
        self.store = store
        self.run_logger = logger

    def assemble(
        self,
        build: BuildOutput,
        project: Project,
        fingerprint: Fingerprint,
        node: str | None = None,
    ) -> Artifact:
        missing = [rel for rel in project.outputs.required if not (build.root / rel).exists()]
        if missing:
            raise IncompleteArtifact(
                f"Build did not produce required output(s): {', '.join(missing)}",
                context={"missing": ", ".join(missing), "build_root": str(build.root)},
            )

        out = self.store.path_for(fingerprint, project.pname, project.version)
        staging = out.parent / f".{out.name}.partial"
        remove_tree(staging)
        staging.mkdir(parents=True)
        try:
            for rel in project.outputs.required:
                _copy(build.root / rel, staging / rel)

            skipped = []
            for rel in project.outputs.optional:
                source = build.root / rel
                if not source.exists():
                    # Tolerated: optional outputs may legitimately be absent
                    skipped.append(rel)
                    logger.warning("Optional output %s not present, skipping", rel)
                    if self.run_logger is not None:
                        self.run_logger.warning(STAGE, f"optional output {rel} not present")
                    continue
                _copy(source, staging / rel)

            launcher = staging / "bin" / project.pname
            launcher.parent.mkdir(parents=True, exist_ok=True)
            node_path = node or runtime_path(project.toolchain)
            launcher.write_text(render_launcher(project, out, node_path))
            launcher.chmod(0o755)

            normalize_tree(staging)
            tree_hash = tree_sri(staging, frozenset({ARTIFACT_METADATA}))
            meta_path = staging / ARTIFACT_METADATA
            atomic_write(meta_path, json.dumps({
                "pname": project.pname,
                "version": project.version,
                "fingerprint": fingerprint.to_dict(),
                "tree_hash": tree_hash,
                "skipped_optional": skipped,
            }, indent=2, sort_keys=True) + "\n")
            os.chmod(meta_path, 0o644)
            os.utime(meta_path, (EPOCH_MTIME, EPOCH_MTIME))
            os.utime(staging, (EPOCH_MTIME, EPOCH_MTIME))
            make_read_only(staging)

            remove_tree(out)
            os.replace(staging, out)
        except BaseException:
            remove_tree(staging)
            raise

        return Artifact(
            path=out,
            pname=project.pname,
            version=project.version,
            fingerprint=fingerprint.digest,
            tree_hash=tree_hash,
        )


def _copy(source: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir() and not source.is_symlink():
        shutil.copytree(source, dest, symlinks=True)
    else:
        shutil.copy2(source, dest, follow_symlinks=False)


def _sh_quote(value: str) -> str:
    if value and all(c.isalnum() or c in "@%+=:,./-_" for c in value):
        return value
    return "'" + value.replace("'", "'\\''") + "'"
