"""Hermetic build executor — offline install and build of a source tree."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from hermetica.core.commands import CommandResult, CommandRunner
from hermetica.core.errors import BuildFailure, ToolchainError
from hermetica.core.fingerprint import is_excluded, tree_sri
from hermetica.core.logging import HermeticaLogger
from hermetica.core.models import BuildOutput, Lockfile, OfflineCache, Project, Toolchain
from hermetica.lockfile.parse import fixup_lockfile
from hermetica.resolver.cache import verify_cache

# Top-level source entries that are never build inputs, as fnmatch patterns.
# SBOMs land in the project directory by default.
SOURCE_EXCLUDES = frozenset({
    "node_modules", ".next", ".git", ".hermetica", "result", "*-sbom.spdx.json", "*-sbom.cdx.json",
})

STAGE = "build"


def source_tree_hash(source_dir: Path) -> str:
    """SRI hash of the source tree as the build will see it."""
    return tree_sri(source_dir, SOURCE_EXCLUDES)


class HermeticBuilder:
    """Run install + build for one project against an offline cache.

    Steps run in strict order: verify the cache covers the lockfile, copy the
    sources into a private work tree and point the lockfile at the offline
    mirror, check the toolchain pin, install offline, build.
    """

    def __init__(
        self,
        toolchain: Toolchain,
        runner: CommandRunner | None = None,
        logger: HermeticaLogger | None = None,
    ) -> None:
        self.toolchain = toolchain
        self.runner = runner or CommandRunner()
        self.logger = logger

    def build(
        self,
        project: Project,
        lockfile: Lockfile,
        cache: OfflineCache,
        work_dir: Path,
    ) -> BuildOutput:
        # (a) every package must come from the cache
        verify_cache(cache, lockfile)

        # (b) private copy of the sources with an offline-mirror lockfile
        tree = self.prepare_tree(project, lockfile, work_dir)
        source_hash = source_tree_hash(project.source_dir)

        env = self.environment(project, work_dir)
        self.check_toolchain(env, tree)

        # (c) offline install
        yarn = self.toolchain.yarn_bin
        self._run(
            [yarn, "config", "--offline", "set", "yarn-offline-mirror", str(cache.path)],
            tree, env, "Configuring the offline mirror failed.",
        )
        install = self._run(
            [yarn, "install", "--frozen-lockfile", "--offline", "--no-progress", "--non-interactive"],
            tree, env, "Offline dependency install failed.",
        )

        # (d) build
        result = self._run(list(project.build_command), tree, env, "Build command failed.")
        return BuildOutput(root=tree, source_hash=source_hash, log=install.output + result.output)

    def prepare_tree(self, project: Project, lockfile: Lockfile, work_dir: Path) -> Path:
        tree = Path(work_dir) / "source"
        if tree.exists():
            shutil.rmtree(tree)
        shutil.copytree(
            project.source_dir,
            tree,
            symlinks=True,
            ignore=_top_level_ignore(project.source_dir, SOURCE_EXCLUDES),
        )
        (tree / project.lockfile).write_text(fixup_lockfile(lockfile.raw))
        return tree

    def environment(self, project: Project, work_dir: Path) -> dict[str, str]:
        """Build environment: nothing inherited from the caller except PATH."""
        home = Path(work_dir) / "home"
        tmp = Path(work_dir) / "tmp"
        home.mkdir(parents=True, exist_ok=True)
        tmp.mkdir(parents=True, exist_ok=True)
        env = {
            "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
            "HOME": str(home),
            "TMPDIR": str(tmp),
            "LANG": "C.UTF-8",
            "SOURCE_DATE_EPOCH": "1",
            "YARN_ENABLE_TELEMETRY": "0",
            "npm_config_offline": "true",
        }
        env.update(project.build_env)
        return env

    def check_toolchain(self, env: dict[str, str], cwd: Path) -> None:
        if not self.toolchain.node:
            return
        result = self.runner.run([self.toolchain.node_bin, "--version"], cwd=cwd, env=env)
        self._record(result)
        found = result.output.strip().lstrip("v")
        if not result.ok or not _version_matches(found, self.toolchain.node):
            raise ToolchainError(
                f"Toolchain mismatch: node {self.toolchain.node} pinned, found {found or 'nothing'}.",
                context={"pinned": self.toolchain.node, "found": found},
                output=result.output,
            )

    def _run(self, argv: list[str], cwd: Path, env: dict[str, str], message: str) -> CommandResult:
        result = self.runner.run(argv, cwd=cwd, env=env)
        self._record(result)
        if not result.ok:
            raise BuildFailure(
                message,
                returncode=result.returncode,
                output=result.output,
                context={"argv": " ".join(argv)},
            )
        return result

    def _record(self, result: CommandResult) -> None:
        if self.logger is not None:
            self.logger.command(STAGE, result.argv, result.returncode)


def _version_matches(found: str, pin: str) -> bool:
    found_parts = found.split(".")
    pin_parts = pin.split(".")
    return found_parts[: len(pin_parts)] == pin_parts


def _top_level_ignore(root: Path, names: frozenset[str]):
    root = Path(root).resolve()

    def _ignore(directory: str, entries: list[str]) -> list[str]:
        if Path(directory).resolve() != root:
            return []
        return [e for e in entries if is_excluded(e, names)]

    return _ignore
