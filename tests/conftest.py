"""Shared test fixtures for Hermetica."""

from __future__ import annotations

import hashlib
import json
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from hermetica.config import Settings, reset_settings
from hermetica.core.commands import CommandResult, CommandRunner
from hermetica.core.fingerprint import sri_of_bytes
from hermetica.core.models import OutputSpec, Project, Toolchain
from hermetica.db.engine import reset_engines


# ---------------------------------------------------------------------------
# Fake external tools
# ---------------------------------------------------------------------------


@dataclass
class Call:
    argv: list[str]
    cwd: Path | None
    env: dict[str, str] | None
    input: str | None


class FakeRunner(CommandRunner):
    """CommandRunner that records calls and answers from registered responses.

    Responses are matched on an argv prefix; the most recently registered
    match wins. Unmatched commands succeed with no output.
    """

    def __init__(self):
        self.calls: list[Call] = []
        self._responses: list[tuple[tuple[str, ...], int, str, object]] = []

    def on(self, prefix, returncode: int = 0, output: str = "", action=None) -> "FakeRunner":
        self._responses.append((tuple(prefix), returncode, output, action))
        return self

    def run(self, argv, *, cwd=None, env=None, input=None, timeout=None) -> CommandResult:
        self.calls.append(Call(list(argv), Path(cwd) if cwd is not None else None, env, input))
        for prefix, returncode, output, action in reversed(self._responses):
            if tuple(argv[: len(prefix)]) == prefix:
                if action is not None:
                    action(list(argv), Path(cwd) if cwd is not None else None, env)
                return CommandResult(argv=list(argv), returncode=returncode, output=output)
        return CommandResult(argv=list(argv), returncode=0, output="")

    def argvs(self) -> list[list[str]]:
        return [c.argv for c in self.calls]

    def find(self, *prefix: str) -> Call | None:
        for call in self.calls:
            if tuple(call.argv[: len(prefix)]) == prefix:
                return call
        return None


@pytest.fixture
def fake_runner():
    return FakeRunner()


# ---------------------------------------------------------------------------
# Package registry and lockfile
# ---------------------------------------------------------------------------


@dataclass
class NpmRegistry:
    root: Path
    packages: dict[str, bytes] = field(default_factory=dict)  # "name@version" -> payload
    lockfile_text: str = ""

    def tarball(self, name: str, version: str) -> Path:
        base = name.split("/")[-1]
        return self.root / name / "-" / f"{base}-{version}.tgz"


PACKAGES = [
    # (name, version, range, license, dependencies)
    ("@scope/util", "2.0.0", "^2.0.0", "MIT", [("left-pad", "^1.3.0")]),
    ("left-pad", "1.3.0", "^1.3.0", "WTFPL", []),
]


def write_registry(root: Path) -> NpmRegistry:
    registry = NpmRegistry(root=root)
    blocks = ["# THIS IS AN AUTOGENERATED FILE. DO NOT EDIT THIS FILE DIRECTLY.\n# yarn lockfile v1\n\n"]
    for name, version, spec_range, _license, deps in PACKAGES:
        payload = f"tarball {name}@{version}\n".encode()
        path = registry.tarball(name, version)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        registry.packages[f"{name}@{version}"] = payload

        sha1 = hashlib.sha1(payload).hexdigest()
        header = f'"{name}@{spec_range}"' if name.startswith("@") else f"{name}@{spec_range}"
        block = (
            f"\n{header}:\n"
            f'  version "{version}"\n'
            f'  resolved "file://{path}#{sha1}"\n'
            f"  integrity {sri_of_bytes(payload, 'sha512')}\n"
        )
        if deps:
            block += "  dependencies:\n"
            for dep_name, dep_range in deps:
                block += f'    {dep_name} "{dep_range}"\n'
        blocks.append(block)
    registry.lockfile_text = "".join(blocks)
    return registry


@pytest.fixture
def npm_registry(tmp_path):
    """Two tarballs served from disk, plus the lockfile that pins them."""
    return write_registry(tmp_path / "registry")


# ---------------------------------------------------------------------------
# Application project
# ---------------------------------------------------------------------------


FAKE_NODE = """#!/bin/sh
if [ "$1" = "--version" ]; then
  echo v22.11.0
  exit 0
fi
script="$1"
shift
exec /bin/sh "$script" "$@"
"""

SERVER_SCRIPT = """echo "ready on port $3"
sleep 30
"""


def _executable(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_node(tmp_path):
    """A `node` stand-in that runs its script argument with /bin/sh."""
    return _executable(tmp_path / "toolchain" / "bin" / "node", FAKE_NODE)


@pytest.fixture
def app_dir(tmp_path, npm_registry):
    app = tmp_path / "app"
    app.mkdir()
    (app / "package.json").write_text(json.dumps({
        "name": "demo-app",
        "version": "1.0.0",
        "dependencies": {"@scope/util": "^2.0.0"},
    }, indent=2))
    (app / "yarn.lock").write_text(npm_registry.lockfile_text)
    (app / "pages").mkdir()
    (app / "pages" / "index.js").write_text("export default () => 'hello'\n")
    (app / "public").mkdir()
    (app / "public" / "favicon.ico").write_bytes(b"\x00\x01")
    return app


@pytest.fixture
def project(app_dir, fake_node):
    """Project with no declared cache hash; tests fill it in as needed."""
    return Project(
        pname="demo-app",
        version="1.0.0",
        root=app_dir,
        toolchain=Toolchain(node="22", node_bin=str(fake_node), yarn_bin="yarn"),
        outputs=OutputSpec(),
        port=3123,
    )


def install_action(argv, cwd, env):
    """What `yarn install` leaves behind: node_modules with package manifests."""
    for name, version, _range, license_, _deps in PACKAGES:
        pkg_dir = cwd / "node_modules" / name
        pkg_dir.mkdir(parents=True, exist_ok=True)
        (pkg_dir / "package.json").write_text(json.dumps({
            "name": name,
            "version": version,
            "license": license_,
        }))
        (pkg_dir / "index.js").write_text(f"module.exports = '{name}'\n")
    _executable(cwd / "node_modules" / ".bin" / "next", SERVER_SCRIPT)


def build_action(argv, cwd, env):
    """What `yarn build` leaves behind: the compiled .next directory."""
    (cwd / ".next" / "static").mkdir(parents=True, exist_ok=True)
    (cwd / ".next" / "BUILD_ID").write_text("build-1\n")
    (cwd / ".next" / "static" / "main.js").write_text("console.log('main')\n")


@pytest.fixture
def build_runner(fake_runner, fake_node):
    """FakeRunner that behaves like a working node + yarn toolchain."""
    fake_runner.on([str(fake_node), "--version"], output="v22.11.0\n")
    fake_runner.on(["yarn", "install"], output="success Saved lockfile.\n", action=install_action)
    fake_runner.on(["yarn", "build"], output="Compiled successfully\n", action=build_action)
    return fake_runner


@pytest.fixture
def crashing_server(build_runner):
    """Make `yarn install` leave a server script with the given body."""

    def _install(script: str) -> None:
        def action(argv, cwd, env):
            install_action(argv, cwd, env)
            (cwd / "node_modules" / ".bin" / "next").write_text(script)

        build_runner.on(["yarn", "install"], output="success Saved lockfile.\n", action=action)

    return _install


# ---------------------------------------------------------------------------
# Settings and registry isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    return Settings(storage_dir=tmp_path / ".hermetica", _env_file=None)


@pytest.fixture(autouse=True)
def _isolate_state(monkeypatch):
    """Fresh settings and registry engine for every test."""
    for key in list(os.environ):
        if key.startswith("HERMETICA_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    reset_engines()
    yield
    reset_settings()
    reset_engines()
