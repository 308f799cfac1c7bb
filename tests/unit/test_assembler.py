"""Tests for artifact assembly and the derivation-addressed store."""

from __future__ import annotations

import json
import os
import stat

import pytest

from hermetica.assemble import Assembler, ArtifactStore, derivation_fingerprint, render_launcher, runtime_path
from hermetica.assemble.store import ARTIFACT_METADATA
from hermetica.core.errors import IncompleteArtifact
from hermetica.core.fingerprint import Fingerprint
from hermetica.core.logging import HermeticaLogger
from hermetica.core.models import BuildOutput


@pytest.fixture
def build_output(tmp_path):
    root = tmp_path / "work" / "source"
    (root / ".next" / "static").mkdir(parents=True)
    (root / ".next" / "BUILD_ID").write_text("build-1\n")
    (root / ".next" / "static" / "main.js").write_text("console.log('main')\n")
    (root / "node_modules" / "left-pad").mkdir(parents=True)
    (root / "node_modules" / "left-pad" / "package.json").write_text('{"name": "left-pad"}')
    (root / "package.json").write_text('{"name": "demo-app"}')
    (root / "public").mkdir()
    (root / "public" / "favicon.ico").write_bytes(b"\x00\x01")
    (root / "pages").mkdir()
    (root / "pages" / "index.js").write_text("export default () => 'hello'\n")
    return BuildOutput(root=root, source_hash="sha256-src")


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(tmp_path / "store")


@pytest.fixture
def fingerprint(project):
    return derivation_fingerprint(project, "sha256-src", "abc")


def _assemble(store, build_output, project, fingerprint, fake_node, logger=None):
    return Assembler(store, logger).assemble(build_output, project, fingerprint, node=str(fake_node))


class TestAssemble:
    def test_store_path_layout(self, store, build_output, project, fingerprint, fake_node):
        artifact = _assemble(store, build_output, project, fingerprint, fake_node)

        assert artifact.path == store.store_dir / f"{fingerprint.digest[:32]}-demo-app-1.0.0"
        assert artifact.fingerprint == fingerprint.digest
        assert artifact.tree_hash.startswith("sha256-")

    def test_only_designated_outputs_copied(self, store, build_output, project, fingerprint, fake_node):
        artifact = _assemble(store, build_output, project, fingerprint, fake_node)

        names = sorted(os.listdir(artifact.path))
        assert names == sorted([".next", "node_modules", "package.json", "public", "bin", ARTIFACT_METADATA])
        assert not (artifact.path / "pages").exists()

    def test_result_is_read_only(self, store, build_output, project, fingerprint, fake_node):
        artifact = _assemble(store, build_output, project, fingerprint, fake_node)

        assert not os.stat(artifact.path).st_mode & 0o222
        assert not os.stat(artifact.path / ".next" / "BUILD_ID").st_mode & 0o222
        assert not os.stat(artifact.path / ".next").st_mode & 0o222

    def test_timestamps_normalized(self, store, build_output, project, fingerprint, fake_node):
        artifact = _assemble(store, build_output, project, fingerprint, fake_node)
        assert os.stat(artifact.path / ".next" / "BUILD_ID").st_mtime == 1

    def test_launcher(self, store, build_output, project, fingerprint, fake_node):
        artifact = _assemble(store, build_output, project, fingerprint, fake_node)

        launcher = artifact.launcher
        assert launcher == artifact.path / "bin" / "demo-app"
        assert os.stat(launcher).st_mode & stat.S_IXUSR
        text = launcher.read_text()
        assert text.startswith("#!/bin/sh\n")
        assert f"cd {artifact.path}\n" in text
        assert 'export PORT="${PORT:-3123}"' in text
        assert f'exec {fake_node} node_modules/.bin/next start -p "$PORT" "$@"' in text

    def test_launcher_quotes_awkward_paths(self, project, tmp_path):
        text = render_launcher(project, tmp_path / "with space", "/opt/node/bin/node")
        assert f"cd '{tmp_path}/with space'" in text

    def test_missing_optional_output_tolerated(self, store, build_output, project, fingerprint, fake_node, tmp_path):
        project.outputs.optional = ["public", "next.config.js"]
        logger = HermeticaLogger(logs_dir=tmp_path / "logs")

        artifact = _assemble(store, build_output, project, fingerprint, fake_node, logger)
        logger.close()

        assert not (artifact.path / "next.config.js").exists()
        assert logger.run_log.stages["assemble"].warnings == ["optional output next.config.js not present"]
        assert store.load_metadata(artifact)["skipped_optional"] == ["next.config.js"]

    def test_missing_required_output(self, store, build_output, project, fingerprint, fake_node):
        project.outputs.required = [".next", "node_modules", "package.json", "server.js"]

        with pytest.raises(IncompleteArtifact, match="server.js"):
            _assemble(store, build_output, project, fingerprint, fake_node)
        assert store.list_artifacts() == []
        assert not store.path_for(fingerprint, project.pname, project.version).exists()

    def test_reassembly_replaces_path(self, store, build_output, project, fingerprint, fake_node):
        first = _assemble(store, build_output, project, fingerprint, fake_node)
        second = _assemble(store, build_output, project, fingerprint, fake_node)
        assert first.path == second.path
        assert first.tree_hash == second.tree_hash

    def test_metadata(self, store, build_output, project, fingerprint, fake_node):
        artifact = _assemble(store, build_output, project, fingerprint, fake_node)

        data = json.loads((artifact.path / ARTIFACT_METADATA).read_text())
        assert data["pname"] == "demo-app"
        assert data["fingerprint"]["digest"] == fingerprint.digest
        assert data["tree_hash"] == artifact.tree_hash


class TestDerivationFingerprint:
    def test_port_is_part_of_identity(self, project, fingerprint):
        project.port = 4000
        assert derivation_fingerprint(project, "sha256-src", "abc").digest != fingerprint.digest

    def test_image_metadata_is_not(self, project, fingerprint):
        project.image.tag = "latest"
        assert derivation_fingerprint(project, "sha256-src", "abc").digest == fingerprint.digest

    def test_runtime_path_is_part_of_identity(self, project):
        a = derivation_fingerprint(project, "sha256-src", "abc", node="/opt/node-a/bin/node")
        b = derivation_fingerprint(project, "sha256-src", "abc", node="/opt/node-b/bin/node")
        assert a.explain_diff(b) == ["toolchain changed"]

    def test_default_runtime_path_is_the_launcher_runtime(self, project, fake_node, fingerprint):
        assert runtime_path(project.toolchain) == str(fake_node)
        assert derivation_fingerprint(project, "sha256-src", "abc", node=str(fake_node)) == fingerprint


class TestArtifactStore:
    def test_lookup(self, store, build_output, project, fingerprint, fake_node):
        assert store.lookup(fingerprint, project.pname, project.version) is None
        artifact = _assemble(store, build_output, project, fingerprint, fake_node)
        found = store.lookup(fingerprint, project.pname, project.version)
        assert found == artifact

    def test_lookup_ignores_paths_without_metadata(self, store, project, fingerprint):
        store.path_for(fingerprint, project.pname, project.version).mkdir()
        assert store.lookup(fingerprint, project.pname, project.version) is None

    def test_verify_detects_tampering(self, store, build_output, project, fingerprint, fake_node):
        artifact = _assemble(store, build_output, project, fingerprint, fake_node)
        assert store.verify(artifact)

        target = artifact.path / ".next" / "BUILD_ID"
        os.chmod(target, 0o644)
        target.write_text("build-2\n")
        assert not store.verify(artifact)

    def test_list_and_fingerprints(self, store, build_output, project, fingerprint, fake_node):
        artifact = _assemble(store, build_output, project, fingerprint, fake_node)
        assert store.list_artifacts() == [artifact]
        assert store.fingerprints("demo-app") == [fingerprint]
        assert store.fingerprints("other-app") == []

    def test_lookup_rejects_other_scheme(self, store, build_output, project, fingerprint, fake_node):
        _assemble(store, build_output, project, fingerprint, fake_node)
        other = Fingerprint(scheme="hermetica:derivation:v0", digest=fingerprint.digest,
                            components=fingerprint.components)
        assert store.lookup(other, project.pname, project.version) is None
