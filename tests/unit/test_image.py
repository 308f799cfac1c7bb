"""Tests for the docker-archive image packager."""

from __future__ import annotations

import json
import struct
import tarfile

import pytest

from hermetica.assemble import Assembler, ArtifactStore, derivation_fingerprint
from hermetica.core.errors import PipelineError
from hermetica.core.models import BuildOutput
from hermetica.image import Runtime, build_image, elf_interpreter
from hermetica.image.packager import CERT_LINK


@pytest.fixture
def artifact(tmp_path, project, fake_node):
    root = tmp_path / "work" / "source"
    (root / ".next").mkdir(parents=True)
    (root / ".next" / "BUILD_ID").write_text("build-1\n")
    (root / "node_modules").mkdir()
    (root / "package.json").write_text('{"name": "demo-app"}')
    store = ArtifactStore(tmp_path / "store")
    fingerprint = derivation_fingerprint(project, "sha256-src", "abc")
    return Assembler(store).assemble(BuildOutput(root=root, source_hash="sha256-src"), project, fingerprint,
                                     node=str(fake_node))


@pytest.fixture
def ca_bundle(tmp_path, project):
    path = tmp_path / "certs" / "ca.crt"
    path.parent.mkdir()
    path.write_text("-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n")
    project.image.ca_bundle = str(path)
    return path


@pytest.fixture
def runtime(fake_node):
    return Runtime(node=fake_node.resolve())


def _fake_elf(path, interpreter=None):
    """Minimal 64-bit little-endian ELF header, with a PT_INTERP segment if given."""
    interp = interpreter.encode() + b"\0" if interpreter else b""
    header = struct.pack("<4sBBBBB7sHHIQQQIHHHHHH", b"\x7fELF", 2, 1, 1, 0, 0, b"\0" * 7,
                         2, 62, 1, 0, 64, 0, 0, 64, 56, 1, 64, 0, 0)
    p_type = 3 if interpreter else 1
    phdr = struct.pack("<IIQQQQQQ", p_type, 4, 120, 0, 0, len(interp), len(interp), 1)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(header + phdr + interp)
    path.chmod(0o755)
    return path


@pytest.fixture
def host_libs(tmp_path):
    loader = tmp_path / "sysroot" / "lib64" / "ld-linux-x86-64.so.2"
    libc = tmp_path / "sysroot" / "lib" / "libc.so.6"
    for lib in (loader, libc):
        lib.parent.mkdir(parents=True, exist_ok=True)
        lib.write_bytes(b"\x7fELF shared object")
    return loader, libc


def _members(path):
    with tarfile.open(path) as archive:
        return {m.name: m for m in archive.getmembers()}, {
            m.name: archive.extractfile(m).read() for m in archive.getmembers() if m.isfile()
        }


def _layer_members(image):
    with tarfile.open(image.path) as archive:
        layer = archive.extractfile(f"{image.layer_digest}/layer.tar")
        with tarfile.open(fileobj=layer) as inner:
            return {m.name: m for m in inner.getmembers()}


class TestBuildImage:
    def test_archive_layout(self, artifact, runtime, project, ca_bundle, tmp_path):
        image = build_image(artifact, runtime, project, tmp_path / "out" / "image.tar")

        members, payloads = _members(image.path)
        assert set(payloads) == {
            "manifest.json",
            "repositories",
            f"{image.config_digest}.json",
            f"{image.layer_digest}/layer.tar",
        }
        manifest = json.loads(payloads["manifest.json"])
        assert manifest == [{
            "Config": f"{image.config_digest}.json",
            "RepoTags": ["demo-app:1.0.0"],
            "Layers": [f"{image.layer_digest}/layer.tar"],
        }]
        assert image.reference == "demo-app:1.0.0"

    def test_config(self, artifact, runtime, project, ca_bundle, tmp_path):
        project.image.env = {"NEXT_PUBLIC_API": "https://api.example"}
        image = build_image(artifact, runtime, project, tmp_path / "image.tar")

        config = image.config["config"]
        assert config["Entrypoint"] == [str(runtime.node), "node_modules/.bin/next", "start", "-p", "3123"]
        assert config["WorkingDir"] == str(artifact.path)
        assert "PORT=3123" in config["Env"]
        assert config["ExposedPorts"] == {"3123/tcp": {}}
        assert "NEXT_PUBLIC_API=https://api.example" in config["Env"]
        assert f"SSL_CERT_FILE={CERT_LINK}" in config["Env"]
        assert image.config["rootfs"]["diff_ids"] == [f"sha256:{image.layer_digest}"]

    def test_exposed_port_override(self, artifact, runtime, project, ca_bundle, tmp_path):
        project.image.exposed_port = 8080
        image = build_image(artifact, runtime, project, tmp_path / "image.tar")
        assert image.config["config"]["ExposedPorts"] == {"8080/tcp": {}}

    def test_layer_contents(self, artifact, runtime, project, ca_bundle, tmp_path):
        image = build_image(artifact, runtime, project, tmp_path / "image.tar")

        layer = _layer_members(image)
        artifact_arc = str(artifact.path).lstrip("/")
        assert f"{artifact_arc}/.next/BUILD_ID" in layer
        assert str(runtime.node).lstrip("/") in layer
        assert str(ca_bundle.resolve()).lstrip("/") in layer
        assert layer["bin/demo-app"].linkname == str(artifact.launcher)
        assert layer["bin/node"].linkname == str(runtime.node)
        assert layer[CERT_LINK.lstrip("/")].issym()
        # nothing outside the closure
        assert "bin/sh" not in layer
        assert "usr" not in layer

    def test_layer_includes_loader_and_libraries(self, artifact, project, fake_node, host_libs, ca_bundle, tmp_path):
        loader, libc = host_libs
        runtime = Runtime(node=fake_node.resolve(), interpreter=loader, libraries=(libc, loader))
        image = build_image(artifact, runtime, project, tmp_path / "image.tar")

        layer = _layer_members(image)
        assert layer[str(loader).lstrip("/")].isfile()
        assert layer[str(libc).lstrip("/")].isfile()
        env = image.config["config"]["Env"]
        assert f"LD_LIBRARY_PATH={libc.parent}:{loader.parent}" in env

    def test_no_library_path_without_libraries(self, artifact, runtime, project, ca_bundle, tmp_path):
        image = build_image(artifact, runtime, project, tmp_path / "image.tar")
        assert not any(e.startswith("LD_LIBRARY_PATH=") for e in image.config["config"]["Env"])

    def test_members_have_fixed_metadata(self, artifact, runtime, project, ca_bundle, tmp_path):
        image = build_image(artifact, runtime, project, tmp_path / "image.tar")
        for member in _layer_members(image).values():
            assert member.mtime == 1
            assert member.uid == 0 and member.gid == 0

    def test_deterministic(self, artifact, runtime, project, ca_bundle, tmp_path):
        first = build_image(artifact, runtime, project, tmp_path / "a" / "image.tar")
        second = build_image(artifact, runtime, project, tmp_path / "b" / "image.tar")

        assert first.path.read_bytes() == second.path.read_bytes()
        assert first.config_digest == second.config_digest

    def test_tag_override(self, artifact, runtime, project, ca_bundle, tmp_path):
        project.image.name = "registry.example/demo"
        project.image.tag = "canary"
        image = build_image(artifact, runtime, project, tmp_path / "image.tar")
        _members_, payloads = _members(image.path)
        assert json.loads(payloads["repositories"]) == {"registry.example/demo": {"canary": image.layer_digest}}

    def test_missing_ca_bundle(self, artifact, runtime, project, tmp_path):
        project.image.ca_bundle = str(tmp_path / "absent.crt")
        with pytest.raises(PipelineError, match="CA bundle"):
            build_image(artifact, runtime, project, tmp_path / "image.tar")
        assert not (tmp_path / "image.tar").exists()


class TestRuntime:
    def test_discover_missing_binary(self, project):
        project.toolchain.node_bin = "definitely-not-a-node-binary"
        with pytest.raises(PipelineError, match="not found"):
            Runtime.discover(project.toolchain)

    def test_discover_absolute(self, project, fake_node):
        runtime = Runtime.discover(project.toolchain)
        assert runtime.node == fake_node.resolve()
        assert runtime.prefix is None

    def test_discover_collects_loader_and_libraries(self, project, host_libs, fake_runner, tmp_path):
        loader, libc = host_libs
        node = _fake_elf(tmp_path / "node-dist" / "bin" / "node", str(loader))
        project.toolchain.node_bin = str(node)
        fake_runner.on(["ldd"], output=(
            "\tlinux-vdso.so.1 (0x00007ffc8a5f2000)\n"
            f"\tlibc.so.6 => {libc} (0x00007f3b1c000000)\n"
            f"\t{loader} (0x00007f3b1c400000)\n"
        ))

        runtime = Runtime.discover(project.toolchain, runner=fake_runner)

        assert runtime.interpreter == loader
        assert set(runtime.libraries) == {libc, loader}
        assert fake_runner.find("ldd").argv == ["ldd", str(node.resolve())]

    def test_discover_missing_library(self, project, host_libs, fake_runner, tmp_path):
        node = _fake_elf(tmp_path / "node-dist" / "bin" / "node", str(host_libs[0]))
        project.toolchain.node_bin = str(node)
        fake_runner.on(["ldd"], output="\tlibssl.so.3 => not found\n")

        with pytest.raises(PipelineError, match="libssl.so.3"):
            Runtime.discover(project.toolchain, runner=fake_runner)

    def test_discover_ldd_failure(self, project, host_libs, fake_runner, tmp_path):
        node = _fake_elf(tmp_path / "node-dist" / "bin" / "node", str(host_libs[0]))
        project.toolchain.node_bin = str(node)
        fake_runner.on(["ldd"], returncode=1, output="not a dynamic executable\n")

        with pytest.raises(PipelineError, match="shared libraries"):
            Runtime.discover(project.toolchain, runner=fake_runner)

    def test_static_binary_has_no_closure(self, project, fake_runner, tmp_path):
        node = _fake_elf(tmp_path / "node-dist" / "bin" / "node")
        project.toolchain.node_bin = str(node)

        runtime = Runtime.discover(project.toolchain, runner=fake_runner)

        assert runtime.interpreter is None
        assert runtime.libraries == ()
        assert fake_runner.calls == []

    def test_script_runtime_skips_ldd(self, project, fake_runner):
        runtime = Runtime.discover(project.toolchain, runner=fake_runner)
        assert runtime.interpreter is None
        assert fake_runner.calls == []


class TestElfInterpreter:
    def test_reads_pt_interp(self, tmp_path):
        node = _fake_elf(tmp_path / "node", "/lib64/ld-linux-x86-64.so.2")
        assert elf_interpreter(node) == "/lib64/ld-linux-x86-64.so.2"

    def test_not_elf(self, fake_node):
        assert elf_interpreter(fake_node) is None

    def test_truncated_header(self, tmp_path):
        path = tmp_path / "node"
        path.write_bytes(b"\x7fELF\x02\x01\x01" + b"\0" * 20)
        with pytest.raises(PipelineError, match="Malformed ELF"):
            elf_interpreter(path)
