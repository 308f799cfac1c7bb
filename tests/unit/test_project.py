"""Tests for project file loading and validation."""

from __future__ import annotations

import textwrap

import pytest

from hermetica import OutputSpec, Project
from hermetica.core.errors import PipelineError
from hermetica.pipeline.project import load_project, validate_project


def _write_project(directory, body):
    path = directory / "project.py"
    path.write_text(textwrap.dedent(body))
    return path


class TestLoadProject:
    def test_load(self, app_dir):
        path = _write_project(app_dir, """\
            from hermetica import Project, Toolchain

            project = Project(
                pname="demo-app",
                version="1.0.0",
                toolchain=Toolchain(node="22"),
                port=3123,
            )
        """)

        project = load_project(path)
        assert isinstance(project, Project)
        assert project.pname == "demo-app"
        assert project.root == app_dir.resolve()
        assert project.source_dir == app_dir.resolve()
        assert project.lockfile_path == app_dir.resolve() / "yarn.lock"

    def test_src_relative_to_file(self, tmp_path, app_dir):
        nix = tmp_path / "nix"
        nix.mkdir()
        path = _write_project(nix, """\
            from hermetica import Project

            project = Project(pname="demo-app", version="1.0.0", src="../app")
        """)
        assert load_project(path).source_dir == app_dir.resolve()

    def test_missing_file(self, tmp_path):
        with pytest.raises(PipelineError, match="not found"):
            load_project(tmp_path / "project.py")

    def test_missing_variable(self, tmp_path):
        path = _write_project(tmp_path, "name = 'nothing here'\n")
        with pytest.raises(PipelineError, match="must define a 'project' variable"):
            load_project(path)

    def test_wrong_type(self, tmp_path):
        path = _write_project(tmp_path, "project = {'pname': 'demo-app'}\n")
        with pytest.raises(PipelineError, match="must be a Project instance"):
            load_project(path)

    def test_missing_source_dir(self, tmp_path):
        path = _write_project(tmp_path, """\
            from hermetica import Project

            project = Project(pname="demo-app", version="1.0.0", src="missing")
        """)
        with pytest.raises(PipelineError, match="Source directory not found"):
            load_project(path)


class TestValidateProject:
    @pytest.mark.parametrize("pname", ["", "a/b", ".hidden"])
    def test_bad_names(self, project, pname):
        project.pname = pname
        with pytest.raises(PipelineError, match="pname"):
            validate_project(project)

    def test_bad_cache_hash(self, project):
        project.cache_hash = "sha256:abc"
        with pytest.raises(PipelineError, match="Invalid cache_hash"):
            validate_project(project)

    def test_empty_cache_hash_allowed(self, project):
        project.cache_hash = ""
        validate_project(project)

    def test_empty_build_command(self, project):
        project.build_command = []
        with pytest.raises(PipelineError, match="build_command"):
            validate_project(project)

    def test_empty_launcher(self, project):
        project.launcher = []
        with pytest.raises(PipelineError, match="launcher"):
            validate_project(project)

    def test_overlapping_outputs(self, project):
        project.outputs = OutputSpec(required=[".next"], optional=[".next"])
        with pytest.raises(PipelineError, match="both required and optional"):
            validate_project(project)

    @pytest.mark.parametrize("rel", ["/etc/passwd", "../outside"])
    def test_escaping_outputs(self, project, rel):
        project.outputs = OutputSpec(required=[rel], optional=[])
        with pytest.raises(PipelineError, match="inside the build tree"):
            validate_project(project)

    @pytest.mark.parametrize("port", [0, 70000])
    def test_port_range(self, project, port):
        project.port = port
        with pytest.raises(PipelineError, match="Port"):
            validate_project(project)
