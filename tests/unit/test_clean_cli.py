"""CLI tests for the clean command."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from hermetica.cli.main import main
from hermetica.core.fs import make_read_only


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def storage(tmp_path, monkeypatch):
    path = tmp_path / ".hermetica"
    monkeypatch.setenv("HERMETICA_STORAGE_DIR", str(path))
    return path


@pytest.fixture
def populated(storage):
    """A storage directory with a read-only store path, a cache and a registry."""
    artifact = storage / "store" / "0123-demo-app-1.0.0"
    (artifact / ".next").mkdir(parents=True)
    (artifact / ".next" / "BUILD_ID").write_text("build-1\n")
    make_read_only(artifact)
    (storage / "cache").mkdir()
    (storage / "registry.db").write_bytes(b"")
    return storage


class TestCleanHelp:
    def test_help(self, runner):
        result = runner.invoke(main, ["clean", "--help"])
        assert result.exit_code == 0
        assert "--yes" in result.output
        assert "Remove the store" in result.output


class TestClean:
    def test_nothing_to_clean(self, runner, storage):
        result = runner.invoke(main, ["clean", "-y"])
        assert result.exit_code == 0
        assert "Nothing to clean" in result.output

    def test_removes_read_only_store(self, runner, populated):
        result = runner.invoke(main, ["clean", "-y"])
        assert result.exit_code == 0
        assert "Cleaned" in result.output
        assert not populated.exists()

    def test_confirmation_abort(self, runner, populated):
        result = runner.invoke(main, ["clean"], input="n\n")
        assert result.exit_code == 0
        assert "Aborted" in result.output
        assert populated.exists()

    def test_confirmation_proceed(self, runner, populated):
        result = runner.invoke(main, ["clean"], input="y\n")
        assert result.exit_code == 0
        assert "Cleaned" in result.output
        assert not populated.exists()

    def test_idempotent(self, runner, populated):
        runner.invoke(main, ["clean", "-y"])
        result = runner.invoke(main, ["clean", "-y"])
        assert result.exit_code == 0
        assert "Nothing to clean" in result.output
