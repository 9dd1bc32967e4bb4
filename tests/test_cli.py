"""Tests for the zkdap command line."""

import json

import pytest
from click.testing import CliRunner

from zkdap import __version__
from zkdap.cli.main import cli
from zkdap.cli.utils import format_bytes, format_duration


@pytest.fixture
def runner():
    return CliRunner()


def _invoke(runner, build_dir, *args, **kwargs):
    return runner.invoke(cli, ["--build-dir", str(build_dir), *args], obj={}, **kwargs)


class TestBasicCommands:

    def test_version(self, runner):
        result = runner.invoke(cli, ["version"], obj={})
        assert result.exit_code == 0
        assert f"zkdap v{__version__}" in result.output

    def test_compile(self, runner, tmp_path, circuit):
        result = _invoke(runner, tmp_path, "compile", "--bit-width", "8")
        assert result.exit_code == 0, result.output
        data = json.loads((tmp_path / "data_access.json").read_text())
        assert data["bitWidth"] == 8
        assert len(data["constraints"]) == circuit.n_constraints

    def test_compile_rejects_width(self, runner, tmp_path):
        result = _invoke(runner, tmp_path, "compile", "--bit-width", "0")
        assert result.exit_code != 0

    def test_setup_without_circuit(self, runner, tmp_path):
        result = _invoke(runner, tmp_path, "setup", "init")
        assert result.exit_code == 1
        assert "Initialization failed" in result.output

    def test_verify_without_artifacts(self, runner, tmp_path):
        result = _invoke(runner, tmp_path, "verify")
        assert result.exit_code == 1


@pytest.mark.slow
class TestWorkflow:
    """compile -> setup -> prove -> verify through the command line."""

    def test_full_workflow(self, runner, tmp_path):
        steps = [
            ("compile", "--bit-width", "8"),
            ("setup", "init"),
            ("setup", "contribute", "--name", "alice", "--entropy", "first contribution"),
            ("setup", "seal"),
            ("setup", "contribute", "--name", "bob", "--entropy", "second contribution"),
            ("setup", "verify"),
            ("setup", "finalize"),
            ("prove", "--user-permission", "10", "--required-permission", "5", "--resource-id", "67890"),
            ("verify",),
        ]
        for step in steps:
            result = _invoke(runner, tmp_path, *step)
            assert result.exit_code == 0, f"{step}: {result.output}"

        assert json.loads((tmp_path / "public.json").read_text()) == ["5", "67890", "1"]
        transcript = json.loads((tmp_path / "data_access_transcript.json").read_text())
        assert [r["contributor"] for r in transcript["records"]] == ["public-entropy", "alice", "seal", "bob"]
        assert "first contribution" not in json.dumps(transcript)

        result = _invoke(runner, tmp_path, "calldata")
        assert result.exit_code == 0
        assert result.output.startswith('["0x')

        (tmp_path / "public.json").write_text(json.dumps(["5", "11111", "1"]))
        result = _invoke(runner, tmp_path, "verify")
        assert result.exit_code == 1
        assert "Invalid proof" in result.output

    def test_prompted_entropy(self, runner, tmp_path):
        assert _invoke(runner, tmp_path, "compile", "--bit-width", "4").exit_code == 0
        assert _invoke(runner, tmp_path, "setup", "init").exit_code == 0
        result = _invoke(runner, tmp_path, "setup", "contribute", input="typed entropy\n")
        assert result.exit_code == 0, result.output
        assert "typed entropy" not in result.output

    def test_demo(self, runner, tmp_path):
        result = _invoke(runner, tmp_path, "demo")
        assert result.exit_code == 0, result.output
        assert "Demo finished as expected" in result.output


class TestFormatting:

    def test_format_duration(self):
        assert format_duration(0.25) == "250 ms"
        assert "seconds" in format_duration(2.5)

    def test_format_bytes(self):
        assert format_bytes(2048) == "2.0 KiB"
