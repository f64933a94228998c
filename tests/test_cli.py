"""Smoke tests for the typer CLI."""

from typer.testing import CliRunner

from stembot.cli.main import app

runner = CliRunner()


def test_config_command_validates():
    result = runner.invoke(app, ["config"])
    assert result.exit_code == 0
    assert "Configuration valid" in result.output


def test_analyze_missing_file(tmp_path):
    result = runner.invoke(app, ["analyze", str(tmp_path / "missing.pdf")])
    assert result.exit_code == 1


def test_analyze_dir_without_supported_files(tmp_path):
    (tmp_path / "archive.zip").write_bytes(b"PK")
    result = runner.invoke(app, ["analyze-dir", str(tmp_path)])
    assert result.exit_code == 0
    assert "No supported documents found" in result.output
