"""Tests for the command-line interface."""

import json

from typer.testing import CliRunner

from artifact_ingest.cli import app

runner = CliRunner()


def test_schema_errors_exit_with_status_1(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    directory = tmp_path / "artifacts"
    directory.mkdir()
    (directory / "commodore-64-manual.json").write_text(
        json.dumps({"version": 1, "slug": "commodore-64-manual"}), encoding="utf-8"
    )

    result = runner.invoke(app, ["validate", "--path", str(directory), "--no-progress"])
    assert result.exit_code == 1
    assert "title: is required" in result.output
    assert "from_year: is required" in result.output


def test_bad_config_exits_with_status_1(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = tmp_path / "config.yaml"
    config.write_text("submissions:\n  base_url: http://example.org/\n", encoding="utf-8")

    result = runner.invoke(app, ["upload", "--config", str(config), "--no-progress"])
    assert result.exit_code == 1
    assert "submissions.base_url must be an https URL" in result.output


def test_missing_submissions_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["validate", "--path", str(tmp_path / "nope"), "--no-progress"])
    assert result.exit_code == 1
    assert "does not exist" in result.output
