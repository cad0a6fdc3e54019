"""Tests for the mentorlens CLI."""

from __future__ import annotations

import re
from pathlib import Path

import pytest
from typer.testing import CliRunner

from mentorlens.activity import log_tool_call
from mentorlens.cli import app

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("MENTORLENS_GITHUB_TOKEN", raising=False)
    monkeypatch.setenv("MENTORLENS_USER", "dana")
    monkeypatch.setenv("MENTORLENS_REPO_DIR", str(tmp_path))
    return tmp_path / "cli.db"


class TestCli:
    def test_concepts(self, cli_env: Path):
        result = runner.invoke(app, ["concepts"])
        assert result.exit_code == 0
        assert "error-handling" in result.output

    def test_complete_then_progress(self, cli_env: Path):
        result = runner.invoke(app, ["complete", "error-handling", "--minutes", "12", "--db-path", str(cli_env)])
        assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["progress", "--db-path", str(cli_env)])
        assert result.exit_code == 0
        assert "dana" in result.output
        assert "12 min" in result.output
        assert "error-handling" in result.output

    def test_complete_unknown_concept(self, cli_env: Path):
        result = runner.invoke(app, ["complete", "nope", "--db-path", str(cli_env)])
        assert result.exit_code == 1

    def test_predict_without_key_is_degraded(self, cli_env: Path, tmp_path: Path):
        source = tmp_path / "load.js"
        source.write_text("async function load(url) {\n  return await fetch(url);\n}\n")
        result = runner.invoke(app, ["predict", str(source), "--db-path", str(cli_env)])
        assert result.exit_code == 0, result.output
        assert "missing-error-handling" in result.output
        assert "degraded" in result.output

    def test_predict_missing_file(self, cli_env: Path, tmp_path: Path):
        result = runner.invoke(app, ["predict", str(tmp_path / "nope.py"), "--db-path", str(cli_env)])
        assert result.exit_code == 1

    def test_reset_asks_for_confirmation(self, cli_env: Path):
        result = runner.invoke(app, ["reset", "--db-path", str(cli_env)], input="n\n")
        assert result.exit_code == 1
        result = runner.invoke(app, ["reset", "--yes", "--db-path", str(cli_env)])
        assert result.exit_code == 0
        assert "reset" in result.output

    def test_respond_to_unknown_prediction(self, cli_env: Path):
        result = runner.invoke(app, ["respond", "missing-id", "correct", "--db-path", str(cli_env)])
        assert result.exit_code == 1

    def test_progress_counts_events(self, cli_env: Path):
        runner.invoke(app, ["complete", "error-handling", "--db-path", str(cli_env)])
        result = runner.invoke(app, ["progress", "--db-path", str(cli_env)])
        assert result.exit_code == 0
        assert "Events recorded: 1" in result.output


class TestPredictions:
    def test_missing_database(self, cli_env: Path):
        result = runner.invoke(app, ["predictions", "--db-path", str(cli_env)])
        assert result.exit_code == 1
        assert "Database not found" in result.output

    def test_lists_answered_prediction(self, cli_env: Path, tmp_path: Path):
        source = tmp_path / "load.js"
        source.write_text("async function load(url) {\n  return await fetch(url);\n}\n")
        result = runner.invoke(app, ["predict", str(source), "--format", "json", "--db-path", str(cli_env)])
        assert result.exit_code == 0, result.output
        prediction_id = re.search(r'"prediction_id": "([^"]+)"', result.output).group(1)

        result = runner.invoke(app, ["predictions", "--db-path", str(cli_env)])
        assert result.exit_code == 0
        assert prediction_id[:8] in result.output

        runner.invoke(app, ["respond", prediction_id, "correct", "--db-path", str(cli_env)])
        result = runner.invoke(app, ["predictions", "--db-path", str(cli_env)])
        assert "correct" in result.output

    def test_no_predictions_for_user(self, cli_env: Path):
        runner.invoke(app, ["complete", "error-handling", "--db-path", str(cli_env)])
        result = runner.invoke(app, ["predictions", "--user", "sam", "--db-path", str(cli_env)])
        assert result.exit_code == 0
        assert "No predictions yet" in result.output


class TestActivity:
    def test_empty_log(self, cli_env: Path):
        result = runner.invoke(app, ["activity"])
        assert result.exit_code == 0
        assert "No tool calls logged yet" in result.output

    def test_shows_logged_calls(self, cli_env: Path):
        log_tool_call("get_progress", {}, "{}", None, 12)
        log_tool_call("predict_mistake", {"code": "x"}, "{}", None, 40, degraded=True)
        result = runner.invoke(app, ["activity", "--tool", "predict_mistake"])
        assert result.exit_code == 0
        assert "predict_mistake" in result.output
        assert "degraded" in result.output
        assert "get_progress" not in result.output
