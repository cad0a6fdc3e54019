"""Tests for mentorlens.config."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

from mentorlens.config import (
    DEFAULT_BUDGET_SECONDS,
    DEFAULT_DB_PATH,
    DEFAULT_MAX_COMMITS,
    DEFAULT_USER,
    Config,
)

ENV_KEYS = [
    "ANTHROPIC_API_KEY",
    "MENTORLENS_MODEL",
    "MENTORLENS_DB_PATH",
    "MENTORLENS_REPO_DIR",
    "MENTORLENS_GITHUB_TOKEN",
    "MENTORLENS_GITHUB_REPO",
    "MENTORLENS_USER",
    "MENTORLENS_BUDGET_SECONDS",
    "MENTORLENS_GENERATION_TIMEOUT",
    "MENTORLENS_HISTORY_TIMEOUT",
    "MENTORLENS_MAX_COMMITS",
    "MENTORLENS_WEAK_THRESHOLD",
    "MENTORLENS_CACHE_TTL",
    "MENTORLENS_CONCEPTS_PATH",
]


def _clean_env() -> dict[str, str]:
    return {k: v for k, v in os.environ.items() if k not in ENV_KEYS}


class TestConfigDefaults:
    def test_default_values(self):
        config = Config()
        assert config.anthropic_api_key == ""
        assert config.db_path == DEFAULT_DB_PATH
        assert config.user_id == DEFAULT_USER
        assert config.budget_seconds == DEFAULT_BUDGET_SECONDS
        assert config.max_commits == DEFAULT_MAX_COMMITS
        assert config.concepts_path is None
        assert config.uses_github is False


class TestConfigLoad:
    def test_load_from_env(self):
        env = {
            **_clean_env(),
            "ANTHROPIC_API_KEY": "sk-ant-test",
            "MENTORLENS_DB_PATH": "/tmp/test.db",
            "MENTORLENS_REPO_DIR": "/src/app",
            "MENTORLENS_USER": "dana",
            "MENTORLENS_BUDGET_SECONDS": "3.5",
            "MENTORLENS_MAX_COMMITS": "7",
            "MENTORLENS_CONCEPTS_PATH": "/etc/concepts.json",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.load()
        assert config.anthropic_api_key == "sk-ant-test"
        assert config.db_path == Path("/tmp/test.db")
        assert config.repo_dir == Path("/src/app")
        assert config.user_id == "dana"
        assert config.budget_seconds == 3.5
        assert config.max_commits == 7
        assert config.concepts_path == Path("/etc/concepts.json")

    def test_load_defaults_when_env_empty(self):
        with patch.dict(os.environ, _clean_env(), clear=True):
            config = Config.load()
        assert config == Config()

    def test_bad_numbers_fall_back_to_defaults(self):
        env = {**_clean_env(), "MENTORLENS_BUDGET_SECONDS": "fast", "MENTORLENS_MAX_COMMITS": "many"}
        with patch.dict(os.environ, env, clear=True):
            config = Config.load()
        assert config.budget_seconds == DEFAULT_BUDGET_SECONDS
        assert config.max_commits == DEFAULT_MAX_COMMITS

    def test_github_backend(self):
        env = {
            **_clean_env(),
            "MENTORLENS_GITHUB_TOKEN": "ghp_test",
            "MENTORLENS_GITHUB_REPO": "acme/webapp",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.load()
        assert config.uses_github is True


class TestConfigValidate:
    def test_missing_key_is_reported(self):
        issues = Config().validate()
        assert len(issues) == 1
        assert "Anthropic" in issues[0]

    def test_all_present(self):
        assert Config(anthropic_api_key="sk-ant-xxx").validate() == []

    def test_bad_values(self):
        config = Config(
            anthropic_api_key="sk-ant-xxx",
            budget_seconds=0,
            max_commits=0,
            weak_threshold=1.5,
        )
        assert len(config.validate()) == 3

    def test_half_configured_github(self):
        issues = Config(anthropic_api_key="sk-ant-xxx", github_token="ghp_xxx").validate()
        assert len(issues) == 1
        assert "GitHub" in issues[0]
